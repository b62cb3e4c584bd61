"""
Configuration management for VRroom Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set AUTH_SECRET and the S3 settings
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep log_config() free of secrets when adding fields
"""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class BlobBackend(Enum):
    """Supported blob store backends."""

    S3 = "s3"
    MEMORY = "memory"


@dataclass(frozen=True)
class HttpConfig:
    """Flat REST surface configuration.

    Attributes:
        host: Address to bind the aiohttp site
        port: Port to listen on
        cors_origins: Allowed CORS origins ("*" for any)
    """

    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("HTTP_CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        database_path: SQLite database file (":memory:" for ephemeral)
        wal_mode: SQLite WAL journal mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    database_path: str = "data.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            database_path=os.getenv("DATABASE_PATH", "data.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class AuthConfig:
    """Bearer token configuration.

    Both surfaces validate tokens against the same secret. Each token
    scheme has its own lifetime.

    Attributes:
        secret: HMAC signing secret shared by both surfaces
        session_token_hours: Lifetime of interactive session tokens
        api_token_days: Lifetime of long-lived API tokens
        issuer: "iss" claim for API tokens
        audience: "aud" claim for API tokens
        join_token_minutes: Lifetime of game join tokens
    """

    secret: str = field(default_factory=lambda: secrets.token_urlsafe(32), repr=False)
    session_token_hours: int = 24
    api_token_days: int = 30
    issuer: str = "vrroom"
    audience: str = "vrroom-clients"
    join_token_minutes: int = 5

    @classmethod
    def from_env(cls) -> AuthConfig:
        """Load configuration from environment variables."""
        secret = os.getenv("AUTH_SECRET")
        if not secret:
            logger.warning(
                "AUTH_SECRET not set; generated a per-process secret. "
                "Tokens will not survive a restart."
            )
            secret = secrets.token_urlsafe(32)
        return cls(
            secret=secret,
            session_token_hours=int(os.getenv("SESSION_TOKEN_HOURS", "24")),
            api_token_days=int(os.getenv("API_TOKEN_DAYS", "30")),
            issuer=os.getenv("JWT_ISSUER", "vrroom"),
            audience=os.getenv("JWT_AUDIENCE", "vrroom-clients"),
            join_token_minutes=int(os.getenv("JOIN_TOKEN_MINUTES", "5")),
        )


@dataclass(frozen=True)
class PasswordConfig:
    """Argon2id cost parameters.

    Attributes:
        time_cost: Number of iterations
        memory_cost_kib: Memory usage in KiB
        parallelism: Degree of parallelism
        hash_len: Length of the raw hash in bytes
        salt_len: Length of the random salt in bytes
    """

    time_cost: int = 4
    memory_cost_kib: int = 64 * 1024
    parallelism: int = 8
    hash_len: int = 32
    salt_len: int = 16

    @classmethod
    def from_env(cls) -> PasswordConfig:
        """Load configuration from environment variables."""
        return cls(
            time_cost=int(os.getenv("ARGON2_TIME_COST", "4")),
            memory_cost_kib=int(os.getenv("ARGON2_MEMORY_KIB", str(64 * 1024))),
            parallelism=int(os.getenv("ARGON2_PARALLELISM", "8")),
        )


@dataclass(frozen=True)
class S3Config:
    """S3 configuration for content bundles and thumbnails.

    Attributes:
        bucket: S3 bucket name
        region: AWS region
        endpoint_url: Custom endpoint URL (for MinIO / R2)
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
        upload_url_expiry_seconds: Lifetime of presigned PUT URLs
    """

    bucket: str = "vrroom-content"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = field(default=None, repr=False)
    upload_url_expiry_seconds: int = 300

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("S3_BUCKET", "vrroom-content"),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            upload_url_expiry_seconds=int(os.getenv("S3_UPLOAD_URL_EXPIRY_SECONDS", "300")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    The /v1 gateway has its own pydantic-settings class for bind address
    and CORS; everything that affects domain behavior lives here.

    Attributes:
        blob_backend: Which blob store to use
        http: Flat REST surface configuration
        storage: SQLite configuration
        auth: Token configuration
        passwords: Argon2 configuration
        s3: S3 configuration
        observability: Logging configuration
    """

    blob_backend: BlobBackend = BlobBackend.S3
    http: HttpConfig = field(default_factory=HttpConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    passwords: PasswordConfig = field(default_factory=PasswordConfig)
    s3: S3Config = field(default_factory=S3Config)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("BLOB_BACKEND", "s3").lower()
        try:
            blob_backend = BlobBackend(backend_str)
        except ValueError:
            raise ValueError(f"Invalid BLOB_BACKEND '{backend_str}'. Must be one of: s3, memory")

        config = cls(
            blob_backend=blob_backend,
            http=HttpConfig.from_env(),
            storage=StorageConfig.from_env(),
            auth=AuthConfig.from_env(),
            passwords=PasswordConfig.from_env(),
            s3=S3Config.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.blob_backend == BlobBackend.S3 and not self.s3.bucket:
            raise ValueError("S3_BUCKET is required when BLOB_BACKEND=s3")

        if len(self.auth.secret) < 16:
            raise ValueError("AUTH_SECRET must be at least 16 characters")

        if self.auth.session_token_hours <= 0 or self.auth.api_token_days <= 0:
            raise ValueError("Token lifetimes must be positive")

        if self.storage.database_path != ":memory:":
            parent = os.path.dirname(os.path.abspath(self.storage.database_path))
            if not os.path.exists(parent):
                logger.warning(
                    f"Database directory does not exist: {parent}. "
                    "It will be created on first start."
                )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "blob_backend": self.blob_backend.value,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "database_path": self.storage.database_path,
                "s3_bucket": self.s3.bucket if self.blob_backend == BlobBackend.S3 else None,
                "s3_endpoint": self.s3.endpoint_url,
                "session_token_hours": self.auth.session_token_hours,
                "api_token_days": self.auth.api_token_days,
                "log_level": self.observability.log_level,
            },
        )
