"""
Configuration for the VRroom /v1 gateway.

Uses pydantic-settings for environment variable loading. Only the bind
address and CORS live here; domain settings come from ServerConfig.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class GatewaySettings(BaseSettings):
    """Gateway configuration loaded from environment."""

    host: str = Field(default="0.0.0.0", description="Gateway bind host")
    port: int = Field(default=8081, description="Gateway bind port")

    # CORS settings
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins",
    )

    model_config = {"env_prefix": "GATEWAY_"}

    @property
    def bind_address(self) -> str:
        return f"{self.host}:{self.port}"
