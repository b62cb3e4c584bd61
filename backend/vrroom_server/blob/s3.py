"""
S3 blob store backed by aiobotocore.

Works against AWS S3 and S3-compatible endpoints (MinIO, R2) through
S3_ENDPOINT.

Invariants:
    - Upload URLs are presigned PUTs limited to upload_url_expiry_seconds
    - The client is opened in connect() and released in close()

How to change safely:
    - Test against MinIO before changing request parameters
    - Never log presigned URLs; they carry credentials
"""

from __future__ import annotations

import logging
from typing import Any

from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from ..config import S3Config
from .base import BlobConnectionError, BlobError

logger = logging.getLogger(__name__)


class S3BlobStore:
    """S3 implementation of BlobStore.

    Example:
        >>> blobs = S3BlobStore(S3Config(bucket="vrroom-content"))
        >>> await blobs.connect()
        >>> url = await blobs.get_upload_url("profiles/u-1/banner")
    """

    def __init__(self, config: S3Config) -> None:
        self.config = config
        self._session = None
        self._s3_ctx: Any = None
        self._s3_client: Any = None

    @property
    def is_connected(self) -> bool:
        return self._s3_client is not None

    async def connect(self) -> None:
        """Open the S3 client."""
        self._session = get_session()

        client_kwargs: dict[str, Any] = {
            "region_name": self.config.region,
        }

        if self.config.endpoint_url:
            client_kwargs["endpoint_url"] = self.config.endpoint_url

        if self.config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.config.secret_access_key

        self._s3_ctx = self._session.create_client("s3", **client_kwargs)
        self._s3_client = await self._s3_ctx.__aenter__()
        logger.info(
            "Connected to S3",
            extra={"bucket": self.config.bucket, "endpoint": self.config.endpoint_url},
        )

    async def close(self) -> None:
        """Close the S3 client."""
        if self._s3_client:
            await self._s3_ctx.__aexit__(None, None, None)
            self._s3_client = None
            logger.info("Closed S3 client")

    def _client(self) -> Any:
        if self._s3_client is None:
            raise BlobConnectionError("S3 client not connected")
        return self._s3_client

    async def get_upload_url(self, key: str) -> str:
        client = self._client()
        try:
            return await client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.config.bucket, "Key": key},
                ExpiresIn=self.config.upload_url_expiry_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise BlobError(f"Failed to presign upload for {key}") from e

    async def delete_object(self, key: str) -> None:
        client = self._client()
        try:
            await client.delete_object(Bucket=self.config.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise BlobError(f"Failed to delete {key}") from e
        logger.debug("Deleted blob", extra={"key": key})
