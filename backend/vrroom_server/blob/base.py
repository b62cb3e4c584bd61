"""
Base protocol and types for the blob store collaborator.

Content bundles, thumbnails and profile images live in an object store.
Clients upload directly to presigned URLs; the server only issues those URLs
and deletes objects.

Invariants:
    - Blob calls are never made while the store lock is held
    - Object keys follow the layout in content_bundle_key() and friends
    - delete_object() on a missing key is not an error

How to change safely:
    - New backends must implement the BlobStore protocol
    - Key layout changes orphan existing objects; migrate them first
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import ServerConfig


class BlobError(Exception):
    """Base exception for blob store operations."""

    pass


class BlobConnectionError(BlobError):
    """Blob store client is not connected."""

    pass


def content_bundle_key(content_id: str, bundle_id: str) -> str:
    return f"content/{content_id}/{bundle_id}"


def content_thumbnail_key(content_id: str) -> str:
    return f"content/{content_id}/thumbnail"


def profile_thumbnail_key(account_id: str) -> str:
    return f"profiles/{account_id}/thumbnail"


def profile_banner_key(account_id: str) -> str:
    return f"profiles/{account_id}/banner"


@runtime_checkable
class BlobStore(Protocol):
    """Protocol for blob store backends.

    Example:
        >>> blobs = S3BlobStore(config.s3)
        >>> await blobs.connect()
        >>> url = await blobs.get_upload_url("content/c-1/b-1")
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend. Must be called before other operations."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def get_upload_url(self, key: str) -> str:
        """Issue a presigned URL the client can PUT the object to.

        Args:
            key: Object key

        Returns:
            Time-limited upload URL

        Raises:
            BlobError: If the URL cannot be issued
        """
        ...

    @abstractmethod
    async def delete_object(self, key: str) -> None:
        """Delete an object.

        Raises:
            BlobError: If the backend rejects the delete
        """
        ...


def create_blob_store(config: ServerConfig) -> BlobStore:
    """Factory function to create a blob store from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import BlobBackend
    from .memory import InMemoryBlobStore
    from .s3 import S3BlobStore

    if config.blob_backend == BlobBackend.S3:
        return S3BlobStore(config.s3)
    elif config.blob_backend == BlobBackend.MEMORY:
        return InMemoryBlobStore()
    else:
        raise ValueError(f"Unsupported blob backend: {config.blob_backend}")
