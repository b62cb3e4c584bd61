"""
In-memory blob store for testing and local development.

Invariants:
    - All data is lost on process exit
    - Issued URLs are fake but deterministic per key

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the BlobStore protocol
"""

from __future__ import annotations

import logging

from .base import BlobConnectionError, BlobError

logger = logging.getLogger(__name__)


class InMemoryBlobStore:
    """In-memory implementation of BlobStore.

    Records every issued upload key and every deleted key so tests can
    assert on blob traffic. Individual keys can be made to fail on delete.

    Example:
        >>> blobs = InMemoryBlobStore()
        >>> await blobs.connect()
        >>> await blobs.get_upload_url("content/c-1/thumbnail")
        'memory://vrroom/content/c-1/thumbnail'
    """

    def __init__(self, base_url: str = "memory://vrroom", connected: bool = False) -> None:
        self.base_url = base_url
        self.objects: dict[str, bytes] = {}
        self.upload_keys: list[str] = []
        self.deleted_keys: list[str] = []
        self.failing_keys: set[str] = set()
        self._connected = connected

    async def connect(self) -> None:
        self._connected = True

    async def close(self) -> None:
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _check(self) -> None:
        if not self._connected:
            raise BlobConnectionError("Blob store not connected")

    async def get_upload_url(self, key: str) -> str:
        self._check()
        self.upload_keys.append(key)
        return f"{self.base_url}/{key}"

    async def delete_object(self, key: str) -> None:
        self._check()
        if key in self.failing_keys:
            raise BlobError(f"Simulated delete failure for {key}")
        self.deleted_keys.append(key)
        self.objects.pop(key, None)

    def put(self, key: str, data: bytes) -> None:
        """Simulate a client upload to a previously issued URL."""
        self.objects[key] = data
