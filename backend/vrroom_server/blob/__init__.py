"""
Blob store abstraction for VRroom Server.

This module provides a pluggable object store for bundles and images:
- S3 and S3-compatible endpoints (production)
- In-memory (for testing)

Invariants:
    - The server never streams bundle bytes; clients use presigned URLs
    - Blob calls happen outside the store lock

How to change safely:
    - New backends must implement the BlobStore protocol
"""

from .base import (
    BlobConnectionError,
    BlobError,
    BlobStore,
    content_bundle_key,
    content_thumbnail_key,
    create_blob_store,
    profile_banner_key,
    profile_thumbnail_key,
)
from .memory import InMemoryBlobStore
from .s3 import S3BlobStore

__all__ = [
    # Protocol and errors
    "BlobStore",
    "BlobError",
    "BlobConnectionError",
    "create_blob_store",
    # Key layout
    "content_bundle_key",
    "content_thumbnail_key",
    "profile_thumbnail_key",
    "profile_banner_key",
    # Implementations
    "S3BlobStore",
    "InMemoryBlobStore",
]
