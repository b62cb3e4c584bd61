"""
Store module for VRroom Server - the single serialized system of record.

This module handles:
- Typed record documents (accounts, social graph, content, share groups)
- One SQLite connection guarded by one process-wide lock
- Closure-based transactions shared by every engine
- The store's own file area for flat-surface uploads

Invariants:
    - Every mutation happens inside Store.run / Store.execute
    - Uniqueness rules are checked in closures and backed by indexes
    - Blob storage is never touched while the lock is held

How to change safely:
    - Add record types in records.py and register them in RECORD_TYPES
    - Keep closure bodies free of I/O other than the store itself
"""

from .database import Collection, FileStorage, Store, Transaction
from .records import (
    CONTENT_TYPES,
    Account,
    BlockedUser,
    Bundle,
    Content,
    FriendRequest,
    Friendship,
    JoinToken,
    Notification,
    Profile,
    Rank,
    Record,
    Session,
    ShareGroup,
    StoredFile,
    Ticket,
    is_valid_id,
    new_id,
    now_ms,
)

__all__ = [
    # Store
    "Store",
    "Transaction",
    "Collection",
    "FileStorage",
    # Records
    "Record",
    "Account",
    "Profile",
    "Session",
    "JoinToken",
    "FriendRequest",
    "Friendship",
    "BlockedUser",
    "Notification",
    "Content",
    "Bundle",
    "ShareGroup",
    "Ticket",
    "StoredFile",
    "Rank",
    "CONTENT_TYPES",
    # Helpers
    "new_id",
    "now_ms",
    "is_valid_id",
]
