"""
Record types persisted by the store.

Each record is a dataclass stored as one JSON document in the table named by
its ``collection``. Ids are UUID4 strings, timestamps are Unix milliseconds.

Invariants:
    - Friendship rows are canonicalized (user1_id < user2_id)
    - Bundles are never mutated after insert
    - Content.share_group_ids always contains the content's default group
"""

from __future__ import annotations

import dataclasses
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, TypeVar

R = TypeVar("R", bound="Record")

CONTENT_TYPES = ("avatar", "prop", "world", "gamemode")


def new_id() -> str:
    """Generate a fresh record id."""
    return str(uuid.uuid4())


def now_ms() -> int:
    return int(time.time() * 1000)


def is_valid_id(value: Any) -> bool:
    """Check that a value is a well-formed record id."""
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


class Rank(str, Enum):
    """Account rank carried in token claims."""

    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"
    DEVELOPER = "developer"


@dataclass
class Record:
    """Base for stored documents."""

    collection: ClassVar[str] = ""

    id: str

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls: type[R], data: dict[str, Any]) -> R:
        names = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class Account(Record):
    collection: ClassVar[str] = "accounts"

    handle: str = ""
    email: str = ""
    password_hash: str = ""
    password_salt: str = ""
    is_verified: bool = False
    verification_code: str | None = None
    rank: str = Rank.USER.value
    game_token: str = ""
    created_at: int = 0
    updated_at: int = 0


@dataclass
class Profile(Record):
    """Public profile; shares its id with the owning account."""

    collection: ClassVar[str] = "profiles"

    handle: str = ""
    display_name: str = ""
    bio: str = ""
    status: str = ""
    created_at: int = 0
    updated_at: int = 0
    last_activity: int = 0


@dataclass
class Session(Record):
    collection: ClassVar[str] = "sessions"

    account_id: str = ""
    device_info: str = ""
    token_id: str = ""
    scheme: str = ""
    expires_at: int = 0
    created_at: int = 0
    last_used_at: int = 0


@dataclass
class JoinToken(Record):
    collection: ClassVar[str] = "join_tokens"

    account_id: str = ""
    token: str = ""
    expires_at: int = 0


@dataclass
class FriendRequest(Record):
    collection: ClassVar[str] = "friend_requests"

    from_id: str = ""
    to_id: str = ""
    created_at: int = 0


@dataclass
class Friendship(Record):
    collection: ClassVar[str] = "friendships"

    user1_id: str = ""
    user2_id: str = ""
    created_at: int = 0

    @classmethod
    def between(cls, a: str, b: str) -> Friendship:
        """Build a canonicalized friendship row for an unordered pair."""
        user1, user2 = sorted((a, b))
        return cls(id=new_id(), user1_id=user1, user2_id=user2, created_at=now_ms())

    def other(self, user_id: str) -> str:
        return self.user2_id if self.user1_id == user_id else self.user1_id


@dataclass
class BlockedUser(Record):
    collection: ClassVar[str] = "blocks"

    user_id: str = ""
    blocked_id: str = ""
    created_at: int = 0


@dataclass
class Notification(Record):
    collection: ClassVar[str] = "notifications"

    recipient_id: str = ""
    sender_type: str = ""
    sender_id: str = ""
    title: str = ""
    description: str = ""
    created_at: int = 0


@dataclass
class Content(Record):
    collection: ClassVar[str] = "contents"

    owner_id: str = ""
    name: str = ""
    description: str = ""
    content_type: str = ""
    is_public: bool = False
    public_at: int | None = None
    content_warning_tags: list[str] = field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0
    active_bundle_id: str | None = None
    previous_version_ids: list[str] = field(default_factory=list)
    share_group_ids: list[str] = field(default_factory=list)
    shared_with_user_ids: list[str] = field(default_factory=list)


@dataclass
class Bundle(Record):
    collection: ClassVar[str] = "bundles"

    content_id: str = ""
    decryption_key: str = ""
    version: int = 0
    created_at: int = 0


@dataclass
class ShareGroup(Record):
    collection: ClassVar[str] = "share_groups"

    owner_id: str = ""
    name: str = ""
    is_default: bool = False
    member_ids: list[str] = field(default_factory=list)


@dataclass
class Ticket(Record):
    collection: ClassVar[str] = "tickets"

    account_id: str = ""
    type: str = ""
    title: str = ""
    status: str = "open"
    content_id: str | None = None
    created_at: int = 0
    updated_at: int = 0


@dataclass
class StoredFile:
    """A file kept in the store's own file area (not the blob store)."""

    id: str
    filename: str
    data: bytes
    uploaded_at: int = 0


RECORD_TYPES: tuple[type[Record], ...] = (
    Account,
    Profile,
    Session,
    JoinToken,
    FriendRequest,
    Friendship,
    BlockedUser,
    Notification,
    Content,
    Bundle,
    ShareGroup,
    Ticket,
)
