"""
Social graph engine: friend requests, friendships and blocks.

For an ordered pair (A, B) the relationship moves through these states:

    NONE --A requests B--> PENDING(A->B)
    PENDING(A->B) --B requests A--> FRIENDS      (request consumed)
    PENDING / FRIENDS --remove by either party--> NONE
    any --block by either party--> NONE, and new requests are refused

Invariants:
    - A FriendRequest and a Friendship never coexist for the same pair
    - Friendship rows are canonicalized (user1_id < user2_id)
    - No request is created while either party blocks the other
    - Every mutation is a single store closure

How to change safely:
    - Keep each state transition inside one closure
    - Notifications are enqueue-only; never deliver them from a closure
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..errors import ConflictError, NotFoundError, ValidationError
from ..store.database import Store, Transaction
from ..store.records import (
    Account,
    BlockedUser,
    FriendRequest,
    Friendship,
    Notification,
    Profile,
    is_valid_id,
    new_id,
    now_ms,
)

logger = logging.getLogger(__name__)


@dataclass
class UserView:
    """A profile as seen by another user."""

    user_id: str
    handle: str
    display_name: str
    bio: str
    status: str
    created_at: int
    mutual_friends: list[str] = field(default_factory=list)
    blocked: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "handle": self.handle,
            "displayName": self.display_name,
            "bio": self.bio,
            "status": self.status,
            "createdAt": self.created_at,
            "mutualFriends": self.mutual_friends,
            "blocked": self.blocked,
        }


def friend_ids(txn: Transaction, user_id: str) -> list[str]:
    """Ids of every friend of a user, in friendship creation order."""
    return [
        f.other(user_id)
        for f in txn.friendships.find(lambda f: user_id in (f.user1_id, f.user2_id))
    ]


def find_friendship(txn: Transaction, a: str, b: str) -> Friendship | None:
    user1, user2 = sorted((a, b))
    return txn.friendships.find_one(user1_id=user1, user2_id=user2)


def is_blocked_either(txn: Transaction, a: str, b: str) -> bool:
    return txn.blocks.exists(user_id=a, blocked_id=b) or txn.blocks.exists(
        user_id=b, blocked_id=a
    )


def blocked_ids(txn: Transaction, user_id: str) -> set[str]:
    """Ids of every user in a block relation with user_id, in either direction."""
    result = {b.blocked_id for b in txn.blocks.find(user_id=user_id)}
    result.update(b.user_id for b in txn.blocks.find(blocked_id=user_id))
    return result


def mutual_friend_handles(txn: Transaction, a: str, b: str, a_friends: list[str] | None = None) -> list[str]:
    """Handles of users who are friends with both a and b.

    Ids without a profile are skipped.
    """
    theirs = set(friend_ids(txn, b))
    handles = []
    for friend_id in a_friends if a_friends is not None else friend_ids(txn, a):
        if friend_id not in theirs:
            continue
        profile = txn.profiles.get(friend_id)
        if profile is not None and profile.handle:
            handles.append(profile.handle)
    return handles


def _clear_pair(txn: Transaction, a: str, b: str) -> int:
    """Delete the friendship and any requests between a and b."""
    removed = txn.friendships.delete_many(
        lambda f: {f.user1_id, f.user2_id} == {a, b}
    )
    txn.friend_requests.delete_many(from_id=a, to_id=b)
    txn.friend_requests.delete_many(from_id=b, to_id=a)
    return removed


def _notify(txn: Transaction, recipient_id: str, sender: Account, title: str) -> None:
    txn.notifications.insert(
        Notification(
            id=new_id(),
            recipient_id=recipient_id,
            sender_type="user",
            sender_id=sender.id,
            title=title,
            description="",
            created_at=now_ms(),
        )
    )


def _check_user_id(user_id: str) -> None:
    if not is_valid_id(user_id):
        raise ValidationError("Invalid user ID")


class SocialGraph:
    """Friend requests, friendships and blocks over the shared store."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def _view(
        self,
        txn: Transaction,
        viewer_id: str,
        profile: Profile,
        viewer_friends: list[str],
    ) -> UserView:
        return UserView(
            user_id=profile.id,
            handle=profile.handle,
            display_name=profile.display_name,
            bio=profile.bio,
            status=profile.status,
            created_at=profile.created_at,
            mutual_friends=mutual_friend_handles(txn, viewer_id, profile.id, viewer_friends),
            blocked=is_blocked_either(txn, viewer_id, profile.id),
        )

    async def add_friend(self, user: Account, target_id: str) -> bool:
        """Send a friend request, or accept the target's pending request.

        Args:
            user: Calling account
            target_id: Account to befriend

        Returns:
            True if this call completed a friendship, False if it created a
            pending request

        Raises:
            ValidationError: Self-friending or malformed id
            NotFoundError: Target does not exist
            ConflictError: Blocked pair, already friends, or request already sent
        """
        _check_user_id(target_id)
        if target_id == user.id:
            raise ValidationError("Cannot friend yourself")

        def add(txn: Transaction) -> bool:
            if txn.accounts.get(target_id) is None:
                raise NotFoundError("User not found")
            if is_blocked_either(txn, user.id, target_id):
                raise ConflictError("Cannot friend blocked user", status=400)
            if find_friendship(txn, user.id, target_id) is not None:
                raise ConflictError("Already friends")
            if txn.friend_requests.exists(from_id=user.id, to_id=target_id):
                raise ConflictError("Friend request already sent")

            theirs = txn.friend_requests.find_one(from_id=target_id, to_id=user.id)
            if theirs is not None:
                txn.friend_requests.delete(theirs.id)
                txn.friendships.insert(Friendship.between(user.id, target_id))
                _notify(txn, target_id, user, f"{user.handle} accepted your friend request")
                return True

            txn.friend_requests.insert(
                FriendRequest(id=new_id(), from_id=user.id, to_id=target_id, created_at=now_ms())
            )
            _notify(txn, target_id, user, f"{user.handle} sent you a friend request")
            return False

        accepted = await self.store.execute(add)
        logger.info(
            "Friend request processed",
            extra={"from": user.id, "to": target_id, "accepted": accepted},
        )
        return accepted

    async def remove_friend(self, user_id: str, target_id: str) -> bool:
        """Remove a friendship and any pending requests in either direction.

        Returns:
            True if a friendship was removed
        """
        _check_user_id(target_id)
        removed = await self.store.execute(lambda txn: _clear_pair(txn, user_id, target_id))
        return removed > 0

    async def toggle_block(self, user_id: str, target_id: str) -> bool:
        """Block the target, or unblock if already blocked.

        A fresh block also removes the friendship and requests for the pair.

        Returns:
            True if the target is now blocked

        Raises:
            ValidationError: Self-blocking or malformed id
            NotFoundError: Target does not exist
        """
        _check_user_id(target_id)
        if target_id == user_id:
            raise ValidationError("Cannot block yourself")

        def toggle(txn: Transaction) -> bool:
            if txn.accounts.get(target_id) is None:
                raise NotFoundError("User not found")
            if txn.blocks.exists(user_id=user_id, blocked_id=target_id):
                txn.blocks.delete_many(user_id=user_id, blocked_id=target_id)
                return False
            txn.blocks.insert(
                BlockedUser(id=new_id(), user_id=user_id, blocked_id=target_id, created_at=now_ms())
            )
            _clear_pair(txn, user_id, target_id)
            return True

        blocked = await self.store.execute(toggle)
        logger.info("Block toggled", extra={"user": user_id, "target": target_id, "blocked": blocked})
        return blocked

    async def mutual_friends(self, a: str, b: str) -> list[str]:
        return await self.store.execute(lambda txn: mutual_friend_handles(txn, a, b))

    async def list_friend_requests(self, user_id: str) -> list[UserView]:
        """Profiles of users with a pending request to user_id."""

        def load(txn: Transaction) -> list[UserView]:
            mine = friend_ids(txn, user_id)
            views = []
            for request in txn.friend_requests.find(to_id=user_id):
                profile = txn.profiles.get(request.from_id)
                if profile is not None:
                    views.append(self._view(txn, user_id, profile, mine))
            return views

        return await self.store.execute(load)

    async def list_friends(self, user_id: str) -> list[UserView]:
        def load(txn: Transaction) -> list[UserView]:
            mine = friend_ids(txn, user_id)
            views = []
            for friend_id in mine:
                profile = txn.profiles.get(friend_id)
                if profile is not None:
                    views.append(self._view(txn, user_id, profile, mine))
            return views

        return await self.store.execute(load)

    async def get_user(self, viewer_id: str, target_id: str) -> UserView:
        _check_user_id(target_id)

        def load(txn: Transaction) -> UserView | None:
            profile = txn.profiles.get(target_id)
            if profile is None:
                return None
            return self._view(txn, viewer_id, profile, friend_ids(txn, viewer_id))

        view = await self.store.execute(load)
        if view is None:
            raise NotFoundError("User not found")
        return view

    async def get_users(self, viewer_id: str, target_ids: list[str]) -> list[UserView]:
        """Bulk profile lookup; unknown ids are skipped."""
        for target_id in target_ids:
            _check_user_id(target_id)

        def load(txn: Transaction) -> list[UserView]:
            mine = friend_ids(txn, viewer_id)
            views = []
            for target_id in target_ids:
                profile = txn.profiles.get(target_id)
                if profile is not None:
                    views.append(self._view(txn, viewer_id, profile, mine))
            return views

        return await self.store.execute(load)
