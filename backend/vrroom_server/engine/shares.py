"""
Share group management.

Share groups are owner-managed member lists that can be attached to any
number of the owner's content items. Every content item also has one
default group created with it; default groups anchor the content and are
managed only through the content engine.

Invariants:
    - Default groups are never listed, deleted or given members here
    - Deleting a group detaches it from every content item in the same closure
    - Members must be existing accounts

How to change safely:
    - Keep default-group checks ahead of any mutation
"""

from __future__ import annotations

import logging
from typing import Any

from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..store.database import Store, Transaction
from ..store.records import ShareGroup, is_valid_id, new_id, now_ms

logger = logging.getLogger(__name__)


def group_to_dict(group: ShareGroup) -> dict[str, Any]:
    return {
        "id": group.id,
        "name": group.name,
        "ownerId": group.owner_id,
        "memberIds": group.member_ids,
    }


class ShareGroupService:
    """Create, delete and populate share groups."""

    def __init__(self, store: Store) -> None:
        self.store = store

    @staticmethod
    def _owned(txn: Transaction, owner_id: str, group_id: str) -> ShareGroup:
        if not is_valid_id(group_id):
            raise ValidationError("Invalid group ID")
        group = txn.share_groups.get(group_id)
        if group is None:
            raise NotFoundError("Group not found")
        if group.owner_id != owner_id:
            raise AuthorizationError("Group is not owned by you")
        return group

    async def list_groups(self, owner_id: str) -> list[ShareGroup]:
        """The owner's non-default groups."""
        return await self.store.execute(
            lambda txn: txn.share_groups.find(owner_id=owner_id, is_default=False)
        )

    async def create_group(self, owner_id: str, name: str) -> ShareGroup:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("A name is required")
        group = ShareGroup(id=new_id(), owner_id=owner_id, name=name.strip())
        await self.store.execute(lambda txn: txn.share_groups.insert(group))
        logger.info("Created share group", extra={"group_id": group.id, "owner_id": owner_id})
        return group

    async def delete_group(self, owner_id: str, group_id: str) -> None:
        def delete(txn: Transaction) -> None:
            group = self._owned(txn, owner_id, group_id)
            if group.is_default:
                raise AuthorizationError("Cannot delete a default group")
            for content in txn.contents.find(lambda c: group.id in c.share_group_ids):
                content.share_group_ids.remove(group.id)
                content.updated_at = now_ms()
                txn.contents.update(content)
            txn.share_groups.delete(group.id)

        await self.store.execute(delete)
        logger.info("Deleted share group", extra={"group_id": group_id, "owner_id": owner_id})

    async def add_member(self, owner_id: str, group_id: str, user_id: str) -> None:
        if not is_valid_id(user_id):
            raise ValidationError("Invalid user ID")

        def add(txn: Transaction) -> None:
            group = self._owned(txn, owner_id, group_id)
            if group.is_default:
                raise AuthorizationError("Cannot share through a default group")
            if txn.profiles.get(user_id) is None:
                raise NotFoundError("User not found")
            if user_id not in group.member_ids:
                group.member_ids.append(user_id)
                txn.share_groups.update(group)

        await self.store.execute(add)

    async def remove_member(self, owner_id: str, group_id: str, user_id: str) -> None:
        if not is_valid_id(user_id):
            raise ValidationError("Invalid user ID")

        def remove(txn: Transaction) -> None:
            group = self._owned(txn, owner_id, group_id)
            if txn.profiles.get(user_id) is None:
                raise NotFoundError("User not found")
            if user_id in group.member_ids:
                group.member_ids.remove(user_id)
                txn.share_groups.update(group)

        await self.store.execute(remove)
