"""
User and content search with offset pagination.

Both searches return a SearchPage; has_more is computed by fetching one
extra item past the requested page.

Invariants:
    - User search never returns the viewer or anyone in a block relation
      with the viewer
    - Content search only returns content the viewer can see
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..errors import ValidationError
from ..store.database import Store, Transaction
from ..store.records import CONTENT_TYPES, Content, Profile
from .social_graph import blocked_ids
from .visibility import VisibilityPolicy

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 100

SORTS = {
    "newest": (lambda c: c.created_at, True),
    "updated": (lambda c: c.updated_at, True),
    "name": (lambda c: c.name.lower(), False),
}


@dataclass
class SearchPage:
    items: list[dict[str, Any]] = field(default_factory=list)
    has_more: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"items": self.items, "hasMore": self.has_more}


def _paginate(items: list[Any], page: int, limit: int) -> tuple[list[Any], bool]:
    start = page * limit
    window = items[start : start + limit + 1]
    return window[:limit], len(window) > limit


def _check_paging(page: int, limit: int) -> None:
    if page < 0 or limit <= 0 or limit > MAX_LIMIT:
        raise ValidationError("Invalid pagination")


def _profile_item(profile: Profile) -> dict[str, Any]:
    return {
        "userId": profile.id,
        "handle": profile.handle,
        "displayName": profile.display_name,
        "bio": profile.bio,
    }


def _content_item(content: Content) -> dict[str, Any]:
    return {
        "id": content.id,
        "name": content.name,
        "description": content.description,
        "ownerId": content.owner_id,
        "contentType": content.content_type,
        "isPublic": content.is_public,
        "createdAt": content.created_at,
        "updatedAt": content.updated_at,
        "contentWarningTags": content.content_warning_tags,
    }


class SearchService:
    def __init__(self, store: Store, visibility: VisibilityPolicy) -> None:
        self.store = store
        self.visibility = visibility

    async def search_users(
        self,
        viewer_id: str,
        name: str | None = None,
        page: int = 0,
        limit: int = DEFAULT_LIMIT,
    ) -> SearchPage:
        """Case-insensitive substring search over handles and display names."""
        _check_paging(page, limit)
        needle = (name or "").lower()

        def search(txn: Transaction) -> SearchPage:
            hidden = blocked_ids(txn, viewer_id)
            hidden.add(viewer_id)
            matches = [
                p
                for p in txn.profiles.find(lambda p: p.id not in hidden)
                if not needle
                or needle in p.handle.lower()
                or needle in (p.display_name or "").lower()
            ]
            items, has_more = _paginate(matches, page, limit)
            return SearchPage(items=[_profile_item(p) for p in items], has_more=has_more)

        return await self.store.execute(search)

    async def search_content(
        self,
        viewer_id: str | None,
        content_type: str,
        name: str | None = None,
        tags: list[str] | None = None,
        sort: str | None = None,
        page: int = 0,
        limit: int = DEFAULT_LIMIT,
    ) -> SearchPage:
        """Search visible content of one type.

        Args:
            viewer_id: Caller's account id
            content_type: One of CONTENT_TYPES
            name: Case-insensitive substring of the name
            tags: Warning tags that must all be present
            sort: "newest" (default), "updated" or "name"
            page: Zero-based page index
            limit: Page size
        """
        _check_paging(page, limit)
        if content_type not in CONTENT_TYPES:
            return SearchPage()
        needle = (name or "").lower()
        required = [t.strip() for t in tags or [] if t.strip()]
        key, reverse = SORTS.get(sort or "newest", SORTS["newest"])

        def search(txn: Transaction) -> SearchPage:
            matches = [
                c
                for c in txn.contents.find(content_type=content_type)
                if self.visibility.can_view_in(txn, c, viewer_id)
                and (not needle or needle in c.name.lower())
                and all(t in c.content_warning_tags for t in required)
            ]
            matches.sort(key=key, reverse=reverse)
            items, has_more = _paginate(matches, page, limit)
            return SearchPage(items=[_content_item(c) for c in items], has_more=has_more)

        return await self.store.execute(search)
