"""
Content visibility policy for VRroom.

One policy decides whether a caller may see a content item. It is shared by
both HTTP surfaces, content reads, key reads, downloads and content search.

A viewer can see content when any of these grants applies:
    - the content is public
    - the viewer owns it
    - the viewer is a member of a share group attached to it
    - the viewer is in its direct-share list

Invariants:
    - Grants are combined by logical OR; no grant ever denies
    - Anonymous viewers only see public content
    - Visibility checks happen before any content data is returned

How to change safely:
    - New grants must be additive
    - Callers must keep reporting invisible and missing content identically
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum

from ..store.database import Transaction
from ..store.records import Content, ShareGroup

logger = logging.getLogger(__name__)


class Grant(Enum):
    """Reasons a viewer is allowed to see content."""

    PUBLIC = "public"
    OWNER = "owner"
    GROUP = "group"
    DIRECT = "direct"


class VisibilityPolicy:
    """Evaluates read access to content items.

    Example:
        >>> policy = VisibilityPolicy()
        >>> policy.can_view(content, viewer_id="u-1", groups=[])
        False
    """

    @staticmethod
    def is_owner(content: Content, viewer_id: str | None) -> bool:
        return viewer_id is not None and content.owner_id == viewer_id

    def grants(
        self,
        content: Content,
        viewer_id: str | None,
        groups: Iterable[ShareGroup],
    ) -> list[Grant]:
        """List every grant that applies to a viewer.

        Args:
            content: Content item being read
            viewer_id: Caller's account id, or None when anonymous
            groups: Share groups attached to the content

        Returns:
            Applicable grants (empty when the viewer cannot see it)
        """
        result: list[Grant] = []
        if content.is_public:
            result.append(Grant.PUBLIC)
        if viewer_id is None:
            return result
        if self.is_owner(content, viewer_id):
            result.append(Grant.OWNER)
        attached = set(content.share_group_ids)
        if any(g.id in attached and viewer_id in g.member_ids for g in groups):
            result.append(Grant.GROUP)
        if viewer_id in content.shared_with_user_ids:
            result.append(Grant.DIRECT)
        return result

    def can_view(
        self,
        content: Content,
        viewer_id: str | None,
        groups: Iterable[ShareGroup],
    ) -> bool:
        return bool(self.grants(content, viewer_id, groups))

    def can_view_in(self, txn: Transaction, content: Content, viewer_id: str | None) -> bool:
        """Evaluate the policy inside a store closure, loading attached groups."""
        if content.is_public or self.is_owner(content, viewer_id):
            return True
        groups = [g for g in (txn.share_groups.get(gid) for gid in content.share_group_ids) if g]
        return self.can_view(content, viewer_id, groups)
