"""
Unit tests for the content visibility policy.
"""

import pytest

from backend.vrroom_server.engine.visibility import Grant, VisibilityPolicy
from backend.vrroom_server.store.records import Content, ShareGroup, new_id

OWNER = "owner"
VIEWER = "viewer"


@pytest.fixture
def policy():
    return VisibilityPolicy()


@pytest.fixture
def group():
    return ShareGroup(id=new_id(), owner_id=OWNER, name="friends", member_ids=[VIEWER])


def make_content(**kwargs) -> Content:
    return Content(id=new_id(), owner_id=OWNER, content_type="world", **kwargs)


class TestVisibilityPolicy:
    """Tests for VisibilityPolicy."""

    def test_private_content_hidden_from_strangers(self, policy):
        assert not policy.can_view(make_content(), VIEWER, [])

    def test_public_visible_to_anyone(self, policy):
        content = make_content(is_public=True)

        assert policy.can_view(content, VIEWER, [])
        assert policy.can_view(content, None, [])

    def test_owner_always_sees_own_content(self, policy):
        assert policy.grants(make_content(), OWNER, []) == [Grant.OWNER]

    def test_anonymous_sees_only_public(self, policy, group):
        content = make_content(share_group_ids=[group.id], shared_with_user_ids=[VIEWER])

        assert not policy.can_view(content, None, [group])

    def test_group_member_sees_attached_group_content(self, policy, group):
        content = make_content(share_group_ids=[group.id])

        assert policy.grants(content, VIEWER, [group]) == [Grant.GROUP]

    def test_unattached_group_grants_nothing(self, policy, group):
        """Membership only counts for groups attached to the content."""
        assert not policy.can_view(make_content(), VIEWER, [group])

    def test_direct_share(self, policy):
        content = make_content(shared_with_user_ids=[VIEWER])

        assert policy.grants(content, VIEWER, []) == [Grant.DIRECT]

    def test_grants_combine(self, policy, group):
        """Grants are evaluated independently and OR-ed."""
        content = make_content(
            is_public=True, share_group_ids=[group.id], shared_with_user_ids=[VIEWER]
        )

        assert policy.grants(content, VIEWER, [group]) == [
            Grant.PUBLIC,
            Grant.GROUP,
            Grant.DIRECT,
        ]

    def test_can_view_in_loads_groups(self, policy, group, store):
        content = make_content(share_group_ids=[group.id])
        store.run(lambda txn: txn.share_groups.insert(group))

        assert store.run(lambda txn: policy.can_view_in(txn, content, VIEWER))
        assert not store.run(lambda txn: policy.can_view_in(txn, content, "stranger"))
