"""
Integration tests for the social graph engine.

Tests cover:
- Friend request / accept state machine
- Removal and blocking
- Mutual friends and profile views
"""

import asyncio

import pytest

from backend.vrroom_server.errors import ConflictError, NotFoundError, ValidationError
from backend.vrroom_server.store.records import new_id


@pytest.fixture
def counts(store):
    def count():
        return store.run(
            lambda txn: (txn.friend_requests.count(), txn.friendships.count())
        )

    return count


class TestFriendRequests:
    """Tests for add_friend()."""

    @pytest.mark.asyncio
    async def test_request_then_accept(self, services, make_user, counts):
        """Mutual requests become one friendship and zero requests."""
        alice = await make_user("alice")
        bob = await make_user("bob")

        assert await services.social.add_friend(alice, bob.id) is False
        assert counts() == (1, 0)

        assert await services.social.add_friend(bob, alice.id) is True
        assert counts() == (0, 1)

    @pytest.mark.asyncio
    async def test_concurrent_mutual_requests(self, services, make_user, counts):
        """Crossing requests resolve to one friendship, never two requests."""
        alice = await make_user("alice")
        bob = await make_user("bob")

        results = await asyncio.gather(
            services.social.add_friend(alice, bob.id),
            services.social.add_friend(bob, alice.id),
        )

        assert sorted(results) == [False, True]
        assert counts() == (0, 1)

    @pytest.mark.asyncio
    async def test_notifications(self, services, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")

        await services.social.add_friend(alice, bob.id)
        await services.social.add_friend(bob, alice.id)

        to_bob = await services.accounts.list_notifications(bob.id)
        to_alice = await services.accounts.list_notifications(alice.id)
        assert [n.title for n in to_bob] == ["alice sent you a friend request"]
        assert [n.title for n in to_alice] == ["bob accepted your friend request"]
        assert to_alice[0].sender_id == bob.id

    @pytest.mark.asyncio
    async def test_duplicate_request(self, services, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        await services.social.add_friend(alice, bob.id)

        with pytest.raises(ConflictError, match="Friend request already sent"):
            await services.social.add_friend(alice, bob.id)

    @pytest.mark.asyncio
    async def test_already_friends(self, services, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        await services.social.add_friend(alice, bob.id)
        await services.social.add_friend(bob, alice.id)

        with pytest.raises(ConflictError, match="Already friends"):
            await services.social.add_friend(alice, bob.id)

    @pytest.mark.asyncio
    async def test_self_and_unknown(self, services, make_user):
        alice = await make_user("alice")

        with pytest.raises(ValidationError, match="Cannot friend yourself"):
            await services.social.add_friend(alice, alice.id)
        with pytest.raises(NotFoundError, match="User not found"):
            await services.social.add_friend(alice, new_id())
        with pytest.raises(ValidationError, match="Invalid user ID"):
            await services.social.add_friend(alice, "not-an-id")

    @pytest.mark.asyncio
    async def test_list_requests_and_friends(self, services, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        carol = await make_user("carol")
        await services.social.add_friend(bob, alice.id)
        await services.social.add_friend(carol, alice.id)
        await services.social.add_friend(alice, carol.id)

        requests = await services.social.list_friend_requests(alice.id)
        friends = await services.social.list_friends(alice.id)

        assert [v.handle for v in requests] == ["bob"]
        assert [v.handle for v in friends] == ["carol"]


class TestRemoveAndBlock:
    """Tests for remove_friend() and toggle_block()."""

    @pytest.mark.asyncio
    async def test_remove_friend_either_side(self, services, make_user, counts):
        alice = await make_user("alice")
        bob = await make_user("bob")
        await services.social.add_friend(alice, bob.id)
        await services.social.add_friend(bob, alice.id)

        assert await services.social.remove_friend(bob.id, alice.id) is True
        assert counts() == (0, 0)
        assert await services.social.remove_friend(bob.id, alice.id) is False

    @pytest.mark.asyncio
    async def test_remove_clears_pending_request(self, services, make_user, counts):
        alice = await make_user("alice")
        bob = await make_user("bob")
        await services.social.add_friend(alice, bob.id)

        assert await services.social.remove_friend(bob.id, alice.id) is False
        assert counts() == (0, 0)

    @pytest.mark.asyncio
    async def test_block_clears_relationship(self, services, make_user, counts):
        """A block removes friendship and requests and stops new requests."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        await services.social.add_friend(alice, bob.id)
        await services.social.add_friend(bob, alice.id)

        assert await services.social.toggle_block(alice.id, bob.id) is True
        assert counts() == (0, 0)

        for sender, target in ((alice, bob), (bob, alice)):
            with pytest.raises(ConflictError, match="Cannot friend blocked user") as exc:
                await services.social.add_friend(sender, target.id)
            assert exc.value.status == 400

    @pytest.mark.asyncio
    async def test_unblock_allows_requests_again(self, services, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        await services.social.toggle_block(alice.id, bob.id)

        assert await services.social.toggle_block(alice.id, bob.id) is False
        assert await services.social.add_friend(bob, alice.id) is False

    @pytest.mark.asyncio
    async def test_block_self(self, services, make_user):
        alice = await make_user("alice")

        with pytest.raises(ValidationError, match="Cannot block yourself"):
            await services.social.toggle_block(alice.id, alice.id)


class TestViews:
    """Tests for mutual friends and user views."""

    @pytest.mark.asyncio
    async def test_mutual_friends(self, services, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        carol = await make_user("carol")
        for a, b in ((alice, carol), (bob, carol)):
            await services.social.add_friend(a, b.id)
            await services.social.add_friend(b, a.id)

        assert await services.social.mutual_friends(alice.id, bob.id) == ["carol"]

        view = await services.social.get_user(alice.id, bob.id)
        assert view.mutual_friends == ["carol"]
        assert view.blocked is False
        assert view.to_dict()["mutualFriends"] == ["carol"]

    @pytest.mark.asyncio
    async def test_blocked_flag_either_direction(self, services, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        await services.social.toggle_block(bob.id, alice.id)

        assert (await services.social.get_user(alice.id, bob.id)).blocked is True

    @pytest.mark.asyncio
    async def test_get_users_skips_unknown(self, services, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")

        views = await services.social.get_users(alice.id, [bob.id, new_id()])

        assert [v.user_id for v in views] == [bob.id]

    @pytest.mark.asyncio
    async def test_get_unknown_user(self, services, make_user):
        alice = await make_user("alice")

        with pytest.raises(NotFoundError, match="User not found"):
            await services.social.get_user(alice.id, new_id())
