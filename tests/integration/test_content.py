"""
Integration tests for the content & versioning engine.

Tests cover:
- Creation with a default share group
- Bundle chain versioning and active pointer
- Visibility gating and ownership errors
- Share groups and direct shares on content
- Stored files for the flat surface
- Deletion and blob release
"""

import asyncio

import pytest

from backend.vrroom_server.engine.content import UploadedFile, content_to_dict
from backend.vrroom_server.engine.updates import ContentUpdate
from backend.vrroom_server.errors import (
    AuthorizationError,
    ConflictError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from backend.vrroom_server.store.records import new_id


class TestCreateContent:
    """Tests for create_content()."""

    @pytest.mark.asyncio
    async def test_creates_default_group(self, services, store, make_user):
        alice = await make_user("alice")

        content = await services.content.create_content(alice.id, "world", name="Lobby")

        assert len(content.share_group_ids) == 1
        group = store.run(lambda txn: txn.share_groups.get(content.share_group_ids[0]))
        assert group.is_default is True
        assert group.owner_id == alice.id
        assert group.member_ids == []

    @pytest.mark.asyncio
    async def test_content_type_required(self, services, make_user):
        alice = await make_user("alice")

        with pytest.raises(ValidationError, match="Content type required"):
            await services.content.create_content(alice.id, "")
        with pytest.raises(ValidationError, match="Invalid content type"):
            await services.content.create_content(alice.id, "vehicle")

    @pytest.mark.asyncio
    async def test_list_owned(self, services, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        mine = await services.content.create_content(alice.id, "avatar")
        await services.content.create_content(bob.id, "avatar")

        assert [c.id for c in await services.content.list_owned(alice.id)] == [mine.id]


class TestBundles:
    """Tests for the bundle chain."""

    @pytest.mark.asyncio
    async def test_versions_increase_from_one(self, services, blobs, make_user):
        alice = await make_user("alice")
        content = await services.content.create_content(alice.id, "world")

        first = await services.content.update_bundle(alice.id, content.id, "K1")
        second = await services.content.update_bundle(alice.id, content.id, "K2")

        assert (first.bundle.version, second.bundle.version) == (1, 2)
        current = await services.content.get_content(alice.id, content.id)
        assert current.active_bundle_id == second.bundle.id
        assert current.previous_version_ids == [first.bundle.id, second.bundle.id]
        assert second.upload_url.endswith(f"content/{content.id}/{second.bundle.id}")
        assert blobs.upload_keys[-1] == f"content/{content.id}/{second.bundle.id}"

    @pytest.mark.asyncio
    async def test_rollback_then_new_version_does_not_reuse(self, services, make_user):
        alice = await make_user("alice")
        content = await services.content.create_content(alice.id, "world")
        first = await services.content.update_bundle(alice.id, content.id, "K1")
        await services.content.update_bundle(alice.id, content.id, "K2")

        await services.content.set_active_bundle(alice.id, content.id, first.bundle.id)
        third = await services.content.update_bundle(alice.id, content.id, "K3")

        assert third.bundle.version == 3

    @pytest.mark.asyncio
    async def test_get_key_follows_active_bundle(self, services, make_user):
        alice = await make_user("alice")
        content = await services.content.create_content(alice.id, "world")

        with pytest.raises(ConflictError):
            await services.content.get_key(alice.id, content.id)

        first = await services.content.update_bundle(alice.id, content.id, "K1")
        await services.content.update_bundle(alice.id, content.id, "K2")
        assert await services.content.get_key(alice.id, content.id) == "K2"

        await services.content.set_active_bundle(alice.id, content.id, first.bundle.id)
        assert await services.content.get_key(alice.id, content.id) == "K1"

    @pytest.mark.asyncio
    async def test_set_active_rejects_foreign_bundle(self, services, make_user):
        alice = await make_user("alice")
        one = await services.content.create_content(alice.id, "world")
        two = await services.content.create_content(alice.id, "world")
        other = await services.content.update_bundle(alice.id, two.id, "K")

        with pytest.raises(AuthorizationError, match="Bundle does not belong to this content"):
            await services.content.set_active_bundle(alice.id, one.id, other.bundle.id)
        with pytest.raises(NotFoundError, match="Bundle not found"):
            await services.content.set_active_bundle(alice.id, one.id, new_id())

    @pytest.mark.asyncio
    async def test_list_bundles_owner_only(self, services, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        content = await services.content.create_content(alice.id, "world")
        await services.content.update_content(
            alice.id, content.id, ContentUpdate.from_payload({"isPublic": True})
        )
        await services.content.update_bundle(alice.id, content.id, "K1")

        assert [b.version for b in await services.content.list_bundles(alice.id, content.id)] == [1]
        with pytest.raises(AuthorizationError, match="Content is not owned by you"):
            await services.content.list_bundles(bob.id, content.id)

    @pytest.mark.asyncio
    async def test_update_thumbnail_url(self, services, make_user):
        alice = await make_user("alice")
        content = await services.content.create_content(alice.id, "prop")

        url = await services.content.update_thumbnail(alice.id, content.id)

        assert url.endswith(f"content/{content.id}/thumbnail")

    @pytest.mark.asyncio
    async def test_concurrent_updates_get_distinct_versions(self, services, make_user):
        """Parallel uploads never share or skip a version number."""
        alice = await make_user("alice")
        content = await services.content.create_content(alice.id, "world")

        uploads = await asyncio.gather(
            *(services.content.update_bundle(alice.id, content.id, f"K{i}") for i in range(10))
        )

        assert sorted(u.bundle.version for u in uploads) == list(range(1, 11))
        current = await services.content.get_content(alice.id, content.id)
        assert len(current.previous_version_ids) == 10
        latest = max(uploads, key=lambda u: u.bundle.version)
        assert current.active_bundle_id == latest.bundle.id

    @pytest.mark.asyncio
    async def test_upload_url_failure(self, services, blobs, make_user):
        alice = await make_user("alice")
        content = await services.content.create_content(alice.id, "world")
        await blobs.close()

        with pytest.raises(InternalError) as exc:
            await services.content.update_bundle(alice.id, content.id, "K1")
        assert exc.value.status == 500
        with pytest.raises(InternalError):
            await services.content.update_thumbnail(alice.id, content.id)


class TestVisibility:
    """Tests for visibility gating through the engine."""

    @pytest.mark.asyncio
    async def test_private_is_indistinguishable_from_missing(self, services, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        content = await services.content.create_content(alice.id, "world")

        with pytest.raises(NotFoundError) as hidden:
            await services.content.get_content(bob.id, content.id)
        with pytest.raises(NotFoundError) as missing:
            await services.content.get_content(bob.id, new_id())

        assert hidden.value.to_dict() == missing.value.to_dict()

    @pytest.mark.asyncio
    async def test_public_visible_but_not_editable(self, services, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        content = await services.content.create_content(alice.id, "world")
        await services.content.update_content(
            alice.id, content.id, ContentUpdate.from_payload({"isPublic": True})
        )

        assert (await services.content.get_content(None, content.id)).id == content.id
        with pytest.raises(AuthorizationError):
            await services.content.update_content(
                bob.id, content.id, ContentUpdate.from_payload({"name": "Mine"})
            )

    @pytest.mark.asyncio
    async def test_group_share_grants_access(self, services, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        content = await services.content.create_content(alice.id, "world")
        await services.content.update_bundle(alice.id, content.id, "K1")
        group = await services.shares.create_group(alice.id, "crew")
        await services.shares.add_member(alice.id, group.id, bob.id)

        await services.content.attach_share_group(alice.id, content.id, group.id)
        assert await services.content.get_key(bob.id, content.id) == "K1"

        await services.content.detach_share_group(alice.id, content.id, group.id)
        with pytest.raises(NotFoundError):
            await services.content.get_key(bob.id, content.id)

    @pytest.mark.asyncio
    async def test_default_group_cannot_be_attached_or_detached(self, services, store, make_user):
        alice = await make_user("alice")
        content = await services.content.create_content(alice.id, "world")
        other = await services.content.create_content(alice.id, "world")
        default_id = content.share_group_ids[0]

        with pytest.raises(AuthorizationError, match="Cannot remove the default group"):
            await services.content.detach_share_group(alice.id, content.id, default_id)
        with pytest.raises(AuthorizationError, match="Cannot add a default group"):
            await services.content.attach_share_group(alice.id, other.id, default_id)

    @pytest.mark.asyncio
    async def test_direct_share(self, services, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        content = await services.content.create_content(alice.id, "avatar")

        await services.content.set_direct_shares(alice.id, content.id, [bob.id, bob.id])

        seen = await services.content.get_content(bob.id, content.id)
        assert seen.shared_with_user_ids == [bob.id]
        assert "sharedWithUserIds" not in content_to_dict(seen, bob.id)
        assert content_to_dict(seen, alice.id)["sharedWithUserIds"] == [bob.id]

    @pytest.mark.asyncio
    async def test_share_groups_listing(self, services, make_user):
        alice = await make_user("alice")
        content = await services.content.create_content(alice.id, "world")
        group = await services.shares.create_group(alice.id, "crew")
        await services.content.attach_share_group(alice.id, content.id, group.id)

        groups = await services.content.list_share_groups(alice.id, content.id)

        assert groups == [content.share_group_ids[0], group.id]


class TestStoredFiles:
    """Tests for flat-surface file storage."""

    @pytest.mark.asyncio
    async def test_store_and_open(self, services, make_user):
        alice = await make_user("alice")
        content = await services.content.create_content(alice.id, "world")

        await services.content.store_files(
            alice.id,
            content.id,
            file=UploadedFile("lobby.bundle", b"bundle"),
            thumbnail=UploadedFile("lobby.png", b"png"),
            update=ContentUpdate.from_payload({"name": "Lobby"}),
        )

        stored = await services.content.open_file(alice.id, content.id)
        assert (stored.filename, stored.data) == ("lobby.bundle", b"bundle")
        image = await services.content.open_image(alice.id, f"{content.id}-thumbnail")
        assert image.data == b"png"
        assert (await services.content.get_content(alice.id, content.id)).name == "Lobby"

    @pytest.mark.asyncio
    async def test_thumbnail_follows_visibility(self, services, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        content = await services.content.create_content(alice.id, "world")
        await services.content.store_files(
            alice.id, content.id, thumbnail=UploadedFile("t.png", b"png")
        )

        with pytest.raises(NotFoundError, match="File not found"):
            await services.content.open_image(bob.id, f"{content.id}-thumbnail")

    @pytest.mark.asyncio
    async def test_content_file_not_served_as_image(self, services, make_user):
        alice = await make_user("alice")
        content = await services.content.create_content(alice.id, "world")
        await services.content.store_files(alice.id, content.id, file=UploadedFile("a.bin", b"x"))

        with pytest.raises(NotFoundError):
            await services.content.open_image(alice.id, content.id)

    @pytest.mark.asyncio
    async def test_missing_file(self, services, make_user):
        alice = await make_user("alice")
        content = await services.content.create_content(alice.id, "world")

        with pytest.raises(NotFoundError, match="File not found"):
            await services.content.open_file(alice.id, content.id)


class TestDeleteContent:
    """Tests for delete_content()."""

    @pytest.mark.asyncio
    async def test_delete_releases_every_bundle_blob(self, services, store, blobs, make_user):
        alice = await make_user("alice")
        content = await services.content.create_content(alice.id, "world")
        bundles = [
            (await services.content.update_bundle(alice.id, content.id, key)).bundle
            for key in ("K1", "K2", "K3")
        ]
        default_group = content.share_group_ids[0]

        await services.content.delete_content(alice.id, content.id)

        bundle_keys = [f"content/{content.id}/{b.id}" for b in bundles]
        assert [blobs.deleted_keys.count(key) for key in bundle_keys] == [1, 1, 1]
        assert blobs.deleted_keys.count(f"content/{content.id}/thumbnail") == 1
        assert len(blobs.deleted_keys) == len(bundle_keys) + 1

        def leftovers(txn):
            return (
                txn.contents.get(content.id),
                txn.share_groups.get(default_group),
                txn.bundles.count(content_id=content.id),
            )

        assert store.run(leftovers) == (None, None, 0)

    @pytest.mark.asyncio
    async def test_blob_failure_does_not_abort(self, services, store, blobs, make_user):
        alice = await make_user("alice")
        content = await services.content.create_content(alice.id, "world")
        upload = await services.content.update_bundle(alice.id, content.id, "K1")
        blobs.failing_keys.add(f"content/{content.id}/{upload.bundle.id}")

        await services.content.delete_content(alice.id, content.id)

        assert store.run(lambda txn: txn.contents.get(content.id)) is None

    @pytest.mark.asyncio
    async def test_non_owner_cannot_delete(self, services, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        content = await services.content.create_content(alice.id, "world")

        with pytest.raises(NotFoundError):
            await services.content.delete_content(bob.id, content.id)
