"""
Content and versioning engine.

A content item owns an append-only chain of bundles (encrypted payload
versions) and a pointer to the active one. Bundle bytes live in the blob
store under content/{content_id}/{bundle_id}; only keys and decryption keys
are kept here.

Invariants:
    - Content is created together with exactly one default share group
    - Bundle versions increase from 1 with no gaps and are never reused
    - The active pointer only ever references a bundle of the same content
    - Invisible and nonexistent content produce the same NotFoundError
    - Deletion releases blobs before metadata, and detaches the active
      pointer before removing share groups and the content row

How to change safely:
    - Keep multi-record changes inside one closure
    - Never call the blob store from inside a closure
    - Route every read through VisibilityPolicy
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from ..blob.base import BlobError, BlobStore, content_bundle_key, content_thumbnail_key
from ..errors import (
    AuthorizationError,
    ConflictError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from ..store.database import Store, Transaction
from ..store.records import (
    CONTENT_TYPES,
    Bundle,
    Content,
    ShareGroup,
    StoredFile,
    is_valid_id,
    new_id,
    now_ms,
)
from .updates import ContentUpdate
from .visibility import VisibilityPolicy

logger = logging.getLogger(__name__)

CONTENT_NOT_FOUND = "Content not found"

IMAGE_CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


def guess_content_type(filename: str) -> str:
    """Map a file name's extension to a response content type."""
    ext = os.path.splitext(filename)[1].lower()
    return IMAGE_CONTENT_TYPES.get(ext, "application/octet-stream")


def content_file_id(content_id: str) -> str:
    return content_id


def content_thumbnail_file_id(content_id: str) -> str:
    return f"{content_id}-thumbnail"


@dataclass(frozen=True)
class BundleUpload:
    """A freshly activated bundle and where to upload its bytes."""

    bundle: Bundle
    upload_url: str


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    data: bytes


def content_to_dict(content: Content, viewer_id: str | None = None) -> dict[str, Any]:
    """Render content for API responses.

    Share lists and version history are only included for the owner.
    """
    data: dict[str, Any] = {
        "id": content.id,
        "name": content.name,
        "description": content.description,
        "ownerId": content.owner_id,
        "contentType": content.content_type,
        "contentWarningTags": content.content_warning_tags,
        "isPublic": content.is_public,
        "publicAt": content.public_at,
        "createdAt": content.created_at,
        "updatedAt": content.updated_at,
        "activeBundleId": content.active_bundle_id,
    }
    if viewer_id is not None and viewer_id == content.owner_id:
        data["previousVersions"] = content.previous_version_ids
        data["shareGroupIds"] = content.share_group_ids
        data["sharedWithUserIds"] = content.shared_with_user_ids
    return data


def bundle_to_dict(bundle: Bundle) -> dict[str, Any]:
    return {
        "id": bundle.id,
        "contentId": bundle.content_id,
        "version": bundle.version,
        "createdAt": bundle.created_at,
    }


def _check_content_id(content_id: str) -> None:
    if not is_valid_id(content_id):
        raise ValidationError("Invalid content ID")


class ContentEngine:
    """Content records, the bundle chain and per-content sharing.

    Example:
        >>> engine = ContentEngine(store, blobs, VisibilityPolicy())
        >>> content = await engine.create_content(owner_id, "world", name="Lobby")
        >>> upload = await engine.update_bundle(owner_id, content.id, "K1")
        >>> upload.bundle.version
        1
    """

    def __init__(self, store: Store, blobs: BlobStore, visibility: VisibilityPolicy) -> None:
        self.store = store
        self.blobs = blobs
        self.visibility = visibility

    async def _upload_url(self, key: str, content_id: str, bundle_id: str | None = None) -> str:
        try:
            return await self.blobs.get_upload_url(key)
        except BlobError as e:
            logger.error(
                "Failed to presign upload",
                extra={"content_id": content_id, "bundle_id": bundle_id, "error": str(e)},
                exc_info=True,
            )
            raise InternalError()

    # ------------------------------------------------------------------
    # Closure helpers
    # ------------------------------------------------------------------

    def _visible(self, txn: Transaction, viewer_id: str | None, content_id: str) -> Content:
        content = txn.contents.get(content_id)
        if content is None or not self.visibility.can_view_in(txn, content, viewer_id):
            raise NotFoundError(CONTENT_NOT_FOUND)
        return content

    def _owned(self, txn: Transaction, caller_id: str, content_id: str) -> Content:
        content = self._visible(txn, caller_id, content_id)
        if not self.visibility.is_owner(content, caller_id):
            raise AuthorizationError("Content is not owned by you")
        return content

    def _owned_group(self, txn: Transaction, caller_id: str, group_id: str) -> ShareGroup:
        if not is_valid_id(group_id):
            raise ValidationError("Invalid group ID")
        group = txn.share_groups.get(group_id)
        if group is None:
            raise NotFoundError("Group not found")
        if group.owner_id != caller_id:
            raise AuthorizationError("Group is not owned by you")
        return group

    # ------------------------------------------------------------------
    # Content records
    # ------------------------------------------------------------------

    async def create_content(
        self,
        owner_id: str,
        content_type: str,
        name: str = "",
        description: str = "",
        tags: Iterable[str] | None = None,
    ) -> Content:
        """Create a content item together with its default share group.

        Raises:
            ValidationError: If the content type is missing or unknown
        """
        if not content_type:
            raise ValidationError("Content type required")
        if content_type not in CONTENT_TYPES:
            raise ValidationError("Invalid content type")

        def create(txn: Transaction) -> Content:
            now = now_ms()
            group = ShareGroup(id=new_id(), owner_id=owner_id, name="", is_default=True)
            txn.share_groups.insert(group)
            content = Content(
                id=new_id(),
                owner_id=owner_id,
                name=name or "",
                description=description or "",
                content_type=content_type,
                content_warning_tags=list(tags or []),
                created_at=now,
                updated_at=now,
                share_group_ids=[group.id],
            )
            txn.contents.insert(content)
            return content

        content = await self.store.execute(create)
        logger.info(
            "Created content",
            extra={"content_id": content.id, "owner_id": owner_id, "content_type": content_type},
        )
        return content

    async def get_content(self, viewer_id: str | None, content_id: str) -> Content:
        _check_content_id(content_id)
        return await self.store.execute(lambda txn: self._visible(txn, viewer_id, content_id))

    async def list_owned(self, owner_id: str) -> list[Content]:
        return await self.store.execute(lambda txn: txn.contents.find(owner_id=owner_id))

    async def update_content(
        self, caller_id: str, content_id: str, update: ContentUpdate
    ) -> Content:
        _check_content_id(content_id)

        def apply(txn: Transaction) -> Content:
            content = self._owned(txn, caller_id, content_id)
            now = now_ms()
            update.apply(content, now)
            content.updated_at = now
            txn.contents.update(content)
            return content

        return await self.store.execute(apply)

    # ------------------------------------------------------------------
    # Bundles
    # ------------------------------------------------------------------

    async def update_bundle(
        self, caller_id: str, content_id: str, decryption_key: str
    ) -> BundleUpload:
        """Append a bundle, make it active and issue its upload URL.

        The new version is one past the highest version ever issued for this
        content, which is the active version + 1 whenever the active bundle
        is the newest.
        """
        _check_content_id(content_id)
        if not isinstance(decryption_key, str) or not decryption_key:
            raise ValidationError("Missing required fields")

        def append(txn: Transaction) -> Bundle:
            content = self._owned(txn, caller_id, content_id)
            versions = [b.version for b in txn.bundles.find(content_id=content_id)]
            now = now_ms()
            bundle = Bundle(
                id=new_id(),
                content_id=content_id,
                decryption_key=decryption_key,
                version=max(versions, default=0) + 1,
                created_at=now,
            )
            txn.bundles.insert(bundle)
            content.previous_version_ids.append(bundle.id)
            content.active_bundle_id = bundle.id
            content.updated_at = now
            txn.contents.update(content)
            return bundle

        bundle = await self.store.execute(append)
        logger.info(
            "Activated bundle",
            extra={"content_id": content_id, "bundle_id": bundle.id, "version": bundle.version},
        )
        url = await self._upload_url(
            content_bundle_key(content_id, bundle.id), content_id, bundle.id
        )
        return BundleUpload(bundle=bundle, upload_url=url)

    async def update_thumbnail(self, caller_id: str, content_id: str) -> str:
        _check_content_id(content_id)

        def touch(txn: Transaction) -> None:
            content = self._owned(txn, caller_id, content_id)
            content.updated_at = now_ms()
            txn.contents.update(content)

        await self.store.execute(touch)
        return await self._upload_url(content_thumbnail_key(content_id), content_id)

    async def set_active_bundle(self, caller_id: str, content_id: str, bundle_id: str) -> Content:
        """Repoint the active bundle to an existing bundle of this content.

        Raises:
            AuthorizationError: If the bundle belongs to different content
        """
        _check_content_id(content_id)
        if not is_valid_id(bundle_id):
            raise ValidationError("Invalid bundle ID")

        def repoint(txn: Transaction) -> Content:
            content = self._owned(txn, caller_id, content_id)
            bundle = txn.bundles.get(bundle_id)
            if bundle is None:
                raise NotFoundError("Bundle not found")
            if bundle.content_id != content.id:
                raise AuthorizationError("Bundle does not belong to this content")
            content.active_bundle_id = bundle.id
            content.updated_at = now_ms()
            txn.contents.update(content)
            return content

        return await self.store.execute(repoint)

    async def list_bundles(self, caller_id: str, content_id: str) -> list[Bundle]:
        """Bundle history of owned content, oldest first."""
        _check_content_id(content_id)

        def load(txn: Transaction) -> list[Bundle]:
            content = self._owned(txn, caller_id, content_id)
            bundles = [txn.bundles.get(bid) for bid in content.previous_version_ids]
            return [b for b in bundles if b is not None]

        return await self.store.execute(load)

    async def get_key(self, viewer_id: str | None, content_id: str) -> str:
        """Decryption key of the active bundle.

        Raises:
            NotFoundError: Content missing or not visible
            ConflictError: No active bundle
        """
        _check_content_id(content_id)

        def load(txn: Transaction) -> str:
            content = self._visible(txn, viewer_id, content_id)
            bundle = txn.bundles.get(content.active_bundle_id) if content.active_bundle_id else None
            if bundle is None:
                raise ConflictError("There is no active bundle attached to this content.")
            return bundle.decryption_key

        return await self.store.execute(load)

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    async def list_share_groups(self, caller_id: str, content_id: str) -> list[str]:
        _check_content_id(content_id)
        content = await self.store.execute(lambda txn: self._owned(txn, caller_id, content_id))
        return list(content.share_group_ids)

    async def attach_share_group(self, caller_id: str, content_id: str, group_id: str) -> None:
        _check_content_id(content_id)

        def attach(txn: Transaction) -> None:
            content = self._owned(txn, caller_id, content_id)
            group = self._owned_group(txn, caller_id, group_id)
            if group.is_default:
                raise AuthorizationError("Cannot add a default group")
            if group.id not in content.share_group_ids:
                content.share_group_ids.append(group.id)
                content.updated_at = now_ms()
                txn.contents.update(content)

        await self.store.execute(attach)

    async def detach_share_group(self, caller_id: str, content_id: str, group_id: str) -> None:
        _check_content_id(content_id)

        def detach(txn: Transaction) -> None:
            content = self._owned(txn, caller_id, content_id)
            group = self._owned_group(txn, caller_id, group_id)
            if group.is_default:
                raise AuthorizationError("Cannot remove the default group")
            if group.id in content.share_group_ids:
                content.share_group_ids.remove(group.id)
                content.updated_at = now_ms()
                txn.contents.update(content)

        await self.store.execute(detach)

    async def set_direct_shares(
        self, caller_id: str, content_id: str, user_ids: list[str]
    ) -> Content:
        """Replace the direct-share list of owned content."""
        _check_content_id(content_id)
        if not isinstance(user_ids, list) or not all(is_valid_id(u) for u in user_ids):
            raise ValidationError("Invalid request format")

        def share(txn: Transaction) -> Content:
            content = self._owned(txn, caller_id, content_id)
            content.shared_with_user_ids = list(dict.fromkeys(user_ids))
            content.updated_at = now_ms()
            txn.contents.update(content)
            return content

        return await self.store.execute(share)

    # ------------------------------------------------------------------
    # Stored files (flat surface)
    # ------------------------------------------------------------------

    async def store_files(
        self,
        caller_id: str,
        content_id: str,
        file: UploadedFile | None = None,
        thumbnail: UploadedFile | None = None,
        update: ContentUpdate | None = None,
    ) -> Content:
        """Replace the content's stored file and thumbnail and apply metadata."""
        _check_content_id(content_id)

        def save(txn: Transaction) -> Content:
            content = self._owned(txn, caller_id, content_id)
            if file is not None:
                txn.files.upload(content_file_id(content_id), file.filename, file.data)
            if thumbnail is not None:
                txn.files.upload(
                    content_thumbnail_file_id(content_id), thumbnail.filename, thumbnail.data
                )
            now = now_ms()
            if update is not None:
                update.apply(content, now)
            content.updated_at = now
            txn.contents.update(content)
            return content

        return await self.store.execute(save)

    async def open_file(self, viewer_id: str | None, content_id: str) -> StoredFile:
        """Load the stored file of visible content for download."""
        _check_content_id(content_id)

        def load(txn: Transaction) -> StoredFile:
            self._visible(txn, viewer_id, content_id)
            stored = txn.files.find_by_id(content_file_id(content_id))
            if stored is None:
                raise NotFoundError("File not found")
            return stored

        return await self.store.execute(load)

    async def open_image(self, viewer_id: str | None, file_id: str) -> StoredFile:
        """Load an image from the file area.

        Content thumbnails follow the visibility of their content; other
        images (profile thumbnails and banners) are served to any caller.
        """
        if not file_id:
            raise NotFoundError("File not found")

        def load(txn: Transaction) -> StoredFile:
            content = txn.contents.get(file_id.removesuffix("-thumbnail"))
            if content is not None:
                # bundle files go through open_file, never through here
                if content.id == file_id or not self.visibility.can_view_in(
                    txn, content, viewer_id
                ):
                    raise NotFoundError("File not found")
            stored = txn.files.find_by_id(file_id)
            if stored is None:
                raise NotFoundError("File not found")
            return stored

        return await self.store.execute(load)

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def _release_blobs(self, keys: Iterable[str], content_id: str) -> None:
        for key in keys:
            try:
                await self.blobs.delete_object(key)
            except BlobError as e:
                logger.warning(
                    "Failed to delete blob",
                    extra={"content_id": content_id, "key": key, "error": str(e)},
                )

    async def delete_content(self, caller_id: str, content_id: str) -> None:
        """Delete owned content, its bundles, blobs, files and default group.

        Blobs are released first (failures are logged and never abort), then
        one closure detaches the active pointer and removes the metadata.
        Bundles created between the two steps have their blobs released
        afterwards.
        """
        _check_content_id(content_id)

        def bundle_ids(txn: Transaction) -> list[str]:
            content = self._owned(txn, caller_id, content_id)
            ids = list(content.previous_version_ids)
            ids.extend(b.id for b in txn.bundles.find(content_id=content_id) if b.id not in ids)
            return ids

        released = await self.store.execute(bundle_ids)
        await self._release_blobs(
            [content_bundle_key(content_id, bid) for bid in released]
            + [content_thumbnail_key(content_id)],
            content_id,
        )

        def remove(txn: Transaction) -> list[str]:
            content = self._owned(txn, caller_id, content_id)
            content.active_bundle_id = None
            txn.contents.update(content)

            for group_id in content.share_group_ids:
                group = txn.share_groups.get(group_id)
                if group is not None and group.is_default:
                    txn.share_groups.delete(group.id)

            late = []
            for bundle in txn.bundles.find(content_id=content_id):
                if bundle.id not in released:
                    late.append(bundle.id)
                txn.bundles.delete(bundle.id)

            txn.files.delete(content_file_id(content_id))
            txn.files.delete(content_thumbnail_file_id(content_id))
            txn.contents.delete(content_id)
            return late

        late = await self.store.execute(remove)
        if late:
            await self._release_blobs(
                [content_bundle_key(content_id, bid) for bid in late], content_id
            )
        logger.info(
            "Deleted content",
            extra={"content_id": content_id, "bundles": len(released) + len(late)},
        )
