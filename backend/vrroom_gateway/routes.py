"""
API routes for the VRroom /v1 gateway.

Resource-oriented endpoints (/v1/{resource}/{action}) over the same
engines as the flat surface. Request bodies are pydantic models with
camelCase aliases; responses use the same camelCase shapes.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from ..vrroom_server.auth.accounts import profile_to_dict, session_to_dict
from ..vrroom_server.auth.tokens import TokenScheme
from ..vrroom_server.blob.base import profile_banner_key, profile_thumbnail_key
from ..vrroom_server.engine.content import bundle_to_dict, content_to_dict
from ..vrroom_server.engine.shares import group_to_dict
from ..vrroom_server.engine.updates import ContentUpdate, ProfileUpdate
from ..vrroom_server.errors import ValidationError
from ..vrroom_server.services import Services
from ..vrroom_server.store.records import Account

logger = logging.getLogger(__name__)

router = APIRouter(tags=["VRroom"])

API_SCHEMES = (TokenScheme.API, TokenScheme.SESSION)


# --- Request Models ---


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterRequest(CamelModel):
    """Request to register an account."""

    handle: str = Field(..., description="Unique public handle")
    email: str = Field(..., description="Unique e-mail address")
    password: str = Field(..., description="Password (at least 8 characters)")


class LoginRequest(CamelModel):
    """Request to log in with a handle or e-mail."""

    identifier: str = Field(..., description="Handle, or e-mail when it contains '@'")
    password: str
    device_info: str = Field("", alias="deviceInfo")


class UpdateProfileRequest(CamelModel):
    """Profile fields to change; omitted fields are left alone."""

    display_name: str | None = Field(None, alias="displayName")
    bio: str | None = None
    status: str | None = None


class CreateContentRequest(CamelModel):
    """Request to create a content item."""

    content_type: str = Field("", alias="contentType")
    name: str = ""
    description: str = ""
    content_warning_tags: list[str] = Field(default_factory=list, alias="contentWarningTags")


class ContentRequest(CamelModel):
    content_id: str = Field(..., alias="contentId")


class UpdateContentRequest(ContentRequest):
    """Content fields to change; omitted fields are left alone."""

    name: str | None = None
    description: str | None = None
    content_warning_tags: list[str] | None = Field(None, alias="contentWarningTags")
    is_public: bool | None = Field(None, alias="isPublic")


class UpdateBundleRequest(ContentRequest):
    decryption_key: str = Field(..., alias="decryptionKey")


class SetActiveBundleRequest(ContentRequest):
    bundle_id: str = Field(..., alias="bundleId")


class ContentGroupRequest(ContentRequest):
    group_id: str = Field(..., alias="groupId")


class CreateGroupRequest(CamelModel):
    name: str = ""


class GroupRequest(CamelModel):
    group_id: str = Field(..., alias="groupId")


class GroupMemberRequest(GroupRequest):
    user_id: str = Field(..., alias="userId")


def _set_fields(model: BaseModel, *exclude: str) -> dict[str, Any]:
    """Fields the client actually sent, keyed by alias."""
    return model.model_dump(by_alias=True, exclude_unset=True, exclude=set(exclude))


# --- Dependencies ---


def get_services(request: Request) -> Services:
    """Get the shared engine graph from app state."""
    return request.app.state.services


async def current_account(
    request: Request,
    services: Services = Depends(get_services),
) -> Account:
    """Authenticate the bearer token (API or session scheme)."""
    return await services.accounts.authenticate(request.headers.get("Authorization"), API_SCHEMES)


async def optional_account(
    request: Request,
    services: Services = Depends(get_services),
) -> Account | None:
    """Authenticate when a bearer token is present; anonymous otherwise."""
    header = request.headers.get("Authorization")
    if not header:
        return None
    return await services.accounts.authenticate(header, API_SCHEMES)


# --- Auth Routes ---


@router.post("/auth/register")
async def register(body: RegisterRequest, services: Services = Depends(get_services)):
    account = await services.accounts.register(body.handle, body.email, body.password)
    return {"success": True, "userId": account.id}


@router.post("/auth/login")
async def login(body: LoginRequest, services: Services = Depends(get_services)):
    """
    Log in and receive a long-lived API token.

    The session is persisted and listed under /auth/sessions.
    """
    result = await services.accounts.login(
        body.identifier, body.password, body.device_info, TokenScheme.API
    )
    return {
        "success": True,
        "token": result.token.token,
        "expiresAt": result.token.expires_at,
        "sessionId": result.session.id,
    }


@router.get("/auth/sessions")
async def get_sessions(
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    sessions = await services.accounts.list_sessions(user.id)
    return [session_to_dict(s) for s in sessions]


# --- Profile Routes ---


@router.put("/profile/update")
async def update_profile(
    body: UpdateProfileRequest,
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    update = ProfileUpdate.from_payload(_set_fields(body))
    if update.is_empty():
        raise ValidationError("No updates provided")
    profile = await services.accounts.update_profile(user.id, update)
    return profile_to_dict(profile)


@router.put("/profile/update-thumbnail")
async def update_profile_thumbnail(
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    url = await services.blobs.get_upload_url(profile_thumbnail_key(user.id))
    return {"success": True, "uploadUrl": url}


@router.put("/profile/update-banner")
async def update_profile_banner(
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    url = await services.blobs.get_upload_url(profile_banner_key(user.id))
    return {"success": True, "uploadUrl": url}


@router.get("/profile/{profile_id}")
async def get_profile(profile_id: str, services: Services = Depends(get_services)):
    profile = await services.accounts.get_profile(profile_id)
    return profile_to_dict(profile)


# --- Content Routes ---


@router.get("/content/mine")
async def get_my_content(
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    contents = await services.content.list_owned(user.id)
    return [content_to_dict(c, user.id) for c in contents]


@router.post("/content/create")
async def create_content(
    body: CreateContentRequest,
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    content = await services.content.create_content(
        user.id,
        body.content_type,
        name=body.name,
        description=body.description,
        tags=body.content_warning_tags,
    )
    return {"success": True, "contentId": content.id}


@router.put("/content/update")
async def update_content(
    body: UpdateContentRequest,
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    update = ContentUpdate.from_payload(_set_fields(body, "content_id"))
    content = await services.content.update_content(user.id, body.content_id, update)
    return content_to_dict(content, user.id)


@router.put("/content/update-bundle")
async def update_bundle(
    body: UpdateBundleRequest,
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    """
    Append a new bundle version and make it active.

    Returns a presigned URL the client uploads the bundle to.
    """
    upload = await services.content.update_bundle(user.id, body.content_id, body.decryption_key)
    return {
        "success": True,
        "bundleId": upload.bundle.id,
        "version": upload.bundle.version,
        "uploadUrl": upload.upload_url,
    }


@router.put("/content/update-thumbnail")
async def update_content_thumbnail(
    body: ContentRequest,
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    url = await services.content.update_thumbnail(user.id, body.content_id)
    return {"success": True, "uploadUrl": url}


@router.put("/content/set-active-bundle")
async def set_active_bundle(
    body: SetActiveBundleRequest,
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    await services.content.set_active_bundle(user.id, body.content_id, body.bundle_id)
    return {"success": True}


@router.put("/content/share-groups")
async def attach_share_group(
    body: ContentGroupRequest,
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    await services.content.attach_share_group(user.id, body.content_id, body.group_id)
    return {"success": True}


@router.delete("/content/share-groups")
async def detach_share_group(
    body: ContentGroupRequest,
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    await services.content.detach_share_group(user.id, body.content_id, body.group_id)
    return {"success": True}


@router.delete("/content/delete")
async def delete_content(
    body: ContentRequest,
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    await services.content.delete_content(user.id, body.content_id)
    return {"success": True}


@router.get("/content/{content_id}")
async def get_content(
    content_id: str,
    user: Account | None = Depends(optional_account),
    services: Services = Depends(get_services),
):
    """
    Get one content item.

    Anonymous callers only see public content.
    """
    viewer_id = user.id if user else None
    content = await services.content.get_content(viewer_id, content_id)
    return content_to_dict(content, viewer_id)


@router.get("/content/{content_id}/bundles")
async def get_bundles(
    content_id: str,
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    bundles = await services.content.list_bundles(user.id, content_id)
    return [bundle_to_dict(b) for b in bundles]


@router.get("/content/{content_id}/key")
async def get_key(
    content_id: str,
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    key = await services.content.get_key(user.id, content_id)
    return {"key": key}


@router.get("/content/{content_id}/share-groups")
async def get_content_share_groups(
    content_id: str,
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    return await services.content.list_share_groups(user.id, content_id)


# --- Share Group Routes ---


@router.get("/shares/groups")
async def list_groups(
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    groups = await services.shares.list_groups(user.id)
    return [group_to_dict(g) for g in groups]


@router.post("/shares/groups")
async def create_group(
    body: CreateGroupRequest,
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    group = await services.shares.create_group(user.id, body.name)
    return {"success": True, "groupId": group.id}


@router.delete("/shares/groups")
async def delete_group(
    body: GroupRequest,
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    await services.shares.delete_group(user.id, body.group_id)
    return {"success": True}


@router.put("/shares/share")
async def add_share(
    body: GroupMemberRequest,
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    await services.shares.add_member(user.id, body.group_id, body.user_id)
    logger.debug("Added group member", extra={"group_id": body.group_id})
    return {"success": True}


@router.delete("/shares/share")
async def remove_share(
    body: GroupMemberRequest,
    user: Account = Depends(current_account),
    services: Services = Depends(get_services),
):
    await services.shares.remove_member(user.id, body.group_id, body.user_id)
    return {"success": True}
