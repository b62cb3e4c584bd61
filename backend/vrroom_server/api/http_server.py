"""
Flat REST surface for VRroom Server.

This is the game-client facing API: short flat paths (/account,
/auth/login, /user/{id}/friend, /content/{id}/download, ...) with JSON and
multipart bodies and raw file responses. aiohttp mounts a single catch-all
route; requests are dispatched through a RouteTable.

Invariants:
    - Every authenticated route validates a session-scheme bearer token
    - Domain errors render as {"success": false, "error": "..."} with the
      status of the error type
    - Unexpected errors render as a generic 500 and are logged with traceback
    - Unknown paths render as 404 "Endpoint not found"

How to change safely:
    - Register new routes in build_route_table()
    - Keep response keys camelCase to match existing clients
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web

from ..auth.accounts import notification_to_dict, session_to_dict
from ..auth.tokens import TokenScheme
from ..config import HttpConfig
from ..engine.content import UploadedFile, content_to_dict, guess_content_type
from ..engine.tickets import ticket_to_dict
from ..engine.updates import ContentUpdate, ProfileUpdate
from ..errors import NotFoundError, ValidationError, VrroomError
from ..services import Services
from ..store.records import Account
from .routing import RouteTable

logger = logging.getLogger(__name__)

Params = dict[str, str]


# ----------------------------------------------------------------------
# Request helpers
# ----------------------------------------------------------------------


def ok(**fields: Any) -> web.Response:
    return web.json_response({"success": True, **fields})


def require_fields(*values: Any) -> None:
    """Reject missing or empty required fields."""
    for value in values:
        if value is None or (isinstance(value, str) and not value):
            raise ValidationError("Missing required fields")


async def read_json(request: web.Request) -> dict[str, Any]:
    """Parse a JSON object body.

    Raises:
        ValidationError: "Invalid request format" for anything else
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Invalid request format")
    if not isinstance(body, dict):
        raise ValidationError("Invalid request format")
    return body


async def read_multipart(request: web.Request) -> tuple[dict[str, UploadedFile], dict[str, str]]:
    """Split a multipart body into uploaded files and plain fields."""
    if not request.content_type.startswith("multipart/"):
        raise ValidationError("Invalid request format")
    try:
        form = await request.post()
    except ValueError:
        raise ValidationError("Invalid request format")

    files: dict[str, UploadedFile] = {}
    fields: dict[str, str] = {}
    for name, value in form.items():
        if isinstance(value, web.FileField):
            files[name] = UploadedFile(filename=value.filename, data=value.file.read())
        else:
            fields[name] = str(value)
    return files, fields


def parse_json_field(fields: dict[str, str], name: str) -> dict[str, Any] | None:
    raw = fields.get(name)
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError("Invalid request format")
    if not isinstance(value, dict):
        raise ValidationError("Invalid request format")
    return value


def query_int(request: web.Request, name: str, default: int) -> int:
    try:
        return int(request.query.get(name, default))
    except ValueError:
        raise ValidationError(f"Invalid {name}")


async def authenticate(request: web.Request, services: Services) -> Account:
    return await services.accounts.authenticate(
        request.headers.get("Authorization"), (TokenScheme.SESSION,)
    )


def file_response(filename: str, data: bytes, attachment: bool = False) -> web.Response:
    response = web.Response(body=data, content_type=guess_content_type(filename))
    if attachment:
        response.content_type = "application/octet-stream"
        response.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    return response


# ----------------------------------------------------------------------
# Account
# ----------------------------------------------------------------------


async def handle_create_account(request: web.Request, services: Services, params: Params) -> web.Response:
    """Handle POST /account - Register."""
    body = await read_json(request)
    handle, email, password = body.get("handle"), body.get("email"), body.get("password")
    require_fields(handle, email, password)
    await services.accounts.register(handle, email, password)
    return ok()


async def handle_verify_account(request: web.Request, services: Services, params: Params) -> web.Response:
    """Handle POST /account/verify?code= - Verify e-mail."""
    code = request.query.get("code")
    require_fields(code)
    return web.json_response({"success": await services.accounts.verify_account(code)})


async def handle_resend_verification(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    return web.json_response({"success": await services.accounts.resend_verification(user.id)})


async def handle_update_account(request: web.Request, services: Services, params: Params) -> web.Response:
    """Handle PUT /account - Multipart profile update (thumbnail, banner, updates)."""
    user = await authenticate(request, services)
    files, fields = await read_multipart(request)
    updates = parse_json_field(fields, "updates")

    if "thumbnail" in files or "banner" in files:
        await services.accounts.store_profile_images(
            user.id, thumbnail=files.get("thumbnail"), banner=files.get("banner")
        )
    if updates is None:
        if not files:
            raise ValidationError("No updates provided")
        return ok()

    await services.accounts.update_profile(user.id, ProfileUpdate.from_payload(updates))
    return ok()


async def handle_update_handle(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    body = await read_json(request)
    await services.accounts.update_handle(user.id, body.get("handle"))
    return ok()


async def handle_update_email(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    body = await read_json(request)
    await services.accounts.update_email(user.id, body.get("email"))
    return ok()


async def handle_update_password(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    body = await read_json(request)
    await services.accounts.update_password(user.id, body.get("password"))
    return ok()


async def handle_get_friend_requests(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    views = await services.social.list_friend_requests(user.id)
    return web.json_response([v.to_dict() for v in views])


async def handle_get_friends(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    views = await services.social.list_friends(user.id)
    return web.json_response([v.to_dict() for v in views])


async def handle_get_notifications(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    notifications = await services.accounts.list_notifications(user.id)
    return web.json_response([notification_to_dict(n) for n in notifications])


async def handle_delete_account(request: web.Request, services: Services, params: Params) -> web.Response:
    """Handle DELETE /account - Delete after re-entering handle and password."""
    user = await authenticate(request, services)
    body = await read_json(request)
    username, password = body.get("username"), body.get("password")
    require_fields(username, password)
    deleted = await services.accounts.delete_account(user.id, username, password)
    return web.json_response({"success": deleted})


# ----------------------------------------------------------------------
# Auth
# ----------------------------------------------------------------------


async def handle_login(request: web.Request, services: Services, params: Params) -> web.Response:
    body = await read_json(request)
    username, password = body.get("username"), body.get("password")
    require_fields(username, password)
    result = await services.accounts.login(
        username, password, body.get("deviceInfo") or "", TokenScheme.SESSION
    )
    return ok(authToken=result.token.token, sessionId=result.session.id)


async def handle_get_sessions(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    sessions = await services.accounts.list_sessions(user.id)
    return web.json_response([session_to_dict(s) for s in sessions])


async def handle_delete_all_sessions(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    await services.accounts.delete_all_sessions(user.id)
    return ok()


async def handle_delete_session(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    deleted = await services.accounts.delete_session(user.id, params["id"])
    return web.json_response({"success": deleted})


async def handle_get_game_token(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    return web.json_response({"token": await services.accounts.get_game_token(user.id)})


async def handle_regenerate_game_token(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    return web.json_response({"token": await services.accounts.regenerate_game_token(user.id)})


async def handle_get_join_token(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    token = await services.accounts.issue_join_token(user.id)
    return web.json_response({"token": token.token, "expiresAt": token.expires_at})


async def handle_verify_join_token(request: web.Request, services: Services, params: Params) -> web.Response:
    """Handle POST /auth/join-token - Game servers check a player's join token."""
    body = await read_json(request)
    username, token = body.get("username"), body.get("token")
    require_fields(username, token)
    return web.json_response({"valid": await services.accounts.verify_join_token(username, token)})


# ----------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------


async def handle_get_user(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    view = await services.social.get_user(user.id, params["id"])
    return web.json_response(view.to_dict())


async def handle_get_users(request: web.Request, services: Services, params: Params) -> web.Response:
    """Handle GET /users - Bulk lookup by {"userIds": [...]} or ?ids=a,b."""
    user = await authenticate(request, services)
    if request.can_read_body:
        body = await read_json(request)
        user_ids = body.get("userIds")
    else:
        user_ids = [i for i in request.query.get("ids", "").split(",") if i]
    if not isinstance(user_ids, list):
        raise ValidationError("Invalid request format")
    views = await services.social.get_users(user.id, user_ids)
    return web.json_response([v.to_dict() for v in views])


async def handle_add_friend(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    accepted = await services.social.add_friend(user, params["id"])
    return ok(accepted=accepted)


async def handle_remove_friend(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    removed = await services.social.remove_friend(user.id, params["id"])
    return web.json_response({"success": removed})


async def handle_block_user(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    blocked = await services.social.toggle_block(user.id, params["id"])
    return ok(blocked=blocked)


# ----------------------------------------------------------------------
# Search and images
# ----------------------------------------------------------------------


async def handle_search(request: web.Request, services: Services, params: Params) -> web.Response:
    """Handle GET /search?type=&name=&sort=&filter=&page=&limit="""
    user = await authenticate(request, services)
    search_type = request.query.get("type")
    if not search_type:
        raise ValidationError("Search type required")
    name = request.query.get("name")
    page = query_int(request, "page", 0)
    limit = query_int(request, "limit", 20)

    if search_type == "user":
        result = await services.search.search_users(user.id, name, page, limit)
    else:
        tags = request.query.get("filter")
        result = await services.search.search_content(
            user.id,
            search_type,
            name=name,
            tags=tags.split(",") if tags else None,
            sort=request.query.get("sort"),
            page=page,
            limit=limit,
        )
    return web.json_response(result.to_dict())


async def handle_get_image(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    stored = await services.content.open_image(user.id, params["id"])
    return file_response(stored.filename, stored.data)


# ----------------------------------------------------------------------
# Content
# ----------------------------------------------------------------------


async def handle_create_content(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    body = await read_json(request)
    tags = body.get("contentWarningTags") or []
    if not isinstance(tags, list):
        raise ValidationError("Invalid request format")
    content = await services.content.create_content(
        user.id,
        body.get("contentType") or "",
        name=body.get("name") or "",
        description=body.get("description") or "",
        tags=tags,
    )
    return ok(contentId=content.id)


async def handle_update_content(request: web.Request, services: Services, params: Params) -> web.Response:
    """Handle PUT /content/{id} - Multipart (file, thumbnail, metadata)."""
    user = await authenticate(request, services)
    files, fields = await read_multipart(request)
    metadata = parse_json_field(fields, "metadata")
    await services.content.store_files(
        user.id,
        params["id"],
        file=files.get("file"),
        thumbnail=files.get("thumbnail"),
        update=ContentUpdate.from_payload(metadata) if metadata is not None else None,
    )
    return ok()


async def handle_share_content(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    body = await read_json(request)
    user_ids = body.get("userIds")
    if not isinstance(user_ids, list):
        raise ValidationError("Invalid request format")
    await services.content.set_direct_shares(user.id, params["id"], user_ids)
    return ok()


async def handle_get_all_content(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    contents = await services.content.list_owned(user.id)
    return web.json_response([content_to_dict(c, user.id) for c in contents])


async def handle_get_content(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    content = await services.content.get_content(user.id, params["id"])
    return web.json_response(content_to_dict(content, user.id))


async def handle_download_content(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    stored = await services.content.open_file(user.id, params["id"])
    return file_response(stored.filename, stored.data, attachment=True)


async def handle_delete_content(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    await services.content.delete_content(user.id, params["id"])
    return ok()


# ----------------------------------------------------------------------
# Tickets and health
# ----------------------------------------------------------------------


async def handle_open_ticket(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    body = await read_json(request)
    require_fields(body.get("type"), body.get("title"))
    ticket = await services.tickets.open_ticket(
        user.id, body["type"], body["title"], content_id=body.get("contentId")
    )
    return ok(ticketId=ticket.id)


async def handle_list_tickets(request: web.Request, services: Services, params: Params) -> web.Response:
    user = await authenticate(request, services)
    tickets = await services.tickets.list_tickets(user.id)
    return web.json_response([ticket_to_dict(t) for t in tickets])


async def handle_health(request: web.Request, services: Services, params: Params) -> web.Response:
    return ok(status="ok")


def build_route_table() -> RouteTable:
    """Register every flat route."""
    table = RouteTable()

    # Account
    table.add("POST", "/account", handle_create_account)
    table.add("POST", "/account/verify", handle_verify_account)
    table.add("POST", "/account/verify/resend", handle_resend_verification)
    table.add("PUT", "/account", handle_update_account)
    table.add("PATCH", "/account/handle", handle_update_handle)
    table.add("PATCH", "/account/email", handle_update_email)
    table.add("PATCH", "/account/password", handle_update_password)
    table.add("GET", "/account/friend-requests", handle_get_friend_requests)
    table.add("GET", "/account/friends", handle_get_friends)
    table.add("GET", "/account/notifications", handle_get_notifications)
    table.add("DELETE", "/account", handle_delete_account)

    # Auth
    table.add("POST", "/auth/login", handle_login)
    table.add("GET", "/auth/sessions", handle_get_sessions)
    table.add("DELETE", "/auth/sessions", handle_delete_all_sessions)
    table.add("DELETE", "/auth/sessions/{id}", handle_delete_session)
    table.add("GET", "/auth/game-token", handle_get_game_token)
    table.add("POST", "/auth/game-token", handle_regenerate_game_token)
    table.add("GET", "/auth/join-token", handle_get_join_token)
    table.add("POST", "/auth/join-token", handle_verify_join_token)

    # Users
    table.add("GET", "/user/{id}", handle_get_user)
    table.add("GET", "/users", handle_get_users)
    table.add("POST", "/user/{id}/friend", handle_add_friend)
    table.add("DELETE", "/user/{id}/friend", handle_remove_friend)
    table.add("POST", "/user/{id}/block", handle_block_user)

    # Misc
    table.add("GET", "/search", handle_search)
    table.add("GET", "/image/{id}", handle_get_image)
    table.add("GET", "/health", handle_health)

    # Content
    table.add("POST", "/content", handle_create_content)
    table.add("PUT", "/content/{id}", handle_update_content)
    table.add("PUT", "/content/{id}/share", handle_share_content)
    table.add("GET", "/content", handle_get_all_content)
    table.add("GET", "/content/{id}", handle_get_content)
    table.add("GET", "/content/{id}/download", handle_download_content)
    table.add("DELETE", "/content/{id}", handle_delete_content)

    # Tickets
    table.add("POST", "/tickets", handle_open_ticket)
    table.add("GET", "/tickets", handle_list_tickets)

    return table


def create_http_app(services: Services, config: HttpConfig | None = None) -> web.Application:
    """Create the aiohttp application for the flat surface.

    Args:
        services: Shared engine graph
        config: HTTP configuration (CORS origins)

    Returns:
        aiohttp Application instance
    """
    config = config or services.config.http
    table = build_route_table()
    app = web.Application()

    async def dispatch(request: web.Request) -> web.StreamResponse:
        match = table.match(request.method, request.path)
        if match is None:
            raise NotFoundError("Endpoint not found")
        return await match.handler(request, services, match.params)

    app.router.add_route("*", "/{tail:.*}", dispatch)

    # Add CORS middleware
    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            response = await handler(request)

        origin = request.headers.get("Origin", "*")
        if "*" in config.cors_origins or origin in config.cors_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
        return response

    # Add error handler
    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except VrroomError as e:
            return web.json_response(e.to_dict(), status=e.status)
        except web.HTTPException:
            raise
        except Exception:
            logger.error(
                "HTTP handler error",
                extra={"method": request.method, "path": request.path},
                exc_info=True,
            )
            return web.json_response(
                {"success": False, "error": "Internal server error"}, status=500
            )

    app.middlewares.append(cors_middleware)
    app.middlewares.insert(0, error_middleware)
    return app


async def run_http_server(services: Services, config: HttpConfig) -> None:
    """Run the flat surface until cancelled."""
    app = create_http_app(services, config)

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, config.host, config.port)
    await site.start()

    logger.info(f"HTTP server running on http://{config.host}:{config.port}")

    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
