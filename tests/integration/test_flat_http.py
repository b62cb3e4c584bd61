"""
Integration tests for the flat aiohttp surface.

Tests cover:
- Routing, CORS and the error envelope
- Registration, login and sessions over HTTP
- Social routes
- Multipart content upload, download and images
- Search and tickets
"""

import json
from contextlib import asynccontextmanager

import pytest
from aiohttp import FormData
from aiohttp.test_utils import TestClient, TestServer

from backend.vrroom_server.api.http_server import create_http_app

PASSWORD = "correct-horse-battery"


@asynccontextmanager
async def http_client(services):
    async with TestClient(TestServer(create_http_app(services))) as client:
        yield client


async def register_and_login(client, handle):
    resp = await client.post(
        "/account",
        json={"handle": handle, "email": f"{handle}@example.com", "password": PASSWORD},
    )
    assert resp.status == 200
    resp = await client.post(
        "/auth/login", json={"username": handle, "password": PASSWORD, "deviceInfo": "pc"}
    )
    body = await resp.json()
    assert body["success"] is True
    return {"Authorization": f"Bearer {body['authToken']}"}


class TestRouting:
    """Tests for dispatch and error rendering."""

    @pytest.mark.asyncio
    async def test_unknown_endpoint(self, services):
        async with http_client(services) as client:
            resp = await client.get("/nope")

            assert resp.status == 404
            assert await resp.json() == {"success": False, "error": "Endpoint not found"}

    @pytest.mark.asyncio
    async def test_health_with_cors(self, services):
        async with http_client(services) as client:
            resp = await client.get("/health", headers={"Origin": "http://game.local"})

            assert await resp.json() == {"success": True, "status": "ok"}
            assert resp.headers["Access-Control-Allow-Origin"] == "http://game.local"

    @pytest.mark.asyncio
    async def test_missing_token(self, services):
        async with http_client(services) as client:
            resp = await client.get("/account/friends")

            assert resp.status == 401
            assert (await resp.json())["error"] == "Unauthorized"

    @pytest.mark.asyncio
    async def test_malformed_json(self, services):
        async with http_client(services) as client:
            resp = await client.post(
                "/account", data="{not json", headers={"Content-Type": "application/json"}
            )

            assert resp.status == 400
            assert (await resp.json())["error"] == "Invalid request format"

    @pytest.mark.asyncio
    async def test_missing_fields(self, services):
        async with http_client(services) as client:
            resp = await client.post("/account", json={"handle": "alice"})

            assert resp.status == 400
            assert (await resp.json())["error"] == "Missing required fields"

    @pytest.mark.asyncio
    async def test_handler_failure_is_generic_500(self, services, monkeypatch):
        async def explode(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(services.tickets, "list_tickets", explode)
        async with http_client(services) as client:
            headers = await register_and_login(client, "alice")

            resp = await client.get("/tickets", headers=headers)

            assert resp.status == 500
            assert await resp.json() == {"success": False, "error": "Internal server error"}

            resp = await client.get("/health")
            assert resp.status == 200


class TestAuthRoutes:
    """Tests for login and session routes."""

    @pytest.mark.asyncio
    async def test_sessions(self, services):
        async with http_client(services) as client:
            headers = await register_and_login(client, "alice")

            resp = await client.get("/auth/sessions", headers=headers)
            sessions = await resp.json()
            assert [s["deviceInfo"] for s in sessions] == ["pc"]

            resp = await client.delete(f"/auth/sessions/{sessions[0]['sessionId']}", headers=headers)
            assert await resp.json() == {"success": True}

    @pytest.mark.asyncio
    async def test_bad_login(self, services):
        async with http_client(services) as client:
            await register_and_login(client, "alice")

            resp = await client.post("/auth/login", json={"username": "alice", "password": "nope-nope"})

            assert resp.status == 401
            assert (await resp.json())["error"] == "Invalid credentials"

    @pytest.mark.asyncio
    async def test_join_token_round_trip(self, services):
        async with http_client(services) as client:
            headers = await register_and_login(client, "alice")

            issued = await (await client.get("/auth/join-token", headers=headers)).json()
            resp = await client.post(
                "/auth/join-token", json={"username": "alice", "token": issued["token"]}
            )

            assert await resp.json() == {"valid": True}


class TestSocialRoutes:
    """Tests for friend and block routes."""

    @pytest.mark.asyncio
    async def test_friend_flow(self, services):
        async with http_client(services) as client:
            alice = await register_and_login(client, "alice")
            bob = await register_and_login(client, "bob")
            bob_id = (await services.accounts.login("bob", PASSWORD)).account.id
            alice_id = (await services.accounts.login("alice", PASSWORD)).account.id

            resp = await client.post(f"/user/{bob_id}/friend", headers=alice)
            assert await resp.json() == {"success": True, "accepted": False}
            resp = await client.post(f"/user/{alice_id}/friend", headers=bob)
            assert await resp.json() == {"success": True, "accepted": True}

            friends = await (await client.get("/account/friends", headers=alice)).json()
            assert [f["handle"] for f in friends] == ["bob"]

            resp = await client.post(f"/user/{bob_id}/block", headers=alice)
            assert await resp.json() == {"success": True, "blocked": True}
            user = await (await client.get(f"/user/{bob_id}", headers=alice)).json()
            assert user["blocked"] is True

    @pytest.mark.asyncio
    async def test_bulk_users_by_query(self, services):
        async with http_client(services) as client:
            alice = await register_and_login(client, "alice")
            await register_and_login(client, "bob")
            bob_id = (await services.accounts.login("bob", PASSWORD)).account.id

            resp = await client.get(f"/users?ids={bob_id}", headers=alice)

            assert [u["handle"] for u in await resp.json()] == ["bob"]


class TestContentRoutes:
    """Tests for content upload, download and images."""

    @pytest.mark.asyncio
    async def test_upload_and_download(self, services):
        async with http_client(services) as client:
            headers = await register_and_login(client, "alice")
            resp = await client.post(
                "/content", json={"contentType": "world", "name": "Lobby"}, headers=headers
            )
            content_id = (await resp.json())["contentId"]

            form = FormData()
            form.add_field("file", b"bundle-bytes", filename="lobby.bundle")
            form.add_field("thumbnail", b"png-bytes", filename="lobby.png")
            form.add_field("metadata", json.dumps({"description": "A lobby"}))
            resp = await client.put(f"/content/{content_id}", data=form, headers=headers)
            assert await resp.json() == {"success": True}

            resp = await client.get(f"/content/{content_id}/download", headers=headers)
            assert await resp.read() == b"bundle-bytes"
            assert resp.headers["Content-Disposition"] == 'attachment; filename="lobby.bundle"'

            resp = await client.get(f"/image/{content_id}-thumbnail", headers=headers)
            assert resp.content_type == "image/png"
            assert await resp.read() == b"png-bytes"

            body = await (await client.get(f"/content/{content_id}", headers=headers)).json()
            assert body["description"] == "A lobby"

    @pytest.mark.asyncio
    async def test_private_content_hidden(self, services):
        async with http_client(services) as client:
            alice = await register_and_login(client, "alice")
            bob = await register_and_login(client, "bob")
            resp = await client.post("/content", json={"contentType": "prop"}, headers=alice)
            content_id = (await resp.json())["contentId"]

            resp = await client.get(f"/content/{content_id}", headers=bob)

            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_update_requires_multipart(self, services):
        async with http_client(services) as client:
            headers = await register_and_login(client, "alice")
            resp = await client.post("/content", json={"contentType": "prop"}, headers=headers)
            content_id = (await resp.json())["contentId"]

            resp = await client.put(f"/content/{content_id}", json={"name": "x"}, headers=headers)

            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_profile_update_without_changes(self, services):
        async with http_client(services) as client:
            headers = await register_and_login(client, "alice")
            form = FormData()
            form.add_field("other", "value", content_type="text/plain")

            resp = await client.put("/account", data=form, headers=headers)

            assert resp.status == 400
            assert (await resp.json())["error"] == "No updates provided"


class TestSearchAndTickets:
    """Tests for search and ticket routes."""

    @pytest.mark.asyncio
    async def test_search_requires_type(self, services):
        async with http_client(services) as client:
            headers = await register_and_login(client, "alice")

            resp = await client.get("/search", headers=headers)

            assert resp.status == 400
            assert (await resp.json())["error"] == "Search type required"

    @pytest.mark.asyncio
    async def test_user_search(self, services):
        async with http_client(services) as client:
            headers = await register_and_login(client, "alice")
            await register_and_login(client, "bobby")

            resp = await client.get("/search?type=user&name=BOB", headers=headers)

            body = await resp.json()
            assert [i["handle"] for i in body["items"]] == ["bobby"]
            assert body["hasMore"] is False

    @pytest.mark.asyncio
    async def test_tickets(self, services):
        async with http_client(services) as client:
            headers = await register_and_login(client, "alice")

            resp = await client.post(
                "/tickets", json={"type": "bug", "title": "Crash"}, headers=headers
            )
            ticket_id = (await resp.json())["ticketId"]

            tickets = await (await client.get("/tickets", headers=headers)).json()
            assert [(t["id"], t["status"]) for t in tickets] == [(ticket_id, "open")]
