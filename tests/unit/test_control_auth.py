"""Tests for ControlAuthMiddleware.

Each test exercises the middleware directly via httpx's ASGI transport so no
real server is started.  The inner app is a trivial 200-OK echo that never
runs if the middleware short-circuits.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from canemap_offline.transport import ControlAuthMiddleware

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Receive, Scope, Send


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _ok_app(scope: Scope, receive: Receive, send: Send) -> None:
    """Minimal ASGI app that always returns 200 OK."""
    await send({"type": "http.response.start", "status": 200, "headers": []})
    await send({"type": "http.response.body", "body": b"ok"})


def _client(app: ASGIApp) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://localhost",
    )


# ---------------------------------------------------------------------------
# No key configured (default)
# ---------------------------------------------------------------------------


async def test_no_key_allows_control_requests() -> None:
    app = ControlAuthMiddleware(_ok_app, control_key="")
    async with _client(app) as client:
        response = await client.get("/__offline/status")
    assert response.status_code == 200


async def test_no_key_ignores_presented_token() -> None:
    app = ControlAuthMiddleware(_ok_app)
    async with _client(app) as client:
        response = await client.post(
            "/__offline/message", headers={"Authorization": "Bearer whatever"}
        )
    assert response.status_code == 200


# ---------------------------------------------------------------------------
# Key configured
# ---------------------------------------------------------------------------


async def test_correct_key_passes() -> None:
    app = ControlAuthMiddleware(_ok_app, control_key="secret-key")
    async with _client(app) as client:
        response = await client.get(
            "/__offline/status", headers={"Authorization": "Bearer secret-key"}
        )
    assert response.status_code == 200


async def test_wrong_key_returns_401() -> None:
    app = ControlAuthMiddleware(_ok_app, control_key="secret-key")
    async with _client(app) as client:
        response = await client.get(
            "/__offline/status", headers={"Authorization": "Bearer wrong-key"}
        )
    assert response.status_code == 401


async def test_missing_header_returns_401() -> None:
    app = ControlAuthMiddleware(_ok_app, control_key="secret-key")
    async with _client(app) as client:
        response = await client.post("/__offline/update")
    assert response.status_code == 401


async def test_non_bearer_scheme_returns_401() -> None:
    app = ControlAuthMiddleware(_ok_app, control_key="secret-key")
    async with _client(app) as client:
        response = await client.get(
            "/__offline/status", headers={"Authorization": "Basic secret-key"}
        )
    assert response.status_code == 401


async def test_page_traffic_never_checked() -> None:
    """Proxied pages stay reachable without a key even when control auth is on."""
    app = ControlAuthMiddleware(_ok_app, control_key="secret-key")
    async with _client(app) as client:
        response = await client.get("/frontend/Worker/Workers.html")
    assert response.status_code == 200
