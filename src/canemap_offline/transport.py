"""Security middleware for the offline gate's control endpoints."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING

import structlog
from starlette.datastructures import Headers
from starlette.responses import Response

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Receive, Scope, Send

log = structlog.get_logger()

CONTROL_PREFIX = "/__offline/"


class ControlAuthMiddleware:
    """Pure ASGI middleware guarding ``/__offline/`` with an optional bearer key.

    Proxied page traffic is never inspected: only paths under the control
    prefix are checked, and only when a key is configured.

    Implemented as pure ASGI (not BaseHTTPMiddleware) so proxied response
    bodies are never buffered twice by the middleware layer.
    """

    def __init__(self, app: ASGIApp, *, control_key: str | None = None) -> None:
        self.app = app
        self.control_key = control_key or None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if (
            scope["type"] == "http"
            and self.control_key is not None
            and scope["path"].startswith(CONTROL_PREFIX)
        ):
            headers = Headers(scope=scope)
            auth_header = headers.get("authorization", "")
            presented = auth_header[7:] if auth_header.startswith("Bearer ") else ""
            if not secrets.compare_digest(presented.encode(), self.control_key.encode()):
                log.warning("control_auth_rejected", path=scope["path"])
                await Response("Unauthorized", status_code=401)(scope, receive, send)
                return

        await self.app(scope, receive, send)
