"""Offline gate server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState in the Starlette lifespan and install the configured gate
- Expose the control endpoints under /__offline/
- Proxy every other request to the origin through the registration
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import quote

import aiosqlite
import structlog
import uvicorn
from starlette.applications import Starlette
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from canemap_offline import __version__
from canemap_offline.config import Settings
from canemap_offline.errors import NetworkError
from canemap_offline.gate import OfflineCacheGate
from canemap_offline.network import (
    Network,
    build_http_client,
    forwardable_headers,
    strip_transfer_headers,
)
from canemap_offline.registration import ClientRegistry, Registration
from canemap_offline.state import AppState
from canemap_offline.storage import CacheStorage
from canemap_offline.transport import ControlAuthMiddleware

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable
    from contextlib import AbstractAsyncContextManager

    import httpx
    from starlette.requests import Request
    from starlette.types import ASGIApp, Scope

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def build_gate(state: AppState) -> OfflineCacheGate:
    """A fresh gate for the configured generation, wired to the shared components."""
    return OfflineCacheGate(
        state.settings.gate,
        state.storage,
        state.network,
        state.registration.clients,
    )


def _make_lifespan(
    settings: Settings,
) -> Callable[[Starlette], AbstractAsyncContextManager[None]]:
    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncGenerator[None, None]:
        """Create and tear down all shared resources for the server's lifetime."""
        log.info(
            "server_starting",
            version=__version__,
            origin=settings.upstream.origin_url,
            generation=settings.gate.cache_name,
        )

        db_path = Path(settings.storage.db_path).expanduser()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(db_path))
        storage = CacheStorage(db)
        await storage.init_db()

        http_client = build_http_client(settings.upstream)
        network = Network(http_client)

        state = AppState(
            settings=settings,
            storage=storage,
            network=network,
            registration=Registration(ClientRegistry(), network),
            http_client=http_client,
            db=db,
        )
        app.state.offline = state

        # A failed install is logged by the registration; requests still pass
        # through to the origin, just without offline support.
        installed = await state.registration.install(build_gate(state))
        log.info("server_started", version=__version__, offline_ready=installed)

        try:
            yield
        finally:
            await state.registration.drain()
            await state.aclose()
            log.info("server_stopping")

    return lifespan


# ---------------------------------------------------------------------------
# Control endpoints
# ---------------------------------------------------------------------------


def _state(request: Request) -> AppState:
    return request.app.state.offline


async def status(request: Request) -> Response:
    return JSONResponse(_state(request).registration.status())


async def message(request: Request) -> Response:
    try:
        payload = await request.json()
    except ValueError:
        return PlainTextResponse("Invalid JSON", status_code=400)
    registration = _state(request).registration
    handled = await registration.message(payload)
    return JSONResponse({"handled": handled, **registration.status()})


async def update(request: Request) -> Response:
    state = _state(request)
    installed = await state.registration.install(build_gate(state))
    return JSONResponse({"installed": installed, **state.registration.status()})


async def connect_client(request: Request) -> Response:
    state = _state(request)
    state.registration.connect(request.path_params["client_id"])
    return JSONResponse(state.registration.status())


async def disconnect_client(request: Request) -> Response:
    state = _state(request)
    await state.registration.disconnect(request.path_params["client_id"])
    return JSONResponse(state.registration.status())


# ---------------------------------------------------------------------------
# Proxy
# ---------------------------------------------------------------------------


def _upstream_target(scope: Scope) -> str:
    """Path and query exactly as the client sent them, escapes intact."""
    raw_path = scope.get("raw_path")
    if raw_path:
        # Some servers include the query in raw_path; query_string is authoritative.
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = quote(scope["path"], safe="/:@!$&'()*+,;=-._~")
    query = scope.get("query_string", b"").decode("latin-1")
    return f"{path}?{query}" if query else path


async def _upstream_request(request: Request, state: AppState) -> httpx.Request:
    url = _upstream_target(request.scope)
    body = await request.body()
    return state.network.build_request(
        request.method,
        url,
        headers=forwardable_headers(request.headers.items()),
        content=body or None,
    )


def _relay(response: httpx.Response) -> Response:
    relayed = Response(content=response.content, status_code=response.status_code)
    for key, value in strip_transfer_headers(response.headers.multi_items()):
        relayed.headers.append(key, value)
    return relayed


async def proxy(request: Request) -> Response:
    state = _state(request)
    upstream = await _upstream_request(request, state)
    try:
        response = await state.registration.fetch(upstream)
    except NetworkError as exc:
        log.warning("proxy_upstream_unavailable", url=str(upstream.url), error=exc.message)
        return PlainTextResponse("Bad Gateway", status_code=502)
    return _relay(response)


_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def build_app(
    *, lifespan: Callable[[Starlette], AbstractAsyncContextManager[None]] | None = None
) -> Starlette:
    """Routes only. ``app.state.offline`` must be set by the lifespan or the caller."""
    routes = [
        Route("/__offline/status", status, methods=["GET"]),
        Route("/__offline/message", message, methods=["POST"]),
        Route("/__offline/update", update, methods=["POST"]),
        Route("/__offline/clients/{client_id}", connect_client, methods=["PUT"]),
        Route("/__offline/clients/{client_id}", disconnect_client, methods=["DELETE"]),
        Route("/{path:path}", proxy, methods=_ALL_METHODS),
    ]
    return Starlette(routes=routes, lifespan=lifespan)


def create_app(settings: Settings | None = None) -> ASGIApp:
    settings = settings or Settings()
    app = build_app(lifespan=_make_lifespan(settings))
    return ControlAuthMiddleware(app, control_key=settings.server.control_key)


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    settings = Settings()
    _setup_logging(settings)
    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,  # Disable uvicorn's default logging; structlog handles it
    )


if __name__ == "__main__":
    main()
