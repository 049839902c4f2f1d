"""Live HTTP access to the CaneMap origin.

All network I/O goes through a single Network instance. The Network receives
an httpx.AsyncClient via constructor injection, already bound to the origin
with ``base_url``; the server lifespan owns the client lifecycle.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog

from canemap_offline import __version__
from canemap_offline.errors import NetworkError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from canemap_offline.config import UpstreamSettings

log = structlog.get_logger()

# Never replayed from a stored body or relayed across the proxy hop.
# httpx hands us decoded bodies, so the original encoding headers no longer apply.
_UNSTORABLE_HEADERS = frozenset(
    {
        "connection",
        "content-encoding",
        "content-length",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

# Request headers recomputed by httpx for the upstream hop.
_UNFORWARDABLE_REQUEST_HEADERS = _UNSTORABLE_HEADERS | {"host", "accept-encoding"}


def build_http_client(settings: UpstreamSettings) -> httpx.AsyncClient:
    """Create the shared httpx client bound to the origin. Called once at startup."""
    return httpx.AsyncClient(
        base_url=settings.origin_url,
        follow_redirects=False,
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers={"User-Agent": f"canemap-offline/{__version__}"},
        limits=httpx.Limits(
            max_connections=20,
            max_keepalive_connections=10,
        ),
    )


def strip_transfer_headers(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """Drop hop-by-hop and encoding headers, keeping order and duplicates."""
    return [(k, v) for k, v in headers if k.lower() not in _UNSTORABLE_HEADERS]


def forwardable_headers(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    return [(k, v) for k, v in headers if k.lower() not in _UNFORWARDABLE_REQUEST_HEADERS]


def clone_response(response: httpx.Response, request: httpx.Request) -> httpx.Response:
    """Copy a fully read response so one copy can be stored and one returned."""
    return httpx.Response(
        response.status_code,
        headers=strip_transfer_headers(response.headers.multi_items()),
        content=response.content,
        request=request,
    )


def is_navigation(request: httpx.Request) -> bool:
    """True for full-page loads, which browsers mark with ``Sec-Fetch-Mode: navigate``."""
    return request.headers.get("sec-fetch-mode", "").lower() == "navigate"


class Network:
    """Thin wrapper that turns transport failures into ``NetworkError``."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    def build_request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | Sequence[tuple[str, str]] | None = None,
        content: bytes | None = None,
    ) -> httpx.Request:
        """Build a request, resolving origin-relative URLs against the client's base URL."""
        return self._client.build_request(method, url, headers=headers, content=content)

    async def fetch(self, request: httpx.Request) -> httpx.Response:
        """Send a request and return the fully read response.

        Any status code counts as a response. Only a rejected fetch (DNS,
        connect, timeout, dropped connection, undecodable body) raises
        NetworkError.
        """
        try:
            response = await self._client.send(request)
        except httpx.RequestError as exc:
            log.info(
                "fetch_failed",
                url=str(request.url),
                method=request.method,
                error=type(exc).__name__,
            )
            raise NetworkError(f"Network error fetching {request.url}: {exc}") from exc

        log.debug(
            "fetch_complete",
            url=str(request.url),
            method=request.method,
            status_code=response.status_code,
            content_length=len(response.content),
        )
        return response
