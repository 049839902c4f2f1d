"""Protocol interfaces for the gate's external collaborators.

OfflineCacheGate and Registration reference these protocols, not the concrete
implementations. This allows:
- Tests to substitute spies or failing stores around the real components
- Another persistent backend to replace SQLite without touching the gate
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    import httpx


class NetworkProtocol(Protocol):
    """Live HTTP access to the origin."""

    def build_request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | Sequence[tuple[str, str]] | None = None,
        content: bytes | None = None,
    ) -> httpx.Request: ...

    async def fetch(self, request: httpx.Request) -> httpx.Response: ...


class CacheStoreProtocol(Protocol):
    """One named cache generation."""

    name: str

    async def add_all(self, entries: Sequence[tuple[httpx.Request, httpx.Response]]) -> None: ...

    async def match(self, request: httpx.Request) -> httpx.Response | None: ...

    async def put(self, request: httpx.Request, response: httpx.Response) -> None: ...

    async def keys(self) -> list[str]: ...


class CacheStorageProtocol(Protocol):
    """The persistent set of cache generations."""

    async def open(self, name: str) -> CacheStoreProtocol: ...

    async def has(self, name: str) -> bool: ...

    async def keys(self) -> list[str]: ...

    async def delete(self, name: str) -> bool: ...


class ClientsProtocol(Protocol):
    """Open client contexts that a newly active generation takes control of."""

    async def claim(self, generation: str) -> None: ...
