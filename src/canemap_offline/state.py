"""Application state container.

AppState is created once at server startup (inside the Starlette lifespan)
and stored on ``app.state.offline`` for every route handler.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import aiosqlite
    import httpx

    from canemap_offline.config import Settings
    from canemap_offline.network import Network
    from canemap_offline.registration import Registration
    from canemap_offline.storage import CacheStorage


@dataclass
class AppState:
    """Holds all shared runtime state. Passed to every route handler."""

    settings: Settings
    storage: CacheStorage
    network: Network
    registration: Registration

    # Owned resources, closed at shutdown. Tests may leave them unset.
    http_client: httpx.AsyncClient | None = None
    db: aiosqlite.Connection | None = None

    async def aclose(self) -> None:
        """Close the owned HTTP client and database, if set."""
        if self.http_client is not None:
            await self.http_client.aclose()
        if self.db is not None:
            await self.db.close()
