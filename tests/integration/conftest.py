"""Integration test fixtures.

Provides a fully wired AppState over in-memory SQLite and a respx-mockable
origin, plus an httpx client that talks to the gate's ASGI app directly.
Storage, network and client fixtures come from tests/conftest.py.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest

from canemap_offline.config import Settings
from canemap_offline.registration import ClientRegistry, Registration
from canemap_offline.server import build_app
from canemap_offline.state import AppState

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from canemap_offline.network import Network
    from canemap_offline.storage import CacheStorage


@pytest.fixture()
def app_state(storage: CacheStorage, network: Network, clients: ClientRegistry) -> AppState:
    """AppState wired like the server lifespan does, without owned resources."""
    return AppState(
        settings=Settings(),
        storage=storage,
        network=network,
        registration=Registration(clients, network),
    )


@pytest.fixture()
async def gate_client(app_state: AppState) -> AsyncGenerator[httpx.AsyncClient, None]:
    app = build_app()
    app.state.offline = app_state
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://gate.local",
    ) as client:
        yield client
