"""Shared test fixtures for the canemap_offline test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import httpx
import pytest

from canemap_offline.config import GateSettings
from canemap_offline.gate import OfflineCacheGate
from canemap_offline.network import Network
from canemap_offline.registration import ClientRegistry
from canemap_offline.storage import CacheStorage

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

ORIGIN = "https://canemap.test"


@pytest.fixture()
def gate_settings() -> GateSettings:
    return GateSettings()


@pytest.fixture()
async def storage() -> AsyncGenerator[CacheStorage, None]:
    """In-memory SQLite cache storage, schema initialised."""
    async with aiosqlite.connect(":memory:") as db:
        storage = CacheStorage(db)
        await storage.init_db()
        yield storage


@pytest.fixture()
async def network() -> AsyncGenerator[Network, None]:
    """Network bound to the test origin. Mock responses with respx."""
    async with httpx.AsyncClient(base_url=ORIGIN) as client:
        yield Network(client)


@pytest.fixture()
def clients() -> ClientRegistry:
    return ClientRegistry()


@pytest.fixture()
def gate(
    gate_settings: GateSettings,
    storage: CacheStorage,
    network: Network,
    clients: ClientRegistry,
) -> OfflineCacheGate:
    return OfflineCacheGate(gate_settings, storage, network, clients)
