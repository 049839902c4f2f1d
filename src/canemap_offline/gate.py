"""Offline cache gate for role-scoped CaneMap pages.

The gate sits in front of every page and resource fetch. Worker and Driver
pages (and the Common scripts they share) are served network first, with the
last good copy from the current cache generation as the fallback when the
network is gone. Handler pages are never intercepted at all.

Lifecycle, driven by the registration (or any other host):

    new → installing → installed → activating → active
                  ↘ redundant (install failed, or superseded later)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import ValidationError

from canemap_offline.errors import CacheStorageError, InstallError, NetworkError
from canemap_offline.models.gate import InterceptDecision, LifecycleState, SkipWaitingMessage
from canemap_offline.network import clone_response, is_navigation

if TYPE_CHECKING:
    from canemap_offline.config import GateSettings
    from canemap_offline.protocols import CacheStorageProtocol, ClientsProtocol, NetworkProtocol

log = structlog.get_logger()

OFFLINE_PAGE_TEXT = "Offline - Page not available"
OFFLINE_RESOURCE_TEXT = "Offline"


def classify(method: str, path: str, settings: GateSettings) -> InterceptDecision:
    """Decide whether the gate participates in a request.

    The excluded marker wins over everything else, including the method check,
    so a Handler request is never even looked at by the cache.
    """
    if settings.excluded_marker.lower() in path.lower():
        return InterceptDecision.EXCLUDED
    if method.upper() != "GET":
        return InterceptDecision.PASSTHROUGH
    if not any(marker in path for marker in settings.managed_markers):
        return InterceptDecision.PASSTHROUGH
    return InterceptDecision.MANAGED


def offline_response(request: httpx.Request, *, navigation: bool) -> httpx.Response:
    if navigation:
        return httpx.Response(
            503,
            headers={"Content-Type": "text/plain"},
            text=OFFLINE_PAGE_TEXT,
            request=request,
        )
    return httpx.Response(503, text=OFFLINE_RESOURCE_TEXT, request=request)


class OfflineCacheGate:
    """One cache generation's install/activate/fetch/message handlers."""

    def __init__(
        self,
        settings: GateSettings,
        storage: CacheStorageProtocol,
        network: NetworkProtocol,
        clients: ClientsProtocol,
    ) -> None:
        self.settings = settings
        self.state = LifecycleState.NEW
        self.skip_waiting_requested = False
        self._storage = storage
        self._network = network
        self._clients = clients
        self._pending_writes: set[asyncio.Task[None]] = set()
        self._log = log.bind(generation=settings.cache_name)

    @property
    def cache_name(self) -> str:
        return self.settings.cache_name

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def on_install(self) -> None:
        """Warm the generation with every essential URL, atomically.

        Everything is fetched before the store is opened, so a failed install
        leaves persistent storage exactly as it was.
        """
        self.state = LifecycleState.INSTALLING
        self._log.info("gate_installing", essential_urls=len(self.settings.essential_urls))

        requests = [self._network.build_request("GET", url) for url in self.settings.essential_urls]
        try:
            responses = await asyncio.gather(*(self._network.fetch(r) for r in requests))
        except NetworkError as exc:
            self._fail_install(exc.message)
            raise InstallError(exc.message) from exc

        for request, response in zip(requests, responses, strict=True):
            if not response.is_success:
                message = f"HTTP {response.status_code} fetching essential URL {request.url}"
                self._fail_install(message)
                raise InstallError(message)

        existed = True
        try:
            existed = await self._storage.has(self.cache_name)
            store = await self._storage.open(self.cache_name)
            await store.add_all(list(zip(requests, responses, strict=True)))
        except CacheStorageError as exc:
            if not existed:
                await self._discard_generation()
            self._fail_install(exc.message)
            raise InstallError(exc.message) from exc

        self.state = LifecycleState.INSTALLED
        self._log.info("gate_installed")
        if self.settings.skip_waiting_on_install:
            self.skip_waiting()

    async def on_activate(self) -> list[str]:
        """Delete every stale generation, then take control of open clients.

        Deletions are independent: one failing is logged and the rest still
        run. Returns the names that were actually deleted.
        """
        self.state = LifecycleState.ACTIVATING
        self._log.info("gate_activating")

        deleted: list[str] = []
        try:
            names = await self._storage.keys()
        except CacheStorageError:
            self._log.warning("cache_generation_list_error", exc_info=True)
            names = []

        for name in names:
            if name == self.cache_name:
                continue
            try:
                if await self._storage.delete(name):
                    deleted.append(name)
                    self._log.info("cache_generation_deleted", stale_generation=name)
            except CacheStorageError:
                self._log.warning(
                    "cache_generation_delete_error", stale_generation=name, exc_info=True
                )

        await self._clients.claim(self.cache_name)
        self.state = LifecycleState.ACTIVE
        self._log.info("gate_activated", deleted=deleted)
        return deleted

    async def on_message(self, payload: Any) -> bool:
        """Handle an out-of-band control message. Returns True if it was understood."""
        try:
            SkipWaitingMessage.model_validate(payload)
        except ValidationError:
            self._log.debug("gate_message_ignored", payload_type=type(payload).__name__)
            return False
        self.skip_waiting()
        return True

    def skip_waiting(self) -> None:
        if not self.skip_waiting_requested:
            self._log.info("gate_skip_waiting")
        self.skip_waiting_requested = True

    def retire(self) -> None:
        self.state = LifecycleState.REDUNDANT
        self._log.info("gate_redundant")

    def _fail_install(self, reason: str) -> None:
        self.state = LifecycleState.REDUNDANT
        self._log.error("gate_install_failed", reason=reason)

    async def _discard_generation(self) -> None:
        """Remove a generation this install created but never filled."""
        try:
            await self._storage.delete(self.cache_name)
        except CacheStorageError:
            self._log.warning("cache_generation_discard_error", exc_info=True)

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def classify(self, request: httpx.Request) -> InterceptDecision:
        return classify(request.method, request.url.path, self.settings)

    async def on_fetch(self, request: httpx.Request) -> httpx.Response | None:
        """Serve a request, or return ``None`` to leave it to the caller's network.

        Only MANAGED requests get a response from here. A live 200 refreshes
        the cache in the background; a rejected fetch falls back to the current
        generation, then to a 503.
        """
        if self.classify(request) is not InterceptDecision.MANAGED:
            return None

        navigation = is_navigation(request)
        try:
            response = await self._network.fetch(request)
        except NetworkError:
            return await self._fallback(request, navigation=navigation)

        if response.status_code == 200:
            self._schedule_put(request, clone_response(response, request))
        return response

    async def drain(self) -> None:
        """Wait for background cache writes started so far."""
        if self._pending_writes:
            await asyncio.gather(*self._pending_writes, return_exceptions=True)

    async def _fallback(self, request: httpx.Request, *, navigation: bool) -> httpx.Response:
        cached: httpx.Response | None = None
        try:
            store = await self._storage.open(self.cache_name)
            cached = await store.match(request)
        except CacheStorageError:
            self._log.warning("cache_open_error", url=str(request.url), exc_info=True)

        if cached is not None:
            self._log.info("offline_cache_hit", url=str(request.url), navigation=navigation)
            return cached

        self._log.info("offline_cache_miss", url=str(request.url), navigation=navigation)
        return offline_response(request, navigation=navigation)

    def _schedule_put(self, request: httpx.Request, response: httpx.Response) -> None:
        task = asyncio.create_task(self._put(request, response))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _put(self, request: httpx.Request, response: httpx.Response) -> None:
        try:
            store = await self._storage.open(self.cache_name)
            await store.put(request, response)
        except CacheStorageError:
            # Never surfaces: the live response has already been delivered.
            self._log.warning("cache_write_error", url=str(request.url), exc_info=True)
