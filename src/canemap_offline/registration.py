"""Hosting runtime for offline cache gates.

Registration decides which gate is active, which one is waiting, and when the
waiting one may take over. It plays the part a browser plays for a service
worker registration, so the gate itself only ever sees its four lifecycle
calls.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from canemap_offline.errors import InstallError

if TYPE_CHECKING:
    import httpx

    from canemap_offline.gate import OfflineCacheGate
    from canemap_offline.protocols import NetworkProtocol

log = structlog.get_logger()


class ClientRegistry:
    """Open client contexts and the generation controlling each of them."""

    def __init__(self) -> None:
        self._controllers: dict[str, str | None] = {}
        self.controller: str | None = None  # Generation that new clients start under

    def connect(self, client_id: str) -> None:
        if client_id not in self._controllers:
            self._controllers[client_id] = self.controller
            log.info("client_connected", client_id=client_id, controller=self.controller)

    def disconnect(self, client_id: str) -> bool:
        if client_id not in self._controllers:
            return False
        del self._controllers[client_id]
        log.info("client_disconnected", client_id=client_id)
        return True

    def controlled_by(self, generation: str) -> list[str]:
        return [cid for cid, gen in self._controllers.items() if gen == generation]

    def snapshot(self) -> dict[str, str | None]:
        return dict(self._controllers)

    async def claim(self, generation: str) -> None:
        """Put every open client under ``generation`` without a reload."""
        for client_id, previous in self._controllers.items():
            if previous != generation:
                log.info(
                    "controller_changed",
                    client_id=client_id,
                    previous=previous,
                    controller=generation,
                )
            self._controllers[client_id] = generation
        self.controller = generation


class Registration:
    """Active and waiting gates for one scope."""

    def __init__(self, clients: ClientRegistry, network: NetworkProtocol) -> None:
        self.clients = clients
        self.active: OfflineCacheGate | None = None
        self.waiting: OfflineCacheGate | None = None
        self.last_install_error: dict | None = None
        self._network = network

    async def install(self, gate: OfflineCacheGate) -> bool:
        """Install a gate and activate it as soon as the waiting rule allows.

        Returns False when installation failed; the active gate, if any, keeps
        serving from its own generation.
        """
        try:
            await gate.on_install()
        except InstallError as exc:
            log.error(
                "registration_install_failed",
                generation=gate.cache_name,
                active=self.active.cache_name if self.active else None,
                error=exc.message,
            )
            self.last_install_error = exc.to_dict()
            return False

        self.last_install_error = None

        if self.waiting is not None and self.waiting is not gate:
            self.waiting.retire()
        self.waiting = gate
        await self._maybe_activate()
        return True

    async def message(self, payload: Any) -> bool:
        """Deliver a control message to the waiting and active gates."""
        handled = False
        for gate in (self.waiting, self.active):
            if gate is not None and await gate.on_message(payload):
                handled = True
        await self._maybe_activate()
        return handled

    def connect(self, client_id: str) -> None:
        self.clients.connect(client_id)

    async def disconnect(self, client_id: str) -> None:
        self.clients.disconnect(client_id)
        await self._maybe_activate()

    async def fetch(self, request: httpx.Request) -> httpx.Response:
        """Route a request through the active gate, or straight to the network.

        Network errors for requests the gate does not handle propagate to the
        caller unchanged.
        """
        if self.active is not None:
            response = await self.active.on_fetch(request)
            if response is not None:
                return response
        return await self._network.fetch(request)

    async def drain(self) -> None:
        for gate in (self.active, self.waiting):
            if gate is not None:
                await gate.drain()

    def status(self) -> dict:
        return {
            "active": _describe(self.active),
            "waiting": _describe(self.waiting),
            "clients": self.clients.snapshot(),
            "last_install_error": self.last_install_error,
        }

    async def _maybe_activate(self) -> None:
        gate = self.waiting
        if gate is None:
            return

        if self.active is not None and not gate.skip_waiting_requested:
            blocking = self.clients.controlled_by(self.active.cache_name)
            if blocking:
                log.info(
                    "gate_waiting",
                    generation=gate.cache_name,
                    active=self.active.cache_name,
                    blocking_clients=len(blocking),
                )
                return

        self.waiting = None
        previous = self.active
        await gate.on_activate()
        self.active = gate
        if previous is not None and previous is not gate:
            await previous.drain()
            previous.retire()


def _describe(gate: OfflineCacheGate | None) -> dict | None:
    if gate is None:
        return None
    return {
        "generation": gate.cache_name,
        "state": gate.state,
        "skip_waiting": gate.skip_waiting_requested,
    }
