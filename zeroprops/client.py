"""Discovers property services on the network and connects to them."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable

from .mdns import DiscoveredService, browse
from .service import Service, ServiceBackend
from .types import ClientState, ServiceConfiguration, ServiceType
from .websocket import WsServiceBackend

log = logging.getLogger(__name__)

Browser = Callable[[str, "float | None"], AsyncIterator[DiscoveredService]]
StateCallback = Callable[[ClientState, str], None]

DEFAULT_DISCOVERY_TIMEOUT_MS = 8000


class Client:
    """Discovers remote services and connects to one of them.

    ``browser`` finds services of a type within a timeout in seconds (None
    meaning no limit); it defaults to mDNS browsing.
    """

    def __init__(self, browser: Browser | None = None) -> None:
        self._browser = browser or browse
        self._ms_timeout = DEFAULT_DISCOVERY_TIMEOUT_MS
        self._services: list[Service] = []
        self._current: Service | None = None
        self._task: asyncio.Task | None = None
        self._forwarded: set[ServiceBackend] = set()
        self._state_listeners: list[StateCallback] = []
        self._services_listeners: list[Callable[[], None]] = []

    @property
    def current_service(self) -> Service | None:
        return self._current

    def set_discovery_timeout(self, ms_timeout: int) -> None:
        """Set the longest discovery time in milliseconds; 0 means no limit.

        Takes effect when the next discovery starts.
        """
        if ms_timeout < 0:
            raise ValueError(f"timeout must not be negative, not {ms_timeout}")
        self._ms_timeout = int(ms_timeout)

    def discovered_services(self) -> list[Service]:
        """Services found by the current discovery."""
        return list(self._services)

    def on_state_changed(self, callback: StateCallback) -> StateCallback:
        """Register ``callback(state, error_string)`` for state changes."""
        self._state_listeners.append(callback)
        return callback

    def on_services_changed(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback()`` for changes of the discovered services."""
        self._services_listeners.append(callback)
        return callback

    def start_discovery(self, config: ServiceConfiguration) -> None:
        """Restart discovery of the services described by ``config``.

        Previously discovered services are dropped. Needs a running event loop.
        """
        self._cancel_task()
        self._services.clear()
        self._emit_services_changed()
        self._emit_state(ClientState.DISCOVERING)

        if config.zero_conf_type:
            self._task = asyncio.get_running_loop().create_task(
                self._discover(config.zero_conf_type)
            )
        if config.ble_uuid is not None:
            log.warning("Bluetooth LE discovery is not available")

    def stop_discovery(self) -> None:
        """Stop discovery and report the idle state."""
        self._cancel_task()
        self._emit_state(ClientState.IDLE)

    async def connect_to_service(self, service: Service | None) -> None:
        """Connect to ``service``; its state changes are reported by this client."""
        self.disconnect_from_service()
        if service is None:
            return
        self.stop_discovery()
        self._emit_state(ClientState.CONNECTING, f"Connecting {service.name}")

        self._current = service
        backend = service.backend
        if backend not in self._forwarded:
            self._forwarded.add(backend)

            def forward(state: ClientState, error_string: str) -> None:
                if self._current is not None and self._current.backend is backend:
                    self._emit_state(state, error_string)

            backend.on_state_changed(forward)
        await backend.connect()

    def disconnect_from_service(self) -> None:
        """Forget the current service; its state changes are no longer reported."""
        self._current = None

    async def _discover(self, service_type: str) -> None:
        timeout = self._ms_timeout / 1000.0 if self._ms_timeout else None
        try:
            async for found in self._browser(service_type, timeout):
                self._add(found)
        except OSError as exc:
            self._task = None
            self._emit_state(ClientState.ERROR, str(exc) or type(exc).__name__)
            return
        self.stop_discovery()

    def _add(self, found: DiscoveredService) -> None:
        backend = WsServiceBackend(found.address, found.port)
        self._services.append(Service(backend, name=found.name, type=ServiceType.WEB_SOCKET))
        self._emit_services_changed()

    def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _emit_state(self, state: ClientState, error_string: str = "") -> None:
        for callback in list(self._state_listeners):
            callback(state, error_string)

    def _emit_services_changed(self) -> None:
        for callback in list(self._services_listeners):
            callback()