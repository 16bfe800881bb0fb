"""Property store with debounced sending, and the backend interface behind it."""

from __future__ import annotations

import abc
import asyncio
import logging
import uuid
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Union

from .types import ClientState, ServiceType

log = logging.getLogger(__name__)

PropertyKey = Union[int, uuid.UUID]
StateCallback = Callable[[ClientState, str], None]
PropertyCallback = Callable[[PropertyKey, bytes], None]

DEFAULT_DEBOUNCE_MS = 200
_UINT32_MAX = 0xFFFFFFFF


def _check_key(key: object) -> None:
    if isinstance(key, uuid.UUID):
        return
    if isinstance(key, bool) or not isinstance(key, int):
        raise TypeError(f"property key must be an int or UUID, not {type(key).__name__}")
    if not 0 <= key <= _UINT32_MAX:
        raise ValueError(f"property key {key} is outside the unsigned 32-bit range")


class ServiceBackend(abc.ABC):
    """Transport behind a :class:`Service`.

    Holds the property values, the set of properties waiting to be sent and
    the listeners for state and property changes.
    """

    def __init__(self) -> None:
        self.name = ""
        self.type = ServiceType.INVALID
        self.properties: dict[PropertyKey, bytes] = {}
        # Ordered set of keys whose values have not been sent yet.
        self.dirty: dict[PropertyKey, None] = {}
        self._state_listeners: list[StateCallback] = []
        self._property_listeners: list[PropertyCallback] = []

    @abc.abstractmethod
    async def connect(self) -> None:
        """Open the connection to the remote side."""

    @abc.abstractmethod
    async def disconnect(self) -> None:
        """Close the connection to the remote side."""

    @abc.abstractmethod
    async def do_send(self, key: PropertyKey, value: bytes) -> bool:
        """Send one property value; return whether it went out."""

    async def flush(self) -> None:
        """Send every property that changed since the last flush."""
        pending = list(self.dirty)
        self.dirty.clear()
        for key in pending:
            value = self.properties[key]
            log.debug("Send property: %s, value size: %d", key, len(value))
            await self.do_send(key, value)

    def on_state_changed(self, callback: StateCallback) -> StateCallback:
        """Register ``callback(state, error_string)`` for state changes."""
        self._state_listeners.append(callback)
        return callback

    def _emit_state(self, state: ClientState, error_string: str = "") -> None:
        for callback in list(self._state_listeners):
            callback(state, error_string)

    def _emit_property_changed(self, key: PropertyKey, value: bytes) -> None:
        for callback in list(self._property_listeners):
            callback(key, value)


class Service:
    """Access to the properties of one service instance.

    Local changes are sent to the remote side after the debounce time;
    changes made remotely are reported to the property listeners. Sending is
    scheduled on the running asyncio loop; without one, changes stay pending
    until the backend is flushed.
    """

    def __init__(
        self,
        backend: ServiceBackend,
        name: str | None = None,
        type: ServiceType | int | None = None,
        debounce_time: int = DEFAULT_DEBOUNCE_MS,
    ) -> None:
        self._backend = backend
        if name is not None:
            backend.name = name
        if type is not None:
            backend.type = ServiceType(type)
        self._timer: asyncio.TimerHandle | None = None
        self._flush_task: asyncio.Task | None = None
        self._debounce_time = 0
        self.debounce_time = debounce_time

    @property
    def backend(self) -> ServiceBackend:
        return self._backend

    @property
    def name(self) -> str:
        """Host or device name the service runs on."""
        return self._backend.name

    @property
    def type(self) -> ServiceType:
        return self._backend.type

    @property
    def properties(self) -> Mapping[PropertyKey, bytes]:
        """Read-only view of the current property values."""
        return MappingProxyType(self._backend.properties)

    @property
    def debounce_time(self) -> int:
        """Delay in milliseconds between a change and its sending."""
        return self._debounce_time

    @debounce_time.setter
    def debounce_time(self, msec: int) -> None:
        if msec < 0:
            raise ValueError(f"debounce time must not be negative, not {msec}")
        self._debounce_time = int(msec)

    def set_property(self, key: PropertyKey, value: bytes) -> None:
        """Store ``value`` for ``key`` and schedule it for sending."""
        _check_key(key)
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise TypeError(f"property value must be bytes-like, not {type(value).__name__}")
        self._backend.properties[key] = bytes(value)
        self._backend.dirty[key] = None
        if self._timer is None:
            self._start_timer()

    def on_property_changed(self, callback: PropertyCallback) -> PropertyCallback:
        """Register ``callback(key, value)`` for remote property changes."""
        self._backend._property_listeners.append(callback)
        return callback

    def _start_timer(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timer = loop.call_later(self._debounce_time / 1000.0, self._on_timeout)

    def _on_timeout(self) -> None:
        self._timer = None
        self._flush_task = asyncio.get_running_loop().create_task(self._backend.flush())