"""Shared value types: service configuration, service kinds and client states."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass


@dataclass(frozen=True)
class ServiceConfiguration:
    """Describes the services to announce or discover.

    A non-empty ``zero_conf_type`` (e.g. ``_raop._tcp``) enables the WebSocket
    backend; a ``ble_uuid`` enables the Bluetooth Low Energy backend. A nil
    UUID counts as no UUID.
    """

    zero_conf_type: str = ""
    ble_uuid: uuid.UUID | None = None

    def __post_init__(self) -> None:
        ble_uuid = self.ble_uuid
        if isinstance(ble_uuid, str):
            ble_uuid = uuid.UUID(ble_uuid)
        elif ble_uuid is not None and not isinstance(ble_uuid, uuid.UUID):
            raise TypeError(f"ble_uuid must be a UUID or str, not {type(ble_uuid).__name__}")
        if ble_uuid is not None and ble_uuid.int == 0:
            ble_uuid = None
        object.__setattr__(self, "ble_uuid", ble_uuid)


class ServiceType(enum.IntFlag):
    """The backend a service runs on."""

    INVALID = 0
    BLUETOOTH_LE = 0x1
    WEB_SOCKET = 0x2
    ALL = BLUETOOTH_LE | WEB_SOCKET


class ClientState(enum.IntEnum):
    """The states a client can be in."""

    IDLE = 0
    DISCOVERING = 1
    CONNECTING = 2
    CONNECTED = 3
    DISCONNECTED = 4
    ERROR = 5