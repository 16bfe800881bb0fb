"""WebSocket backend: sends and receives property updates as binary messages."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .service import PropertyKey, ServiceBackend
from .types import ClientState, ServiceType
from .wire import WireError, decode_message, encode_message

log = logging.getLogger(__name__)


class WsServiceBackend(ServiceBackend):
    """Service backend that talks to a single peer over a WebSocket.

    On the client side :meth:`connect` opens a connection to
    ``address:port``; on the server side :meth:`on_client_connected` serves
    an accepted connection, sending all known properties first.
    """

    def __init__(self, address: Any = "", port: int = 0) -> None:
        super().__init__()
        self.address = str(address)
        self.port = int(port)
        self.type = ServiceType.WEB_SOCKET
        self._socket: Any = None
        self._reader: asyncio.Task | None = None

    @property
    def url(self) -> str:
        host = self.address
        if ":" in host and not host.startswith("["):
            host = f"[{host}]"
        return f"ws://{host}:{self.port}"

    @property
    def connected(self) -> bool:
        return self._socket is not None

    async def connect(self) -> None:
        """Open a connection to the remote service and start reading from it."""
        self._emit_state(ClientState.CONNECTING, f"Connecting {self.name}")
        await self.disconnect()
        try:
            socket = await websockets.connect(self.url)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            self._emit_state(ClientState.ERROR, str(exc) or type(exc).__name__)
            return
        self._socket = socket
        self._emit_state(ClientState.CONNECTED)
        self._reader = asyncio.get_running_loop().create_task(self._read(socket, notify=True))

    async def disconnect(self) -> None:
        """Close the current connection, if any, without reporting a state change."""
        socket, self._socket = self._socket, None
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        if socket is not None:
            await socket.close()

    async def do_send(self, key: PropertyKey, value: bytes) -> bool:
        """Send one property update; return False if there is no open connection."""
        socket = self._socket
        if socket is None:
            log.debug("Socket not connected")
            return False
        message = encode_message(key, value)
        try:
            await socket.send(message)
        except ConnectionClosed:
            log.debug("Socket closed while sending")
            return False
        log.debug("Sent %d bytes", len(message))
        return True

    async def on_client_connected(self, websocket: Any) -> None:
        """Serve an accepted connection until it closes.

        Only one peer is served at a time; further connections are dropped.
        """
        if self._socket is not None:
            log.debug("Another client already connected")
            return
        self._socket = websocket
        log.debug("New connection. Send properties:")
        try:
            for key, value in list(self.properties.items()):
                log.debug("%s: %d", key, len(value))
                await websocket.send(encode_message(key, value))
        except ConnectionClosed:
            if self._socket is websocket:
                self._socket = None
            return
        await self._read(websocket, notify=False)

    def on_receive(self, message: bytes) -> None:
        """Store a received property update and notify the listeners."""
        try:
            key, value = decode_message(message)
        except WireError as exc:
            log.warning("Illegal data: %s", exc)
            return
        self.properties[key] = value
        self._emit_property_changed(key, value)

    async def _read(self, socket: Any, notify: bool) -> None:
        try:
            async for message in socket:
                if isinstance(message, (bytes, bytearray)):
                    self.on_receive(bytes(message))
        except ConnectionClosed:
            pass
        if self._socket is socket:
            self._socket = None
            if notify:
                self._emit_state(ClientState.DISCONNECTED)