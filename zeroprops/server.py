"""Starts and announces a property service that remote clients connect to."""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Any

import dns.exception
import dns.flags
import dns.message
import dns.name
import websockets

from .mdns import MDNS_GROUP, MDNS_PORT, build_announcement, parse_response
from .service import Service
from .types import ServiceConfiguration, ServiceType
from .websocket import WsServiceBackend

log = logging.getLogger(__name__)


def _local_ipv4() -> str:
    """Address of the interface that carries multicast traffic."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
        try:
            probe.connect((MDNS_GROUP, MDNS_PORT))
            address = probe.getsockname()[0]
        except OSError:
            return "127.0.0.1"
    return address if address != "0.0.0.0" else "127.0.0.1"


class _Responder(asyncio.DatagramProtocol):
    """Answers mDNS queries for one announced service instance."""

    def __init__(self, announcement: bytes) -> None:
        (info,) = parse_response(announcement)
        stype = dns.name.from_text(info.type + ".")
        self._names = {
            stype,
            dns.name.Name((info.name.encode("utf-8"),) + stype.labels),
            dns.name.from_text(info.hostname + "."),
        }
        self._announcement = announcement
        self._transport: asyncio.DatagramTransport | None = None

    @classmethod
    async def start(cls, announcement: bytes) -> _Responder:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                try:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
                except OSError:
                    pass
            sock.bind(("", MDNS_PORT))
            membership = socket.inet_aton(MDNS_GROUP) + socket.inet_aton("0.0.0.0")
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 255)
            sock.setblocking(False)
            responder = cls(announcement)
            await asyncio.get_running_loop().create_datagram_endpoint(lambda: responder, sock=sock)
        except BaseException:
            sock.close()
            raise
        responder._send(announcement, (MDNS_GROUP, MDNS_PORT))
        return responder

    def connection_made(self, transport: Any) -> None:
        self._transport = transport

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        try:
            query = dns.message.from_wire(data)
        except (dns.exception.DNSException, ValueError):
            return
        if query.flags & dns.flags.QR:
            return
        if not any(question.name in self._names for question in query.question):
            return
        if addr[1] != MDNS_PORT:
            # Legacy unicast query: answer the sender directly, echoing its id.
            self._send(query.id.to_bytes(2, "big") + self._announcement[2:], addr)
        else:
            self._send(self._announcement, (MDNS_GROUP, MDNS_PORT))

    def error_received(self, exc: Exception) -> None:
        log.debug("mDNS responder error: %s", exc)

    def _send(self, data: bytes, addr: tuple) -> None:
        if self._transport is not None:
            self._transport.sendto(data, addr)

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None


class Server:
    """Creates, starts and announces a WebSocket property service.

    Each call to :meth:`start_service` replaces the service started before.
    """

    def __init__(self, host: str = "0.0.0.0", publish: bool = True) -> None:
        self._host = host
        self._publish = publish
        self._ws_server: Any = None
        self._service: Service | None = None
        self._responder: _Responder | None = None

    @property
    def service(self) -> Service | None:
        return self._service

    @property
    def port(self) -> int | None:
        """Port the WebSocket server listens on, or None when stopped."""
        if self._ws_server is None:
            return None
        return next(iter(self._ws_server.sockets)).getsockname()[1]

    async def start_service(self, configuration: ServiceConfiguration) -> Service:
        """Start and announce the service described by ``configuration``."""
        await self.stop_service()
        if not configuration.zero_conf_type:
            raise ValueError("the configuration names no service type to publish")

        backend = WsServiceBackend()
        backend.name = configuration.zero_conf_type
        backend.type = ServiceType.WEB_SOCKET
        service = Service(backend, debounce_time=0)

        try:
            self._ws_server = await websockets.serve(backend.on_client_connected, self._host, 0)
        except OSError:
            log.warning("Error starting NetService.")
            raise
        self._service = service

        if self._publish:
            instance = socket.gethostname().split(".")[0] or "localhost"
            try:
                announcement = build_announcement(
                    instance,
                    configuration.zero_conf_type,
                    instance,
                    _local_ipv4(),
                    self.port,
                )
                self._responder = await _Responder.start(announcement)
                log.debug("TCP server published at port: %i", self.port)
            except (OSError, ValueError, dns.exception.DNSException) as exc:
                log.warning("Error publishing service: %s", exc)
        return service

    async def stop_service(self) -> None:
        """Stop the current service, its server and its announcement."""
        service, self._service = self._service, None
        if service is not None:
            await service.backend.disconnect()
        ws_server, self._ws_server = self._ws_server, None
        if ws_server is not None:
            ws_server.close()
            await ws_server.wait_closed()
        responder, self._responder = self._responder, None
        if responder is not None:
            responder.close()

    async def __aenter__(self) -> Server:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop_service()