"""Multicast DNS service discovery and announcement messages.

Queries and answers are plain DNS messages sent to the mDNS group. Answers
set the cache-flush bit on the records that belong to one host only;
received messages may carry that bit and the unicast-response bit on any
record or question.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
import struct
from collections.abc import AsyncIterator, Iterable, Iterator
from dataclasses import dataclass

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.rdataclass
import dns.rdatatype
import dns.rdtypes.ANY.PTR
import dns.rdtypes.ANY.TXT
import dns.rdtypes.IN.A
import dns.rdtypes.IN.SRV
import dns.rrset

log = logging.getLogger(__name__)

MDNS_GROUP = "224.0.0.251"
MDNS_PORT = 5353

HOST_TTL = 120
SERVICE_TTL = 4500

_HEADER = struct.Struct("!HHHHHH")
_CLASS_TOP_BIT = 0x80


@dataclass(frozen=True)
class DiscoveredService:
    """A service instance found on the network."""

    name: str
    type: str
    hostname: str
    address: str
    port: int
    txt: tuple[str, ...] = ()


def _qualify(service_type: str) -> dns.name.Name:
    text = service_type.strip().rstrip(".")
    if not text:
        raise ValueError("service type must not be empty")
    if not text.lower().endswith(".local"):
        text += ".local"
    return dns.name.from_text(text + ".")


def _skip_name(wire: bytes | bytearray, pos: int) -> int:
    while True:
        if pos >= len(wire):
            raise ValueError("truncated name")
        length = wire[pos]
        if length == 0:
            return pos + 1
        if length & 0xC0 == 0xC0:
            if pos + 2 > len(wire):
                raise ValueError("truncated name pointer")
            return pos + 2
        if length & 0xC0:
            raise ValueError("unsupported label type")
        pos += 1 + length


def _class_offsets(wire: bytes | bytearray) -> Iterator[tuple[int, int, bool]]:
    """Yield (offset of class field, record type, is question) for every entry."""
    if len(wire) < _HEADER.size:
        raise ValueError("message shorter than a DNS header")
    _, _, qdcount, ancount, nscount, arcount = _HEADER.unpack_from(wire)
    pos = _HEADER.size
    for _ in range(qdcount):
        pos = _skip_name(wire, pos)
        if pos + 4 > len(wire):
            raise ValueError("truncated question")
        (rdtype,) = struct.unpack_from("!H", wire, pos)
        yield pos + 2, rdtype, True
        pos += 4
    for _ in range(ancount + nscount + arcount):
        pos = _skip_name(wire, pos)
        if pos + 10 > len(wire):
            raise ValueError("truncated record")
        rdtype, _, _, rdlength = struct.unpack_from("!HHIH", wire, pos)
        yield pos + 2, rdtype, False
        pos += 10 + rdlength
        if pos > len(wire):
            raise ValueError("truncated record data")


def _strip_mdns_bits(wire: bytes) -> bytes:
    buf = bytearray(wire)
    for offset, rdtype, _ in _class_offsets(buf):
        if rdtype != dns.rdatatype.OPT:
            buf[offset] &= ~_CLASS_TOP_BIT & 0xFF
    return bytes(buf)


def build_query(service_type: str) -> bytes:
    """Return an mDNS PTR query for ``service_type`` (``.local`` is implied)."""
    query = dns.message.make_query(_qualify(service_type), dns.rdatatype.PTR)
    query.id = 0
    query.flags = 0
    return query.to_wire()


def build_announcement(
    instance: str,
    service_type: str,
    hostname: str,
    address: str,
    port: int,
    txt: Iterable[str] = (),
) -> bytes:
    """Return an mDNS answer announcing one service instance on ``address:port``."""
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"port {port} is out of range")
    ipv4 = ipaddress.IPv4Address(address)
    stype = _qualify(service_type)
    full = dns.name.Name((instance.encode("utf-8"),) + stype.labels)
    host = _qualify(hostname)
    strings = [s.encode("utf-8") for s in txt] or [b""]

    IN = dns.rdataclass.IN
    message = dns.message.Message(id=0)
    message.flags = dns.flags.QR | dns.flags.AA
    message.answer.append(
        dns.rrset.from_rdata(stype, SERVICE_TTL, dns.rdtypes.ANY.PTR.PTR(IN, dns.rdatatype.PTR, full))
    )
    message.additional.append(
        dns.rrset.from_rdata(
            full, HOST_TTL, dns.rdtypes.IN.SRV.SRV(IN, dns.rdatatype.SRV, 0, 0, port, host)
        )
    )
    message.additional.append(
        dns.rrset.from_rdata(full, SERVICE_TTL, dns.rdtypes.ANY.TXT.TXT(IN, dns.rdatatype.TXT, strings))
    )
    message.additional.append(
        dns.rrset.from_rdata(host, HOST_TTL, dns.rdtypes.IN.A.A(IN, dns.rdatatype.A, str(ipv4)))
    )

    wire = bytearray(message.to_wire())
    for offset, rdtype, is_question in _class_offsets(wire):
        if not is_question and rdtype != dns.rdatatype.PTR:
            wire[offset] |= _CLASS_TOP_BIT
    return bytes(wire)


def parse_response(data: bytes) -> list[DiscoveredService]:
    """Return the fully described service instances contained in an mDNS answer.

    An instance needs an SRV record and an A record for its target host.
    Queries yield no services. Malformed data raises :class:`ValueError`.
    """
    try:
        message = dns.message.from_wire(_strip_mdns_bits(bytes(data)))
    except dns.exception.DNSException as exc:
        raise ValueError(f"malformed mDNS message: {exc}") from exc
    if not message.flags & dns.flags.QR:
        return []

    services: dict[dns.name.Name, dns.rdtypes.IN.SRV.SRV] = {}
    texts: dict[dns.name.Name, tuple[str, ...]] = {}
    addresses: dict[dns.name.Name, str] = {}
    for rrset in list(message.answer) + list(message.additional):
        if rrset.rdclass != dns.rdataclass.IN:
            continue
        for rdata in rrset:
            if rrset.rdtype == dns.rdatatype.SRV:
                services[rrset.name] = rdata
            elif rrset.rdtype == dns.rdatatype.TXT:
                texts[rrset.name] = tuple(
                    s.decode("utf-8", "replace") for s in rdata.strings if s
                )
            elif rrset.rdtype == dns.rdatatype.A:
                addresses.setdefault(rrset.name, rdata.address)

    found = []
    for owner, srv in services.items():
        address = addresses.get(srv.target)
        if address is None or len(owner.labels) < 2:
            continue
        found.append(
            DiscoveredService(
                name=owner.labels[0].decode("utf-8", "replace"),
                type=owner.parent().to_text(omit_final_dot=True),
                hostname=srv.target.to_text(omit_final_dot=True),
                address=address,
                port=srv.port,
                txt=texts.get(owner, ()),
            )
        )
    return found


class _Receiver(asyncio.DatagramProtocol):
    def __init__(self, queue: asyncio.Queue[bytes]) -> None:
        self._queue = queue

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        self._queue.put_nowait(data)

    def error_received(self, exc: Exception) -> None:
        log.debug("mDNS socket error: %s", exc)


async def browse(service_type: str, timeout: float | None) -> AsyncIterator[DiscoveredService]:
    """Yield instances of ``service_type`` as they answer, until ``timeout`` seconds pass.

    With a timeout of None, browsing goes on until the iteration is stopped.
    Queries are repeated with growing intervals.
    """
    if timeout is not None and timeout < 0:
        raise ValueError(f"timeout must not be negative, not {timeout}")
    wanted = _qualify(service_type).to_text(omit_final_dot=True).lower()
    query = build_query(service_type)
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[bytes] = asyncio.Queue()

    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 255)
        sock.bind(("", 0))
        sock.setblocking(False)
        transport, _ = await loop.create_datagram_endpoint(lambda: _Receiver(queue), sock=sock)
    except BaseException:
        sock.close()
        raise

    seen: set[tuple[str, str, int]] = set()
    deadline = None if timeout is None else loop.time() + timeout
    interval = 1.0
    next_query = loop.time()
    try:
        while True:
            now = loop.time()
            if deadline is not None and now >= deadline:
                return
            if now >= next_query:
                transport.sendto(query, (MDNS_GROUP, MDNS_PORT))
                next_query = now + interval
                interval = min(interval * 2, 60.0)
            wait = next_query - now
            if deadline is not None:
                wait = min(wait, deadline - now)
            try:
                data = await asyncio.wait_for(queue.get(), wait)
            except asyncio.TimeoutError:
                continue
            try:
                found = parse_response(data)
            except ValueError as exc:
                log.debug("Ignoring malformed mDNS packet: %s", exc)
                continue
            for service in found:
                if service.type.lower() != wanted:
                    continue
                key = (service.name, service.address, service.port)
                if key in seen:
                    continue
                seen.add(key)
                yield service
    finally:
        transport.close()