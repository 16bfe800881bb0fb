"""Encoding of single property updates exchanged over a WebSocket.

Each binary message is a msgpack map header for one entry (``0x81``)
followed by the packed key and the packed value. Keys are unsigned 32-bit
integers or UUIDs; UUIDs travel as msgpack extension type 30 holding the
16 RFC 4122 bytes. Values are binary blobs.
"""

from __future__ import annotations

import uuid

import msgpack

MAP_ONE_ENTRY = 0x81
UUID_EXT_TYPE = 30
_UINT32_MAX = 0xFFFFFFFF


class WireError(ValueError):
    """Raised when a received message is not a valid property update."""


def _check_key(key: object) -> None:
    if isinstance(key, uuid.UUID):
        return
    if isinstance(key, bool) or not isinstance(key, int):
        raise TypeError(f"property key must be an int or UUID, not {type(key).__name__}")
    if not 0 <= key <= _UINT32_MAX:
        raise ValueError(f"property key {key} is outside the unsigned 32-bit range")


def _pack_key(key: int | uuid.UUID) -> bytes:
    if isinstance(key, uuid.UUID):
        return msgpack.packb(msgpack.ExtType(UUID_EXT_TYPE, key.bytes))
    return msgpack.packb(key)


def encode_message(key: int | uuid.UUID, value: bytes) -> bytes:
    """Return the binary message carrying ``value`` for property ``key``."""
    _check_key(key)
    if not isinstance(value, (bytes, bytearray, memoryview)):
        raise TypeError(f"property value must be bytes-like, not {type(value).__name__}")
    return bytes([MAP_ONE_ENTRY]) + _pack_key(key) + msgpack.packb(bytes(value), use_bin_type=True)


def _ext_hook(code: int, data: bytes) -> object:
    if code == UUID_EXT_TYPE:
        return uuid.UUID(bytes=data)
    return msgpack.ExtType(code, data)


def _is_valid_key(key: object) -> bool:
    if isinstance(key, uuid.UUID):
        return True
    return isinstance(key, int) and not isinstance(key, bool) and 0 <= key <= _UINT32_MAX


def decode_message(message: bytes) -> tuple[int | uuid.UUID, bytes]:
    """Split a received message into its property key and value."""
    if not message:
        raise WireError("empty message")
    if message[0] != MAP_ONE_ENTRY:
        raise WireError(f"illegal message header: 0x{message[0]:02x}")

    unpacker = msgpack.Unpacker(raw=False, ext_hook=_ext_hook, strict_map_key=False)
    unpacker.feed(bytes(message[1:]))
    try:
        items = list(unpacker)
    except ValueError as exc:
        raise WireError(f"malformed message body: {exc}") from exc

    if len(items) != 2:
        raise WireError(f"expected a key and a value, got {len(items)} objects")
    key, value = items
    if not _is_valid_key(key):
        raise WireError(f"illegal property key: {key!r}")
    if not isinstance(value, bytes):
        raise WireError(f"illegal property value: {value!r}")
    return key, value