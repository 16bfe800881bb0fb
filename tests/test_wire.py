import uuid

import msgpack
import pytest

from zeroprops.wire import WireError, decode_message, encode_message

SERVICE_UUID = uuid.UUID("ad100000-d901-11e8-9f8b-f2801f1b9fd1")


def test_encode_integer_key_bytes():
    assert encode_message(1, b"ab") == b"\x81\x01\xc4\x02ab"


def test_encode_uuid_key_uses_extension_30():
    message = encode_message(SERVICE_UUID, b"")
    assert message == b"\x81\xd8\x1e" + SERVICE_UUID.bytes + b"\xc4\x00"


@pytest.mark.parametrize(
    "key, value",
    [
        (0, b""),
        (1, b"\x00\x01\x02"),
        (0xFFFFFFFF, b"x" * 300),
        (SERVICE_UUID, b"peq"),
        (uuid.UUID(int=0), b"\xff"),
    ],
)
def test_round_trip(key, value):
    decoded_key, decoded_value = decode_message(encode_message(key, value))
    assert decoded_key == key
    assert decoded_value == value


def test_encode_accepts_bytearray():
    assert decode_message(encode_message(7, bytearray(b"abc"))) == (7, b"abc")


def test_encode_rejects_out_of_range_key():
    with pytest.raises(ValueError):
        encode_message(0x1_0000_0000, b"")
    with pytest.raises(ValueError):
        encode_message(-1, b"")


def test_encode_rejects_wrong_key_type():
    with pytest.raises(TypeError):
        encode_message("name", b"")
    with pytest.raises(TypeError):
        encode_message(True, b"")


def test_encode_rejects_non_bytes_value():
    with pytest.raises(TypeError):
        encode_message(1, "text")


def test_decode_empty_message():
    with pytest.raises(WireError):
        decode_message(b"")


def test_decode_wrong_header():
    with pytest.raises(WireError):
        decode_message(b"\x80\x01\xc4\x00")


def test_decode_requires_exactly_two_objects():
    with pytest.raises(WireError):
        decode_message(b"\x81\x01")
    with pytest.raises(WireError):
        decode_message(b"\x81\x01\xc4\x00\x02")


def test_decode_rejects_string_value():
    body = msgpack.packb(1) + msgpack.packb("x", use_bin_type=True)
    with pytest.raises(WireError):
        decode_message(b"\x81" + body)


def test_decode_rejects_negative_key():
    body = msgpack.packb(-1) + msgpack.packb(b"", use_bin_type=True)
    with pytest.raises(WireError):
        decode_message(b"\x81" + body)


def test_decode_rejects_string_key():
    body = msgpack.packb("k") + msgpack.packb(b"", use_bin_type=True)
    with pytest.raises(WireError):
        decode_message(b"\x81" + body)


def test_decode_rejects_unknown_extension_key():
    body = msgpack.packb(msgpack.ExtType(5, b"abcd")) + msgpack.packb(b"", use_bin_type=True)
    with pytest.raises(WireError):
        decode_message(b"\x81" + body)


def test_decode_rejects_short_uuid_extension():
    body = msgpack.packb(msgpack.ExtType(30, b"abcd")) + msgpack.packb(b"", use_bin_type=True)
    with pytest.raises(WireError):
        decode_message(b"\x81" + body)