import dns.flags
import dns.message
import dns.rrset
import pytest

from zeroprops.mdns import (
    DiscoveredService,
    browse,
    build_announcement,
    build_query,
    parse_response,
)


def _announcement(**overrides):
    args = dict(
        instance="Cornrow",
        service_type="_cornrow._tcp",
        hostname="host",
        address="192.0.2.10",
        port=4242,
        txt=["v=1"],
    )
    args.update(overrides)
    return build_announcement(**args)


def test_build_query_wire_bytes():
    expected = (
        b"\x00\x00\x00\x00\x00\x01\x00\x00\x00\x00\x00\x00"
        b"\x08_cornrow\x04_tcp\x05local\x00"
        b"\x00\x0c\x00\x01"
    )
    assert build_query("_cornrow._tcp") == expected


def test_build_query_local_suffix_is_implied():
    assert build_query("_cornrow._tcp") == build_query("_cornrow._tcp.local.")
    assert build_query("_cornrow._tcp") == build_query("_cornrow._tcp.local")


def test_build_query_rejects_empty_type():
    with pytest.raises(ValueError):
        build_query("")


def test_announcement_round_trip():
    services = parse_response(_announcement())
    assert services == [
        DiscoveredService(
            name="Cornrow",
            type="_cornrow._tcp.local",
            hostname="host.local",
            address="192.0.2.10",
            port=4242,
            txt=("v=1",),
        )
    ]


def test_announcement_is_authoritative_response():
    assert _announcement()[2:4] == b"\x84\x00"


def test_announcement_without_txt_round_trips_empty_txt():
    services = parse_response(_announcement(txt=[]))
    assert len(services) == 1
    assert services[0].txt == ()


def test_announcement_instance_with_spaces():
    services = parse_response(_announcement(instance="Living room"))
    assert services[0].name == "Living room"


def test_build_announcement_rejects_bad_port():
    with pytest.raises(ValueError):
        _announcement(port=70000)


def test_build_announcement_rejects_bad_address():
    with pytest.raises(ValueError):
        _announcement(address="not-an-address")


def test_parse_query_yields_nothing():
    assert parse_response(build_query("_cornrow._tcp")) == []


def test_parse_garbage_raises():
    with pytest.raises(ValueError):
        parse_response(b"\x00\x01")


def test_parse_truncated_raises():
    with pytest.raises(ValueError):
        parse_response(_announcement()[:-3])


def test_parse_srv_without_address_is_skipped():
    message = dns.message.Message(id=0)
    message.flags = dns.flags.QR
    message.answer.append(
        dns.rrset.from_text("inst._x._tcp.local.", 120, "IN", "SRV", "0 0 80 host.local.")
    )
    assert parse_response(message.to_wire()) == []


@pytest.mark.asyncio
async def test_browse_rejects_negative_timeout():
    with pytest.raises(ValueError):
        async for _ in browse("_cornrow._tcp", -1):
            pass


@pytest.mark.asyncio
async def test_browse_unknown_type_finds_nothing():
    found = [s async for s in browse("_zeroprops-test-none._tcp", 0.05)]
    assert found == []