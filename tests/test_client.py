import asyncio

import pytest

from zeroprops.client import Client
from zeroprops.mdns import DiscoveredService
from zeroprops.server import Server
from zeroprops.types import ClientState, ServiceConfiguration, ServiceType

CONFIG = ServiceConfiguration(zero_conf_type="_cornrow._tcp")


def _found(name, port=4242, address="192.0.2.1"):
    return DiscoveredService(
        name=name, type="_cornrow._tcp.local", hostname="host.local", address=address, port=port
    )


class FakeBrowser:
    def __init__(self, entries, error=None):
        self.entries = entries
        self.error = error
        self.calls = []

    async def __call__(self, service_type, timeout):
        self.calls.append((service_type, timeout))
        for entry in self.entries:
            yield entry
        if self.error is not None:
            raise self.error
        await asyncio.sleep(3600 if timeout is None else timeout)


def _recorder(client):
    states = []
    idle = asyncio.Event()

    def record(state, error_string):
        states.append((state, error_string))
        if state in (ClientState.IDLE, ClientState.ERROR):
            idle.set()

    client.on_state_changed(record)
    return states, idle


@pytest.mark.asyncio
async def test_discovery_collects_services_until_timeout():
    browser = FakeBrowser([_found("one"), _found("two", port=1000)])
    client = Client(browser=browser)
    client.set_discovery_timeout(50)
    states, idle = _recorder(client)
    client.start_discovery(CONFIG)
    await asyncio.wait_for(idle.wait(), 2)

    services = client.discovered_services()
    assert [s.name for s in services] == ["one", "two"]
    assert all(s.type == ServiceType.WEB_SOCKET for s in services)
    assert services[1].backend.port == 1000
    assert services[0].backend.address == "192.0.2.1"
    assert states[0][0] == ClientState.DISCOVERING
    assert states[-1][0] == ClientState.IDLE
    assert browser.calls == [("_cornrow._tcp", 0.05)]


@pytest.mark.asyncio
async def test_services_changed_is_reported():
    client = Client(browser=FakeBrowser([_found("one")]))
    client.set_discovery_timeout(20)
    counts = []
    client.on_services_changed(lambda: counts.append(len(client.discovered_services())))
    _, idle = _recorder(client)
    client.start_discovery(CONFIG)
    await asyncio.wait_for(idle.wait(), 2)
    assert counts == [0, 1]


@pytest.mark.asyncio
async def test_restart_clears_previous_services():
    client = Client(browser=FakeBrowser([_found("one")]))
    client.set_discovery_timeout(20)
    _, idle = _recorder(client)
    client.start_discovery(CONFIG)
    await asyncio.wait_for(idle.wait(), 2)
    assert len(client.discovered_services()) == 1
    client.start_discovery(ServiceConfiguration())
    assert client.discovered_services() == []


@pytest.mark.asyncio
async def test_zero_timeout_runs_until_stopped():
    browser = FakeBrowser([_found("one")])
    client = Client(browser=browser)
    client.set_discovery_timeout(0)
    states, _ = _recorder(client)
    client.start_discovery(CONFIG)
    await asyncio.sleep(0.05)
    assert browser.calls == [("_cornrow._tcp", None)]
    assert ClientState.IDLE not in [s for s, _ in states]
    client.stop_discovery()
    assert states[-1][0] == ClientState.IDLE


@pytest.mark.asyncio
async def test_no_type_means_no_browsing():
    browser = FakeBrowser([_found("one")])
    client = Client(browser=browser)
    states, _ = _recorder(client)
    client.start_discovery(ServiceConfiguration())
    await asyncio.sleep(0.01)
    assert browser.calls == []
    assert [s for s, _ in states] == [ClientState.DISCOVERING]


@pytest.mark.asyncio
async def test_browser_error_reports_error_state():
    client = Client(browser=FakeBrowser([], error=OSError("no network")))
    states, idle = _recorder(client)
    client.start_discovery(CONFIG)
    await asyncio.wait_for(idle.wait(), 2)
    assert states[-1] == (ClientState.ERROR, "no network")


def test_negative_timeout_is_rejected():
    with pytest.raises(ValueError):
        Client().set_discovery_timeout(-1)


@pytest.mark.asyncio
async def test_connect_to_none_emits_nothing():
    client = Client(browser=FakeBrowser([]))
    states, _ = _recorder(client)
    await client.connect_to_service(None)
    assert states == []
    assert client.current_service is None


@pytest.mark.asyncio
async def test_connect_exchanges_properties_with_server():
    async with Server(host="127.0.0.1", publish=False) as server:
        server_service = await server.start_service(CONFIG)
        server_service.set_property(7, b"abc")
        await asyncio.sleep(0.01)

        client = Client(browser=FakeBrowser([_found("Cornrow", server.port, "127.0.0.1")]))
        client.set_discovery_timeout(0)
        states, _ = _recorder(client)
        services = []
        client.on_services_changed(lambda: services.extend(client.discovered_services()))
        client.start_discovery(CONFIG)
        await asyncio.sleep(0.02)
        service = client.discovered_services()[0]

        received = asyncio.get_running_loop().create_future()
        service.on_property_changed(lambda k, v: received.done() or received.set_result((k, v)))
        await client.connect_to_service(service)
        assert await asyncio.wait_for(received, 2) == (7, b"abc")
        kinds = [s for s, _ in states]
        assert ClientState.CONNECTING in kinds
        assert kinds[-1] == ClientState.CONNECTED
        assert ("Connecting Cornrow" in [e for _, e in states])
        assert client.current_service is service
        await service.backend.disconnect()


@pytest.mark.asyncio
async def test_disconnected_service_no_longer_reports():
    server = Server(host="127.0.0.1", publish=False)
    await server.start_service(CONFIG)
    client = Client(browser=FakeBrowser([_found("Cornrow", server.port, "127.0.0.1")]))
    client.set_discovery_timeout(0)
    states, _ = _recorder(client)
    client.start_discovery(CONFIG)
    await asyncio.sleep(0.02)
    service = client.discovered_services()[0]
    await client.connect_to_service(service)
    client.disconnect_from_service()
    states.clear()
    await server.stop_service()
    await asyncio.sleep(0.1)
    assert client.current_service is None
    assert ClientState.DISCONNECTED not in [s for s, _ in states]
    await service.backend.disconnect()