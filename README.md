# zeroprops

`zeroprops` shares a set of binary properties between two peers on a local
network. A `Server` starts a WebSocket service and announces it over mDNS, a
`Client` discovers it and connects, and from then on either side can set a
property and the other side is told about the change.

Properties are keyed by an unsigned 32-bit integer or a `uuid.UUID` and carry
a `bytes` value. On the wire each change is one WebSocket binary message: a
MessagePack map header for a single entry (`0x81`) followed by the packed key
and the packed value. UUID keys travel as MessagePack extension type 30
holding the 16 RFC 4122 bytes.

Everything that touches the network is asyncio based.

## Modules

- `zeroprops.types`: `ServiceConfiguration` (the mDNS service type
  `zero_conf_type` and the Bluetooth LE UUID `ble_uuid`; a nil UUID counts as
  none), the `ServiceType` flags and the `ClientState` enum.
- `zeroprops.wire`: `encode_message(key, value)` and
  `decode_message(message)`, which returns a `(key, value)` tuple. Malformed
  messages raise `WireError`, a subclass of `ValueError`.
- `zeroprops.service`: `Service`, which stores property values, debounces
  outgoing changes and reports incoming ones to listeners registered with
  `on_property_changed(callback)`. The transport behind it is a
  `ServiceBackend`, with `connect()`, `disconnect()`, `do_send(key, value)`,
  `flush()` and `on_state_changed(callback)`.
- `zeroprops.websocket`: `WsServiceBackend`, the WebSocket transport. On the
  client side `connect()` opens `ws://address:port`; on the server side
  `on_client_connected(websocket)` serves one accepted peer at a time,
  sending it every known property first.
- `zeroprops.mdns`: `build_query(service_type)`,
  `parse_response(data)`, `build_announcement(instance, service_type,
  hostname, address, port, txt)` and the async generator
  `browse(service_type, timeout)`, which yields `DiscoveredService` entries
  (name, type, hostname, address, port, txt). `.local` is appended to
  service types that lack it.
- `zeroprops.server`: `Server`, with `start_service(configuration)` and
  `stop_service()` (both coroutines), the `service` and `port` properties,
  and use as an `async with` context manager.
- `zeroprops.client`: `Client`, with `start_discovery(config)`,
  `stop_discovery()`, `discovered_services()`,
  `connect_to_service(service)` (a coroutine), `disconnect_from_service()`,
  `set_discovery_timeout(ms_timeout)`, `on_state_changed(callback)` and
  `on_services_changed(callback)`.
- `zeroprops.protocol`: the numbered request `Code`s of a compact equaliser
  protocol, the `Filter`/`Preset` types, their wire forms
  `ProtoFilter`/`ProtoPreset`, and a `Converter` built from a frequency table
  and a Q table. It maps frequencies and Q values to the index of the nearest
  table entry (on a logarithmic scale) and gains to signed steps of -0.5 dB.

## Example

```python
import asyncio
from zeroprops.client import Client
from zeroprops.server import Server
from zeroprops.types import ServiceConfiguration

config = ServiceConfiguration(zero_conf_type="_myservice._tcp")

async def serve():
    async with Server() as server:
        service = await server.start_service(config)
        service.on_property_changed(lambda key, value: print(key, value))
        await asyncio.sleep(3600)

async def control():
    client = Client()
    client.on_state_changed(lambda state, text: print(state.name, text))
    client.start_discovery(config)
    await asyncio.sleep(3)
    services = client.discovered_services()
    if services:
        await client.connect_to_service(services[0])
        services[0].set_property(1, b"\x01\x02")
        await asyncio.sleep(1)
```

Discovery stops by itself after the discovery timeout (8000 ms by default,
0 for no limit) and reports `ClientState.IDLE`.

## Debouncing

A `Service` created by a `Client` collects changes for 200 ms before sending
them; each changed property is sent once, with its latest value. A service
created by a `Server` sends changes at once. Sending is scheduled on the
running event loop; without one, changes stay pending until the backend's
`flush()` is awaited.

## Wire format example

```python
import uuid
from zeroprops.wire import encode_message, decode_message

key = uuid.UUID("00000000-0000-4000-8000-000000000001")
message = encode_message(key, b"\x01\x02")
assert message[0] == 0x81          # MessagePack map with one entry
assert decode_message(message) == (key, b"\x01\x02")
```

## What it does not do

- There is no Bluetooth LE backend. A `ble_uuid` in the configuration is
  accepted, but `Client.start_discovery` only logs a warning for it and the
  `Server` publishes over WebSockets only.
- `Server.start_service` raises `ValueError` when the configuration has no
  `zero_conf_type`.
- The `Converter` ships with no lookup tables; the caller supplies them.
- There is no command-line tool; the package is a library.

## Tests

The test suite uses pytest and pytest-asyncio, available through the `test`
extra.