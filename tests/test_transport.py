from __future__ import annotations

import asyncio
from dataclasses import replace
from types import SimpleNamespace

import pytest
from bleak.exc import BleakError

from ledstrip_bledom import transport as transport_module
from ledstrip_bledom.const import SERVICE_UUID, WRITE_CHARACTERISTIC_UUID
from ledstrip_bledom.exceptions import PeripheralNotFoundError
from ledstrip_bledom.link import LinkState, PeripheralLink
from ledstrip_bledom.transport import AdapterState, BleakTransport, PeripheralHandle

from .conftest import ADDRESS

OTHER_ADDRESS = "BE:58:00:AB:CD:EF"


class FakeScanner:
    instances: list[FakeScanner] = []
    fail_start = False

    def __init__(self, detection_callback=None, **kwargs) -> None:
        self.detection_callback = detection_callback
        self.kwargs = kwargs
        self.running = False
        FakeScanner.instances.append(self)

    async def start(self) -> None:
        if FakeScanner.fail_start:
            raise BleakError("adapter not powered")
        self.running = True

    async def stop(self) -> None:
        self.running = False

    def announce(self, address: str, name: str | None = None, local_name: str | None = "ELK-BLEDOM") -> None:
        device = SimpleNamespace(address=address, name=name)
        self.detection_callback(device, SimpleNamespace(local_name=local_name))


class FakeCharacteristic:
    def __init__(self, uuid: str) -> None:
        self.uuid = uuid


class FakeService:
    def __init__(self, characteristics: dict) -> None:
        self._characteristics = characteristics

    def get_characteristic(self, uuid: str):
        return self._characteristics.get(uuid)


class FakeServices:
    def __init__(self, services: dict) -> None:
        self._services = services

    def get_service(self, uuid: str):
        return self._services.get(uuid)


class FakeClient:
    def __init__(self, disconnected_callback) -> None:
        self.is_connected = True
        self.disconnected_callback = disconnected_callback
        self.services = FakeServices(
            {
                SERVICE_UUID: FakeService(
                    {WRITE_CHARACTERISTIC_UUID: FakeCharacteristic(WRITE_CHARACTERISTIC_UUID)}
                )
            }
        )
        self.writes: list[tuple] = []
        self.write_error: Exception | None = None

    async def write_gatt_char(self, char, data, response=False) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.writes.append((char.uuid, bytes(data), response))

    async def disconnect(self) -> None:
        self.drop()

    def drop(self) -> None:
        self.is_connected = False
        self.disconnected_callback(self)


class FakeConnector:
    """Stands in for bleak_retry_connector.establish_connection."""

    def __init__(self) -> None:
        self.clients: list[FakeClient] = []
        self.kwargs: list[dict] = []
        self.error: Exception | None = None

    async def __call__(self, client_class, device, name, disconnected_callback=None, **kwargs):
        self.kwargs.append(kwargs)
        if self.error is not None:
            raise self.error
        client = FakeClient(disconnected_callback)
        self.clients.append(client)
        return client


@pytest.fixture
def connector(monkeypatch) -> FakeConnector:
    FakeScanner.instances = []
    FakeScanner.fail_start = False
    fake = FakeConnector()
    monkeypatch.setattr(transport_module, "BleakScanner", FakeScanner)
    monkeypatch.setattr(transport_module, "establish_connection", fake)
    return fake


@pytest.fixture
def bleak_transport(connector) -> BleakTransport:
    return BleakTransport(adapter="hci1")


async def connected_handle(bleak_transport: BleakTransport) -> PeripheralHandle:
    handle = PeripheralHandle(ADDRESS, "ELK-BLEDOM", backend=SimpleNamespace(address=ADDRESS))
    assert await bleak_transport.connect(handle)
    return handle


# ----- Discovery -----


@pytest.mark.asyncio
async def test_discovery_dispatches_handles(bleak_transport) -> None:
    seen: list[PeripheralHandle] = []
    unsubscribe = bleak_transport.on_peripheral_discovered(seen.append)

    await bleak_transport.start_discovery()
    scanner = FakeScanner.instances[0]
    assert scanner.kwargs == {"adapter": "hci1"}
    scanner.announce(ADDRESS, name=None, local_name="ELK-BLEDOM")
    unsubscribe()
    scanner.announce(OTHER_ADDRESS)
    await bleak_transport.stop_discovery()

    assert [(handle.identifier, handle.name) for handle in seen] == [(ADDRESS, "ELK-BLEDOM")]
    assert seen[0].backend.address == ADDRESS
    assert not scanner.running


@pytest.mark.asyncio
async def test_scanner_shared_until_last_user_stops(bleak_transport) -> None:
    await bleak_transport.start_discovery()
    await bleak_transport.start_discovery()
    assert len(FakeScanner.instances) == 1
    scanner = FakeScanner.instances[0]

    await bleak_transport.stop_discovery()
    assert scanner.running
    assert bleak_transport.discovering

    await bleak_transport.stop_discovery()
    assert not scanner.running
    assert not bleak_transport.discovering

    # Unbalanced stops are harmless
    await bleak_transport.stop_discovery()
    await bleak_transport.start_discovery()
    assert len(FakeScanner.instances) == 2
    assert FakeScanner.instances[1].running
    await bleak_transport.stop_discovery()


@pytest.mark.asyncio
async def test_start_discovery_failure(bleak_transport) -> None:
    FakeScanner.fail_start = True

    with pytest.raises(PeripheralNotFoundError):
        await bleak_transport.start_discovery()
    assert not bleak_transport.discovering
    await bleak_transport.stop_discovery()

    FakeScanner.fail_start = False
    await bleak_transport.start_discovery()
    assert FakeScanner.instances[-1].running
    await bleak_transport.stop_discovery()
    assert not FakeScanner.instances[-1].running


@pytest.mark.asyncio
async def test_two_sessions_scan_on_one_adapter(bleak_transport, config) -> None:
    first = PeripheralLink(bleak_transport, config)
    second = PeripheralLink(bleak_transport, replace(config, address=OTHER_ADDRESS, name="Shelf strip"))
    first_ready = asyncio.create_task(first.ensure_ready())
    second_ready = asyncio.create_task(second.ensure_ready())
    while not (first.state is LinkState.SCANNING and second.state is LinkState.SCANNING):
        await asyncio.sleep(0.005)
    scanner = FakeScanner.instances[0]

    scanner.announce(ADDRESS)
    await first_ready
    assert scanner.running
    assert second.state is LinkState.SCANNING

    scanner.announce(OTHER_ADDRESS)
    await second_ready
    assert not scanner.running
    assert len(FakeScanner.instances) == 1

    await first.close()
    await second.close()


# ----- Connection -----


@pytest.mark.asyncio
async def test_connect_uses_single_attempt_with_service_cache(bleak_transport, connector) -> None:
    handle = await connected_handle(bleak_transport)

    assert handle.connected
    assert connector.kwargs[0]["max_attempts"] == 1
    assert connector.kwargs[0]["use_services_cache"] is True
    assert connector.kwargs[0]["ble_device_callback"]() is handle.backend


@pytest.mark.asyncio
async def test_connect_reuses_connected_client(bleak_transport, connector) -> None:
    handle = await connected_handle(bleak_transport)

    assert await bleak_transport.connect(handle)
    assert len(connector.clients) == 1

    connector.clients[0].is_connected = False
    assert await bleak_transport.connect(handle)
    assert len(connector.clients) == 2


@pytest.mark.asyncio
async def test_connect_failure_returns_false(bleak_transport, connector) -> None:
    connector.error = BleakError("out of connection slots")
    handle = PeripheralHandle(ADDRESS, "ELK-BLEDOM")

    assert await bleak_transport.connect(handle) is False
    assert handle.connected is False


@pytest.mark.asyncio
async def test_requested_disconnect_is_not_reported(bleak_transport, connector) -> None:
    lost: list[PeripheralHandle] = []
    bleak_transport.on_peripheral_disconnected(lost.append)
    handle = await connected_handle(bleak_transport)
    channel = await bleak_transport.discover_write_characteristic(
        handle, SERVICE_UUID, WRITE_CHARACTERISTIC_UUID
    )

    await bleak_transport.disconnect(handle)

    assert lost == []
    assert handle.connected is False
    assert await bleak_transport.write(channel, b"\x7e\xef", without_response=True) is False
    # Disconnecting twice is a no-op
    await bleak_transport.disconnect(handle)


@pytest.mark.asyncio
async def test_unexpected_disconnect_is_reported(bleak_transport, connector) -> None:
    lost: list[PeripheralHandle] = []
    bleak_transport.on_peripheral_disconnected(lost.append)
    handle = await connected_handle(bleak_transport)

    connector.clients[0].drop()

    assert lost == [handle]
    assert handle.connected is False
    assert await bleak_transport.discover_write_characteristic(
        handle, SERVICE_UUID, WRITE_CHARACTERISTIC_UUID
    ) is None


@pytest.mark.asyncio
async def test_stale_client_drop_ignored_after_reconnect(bleak_transport, connector) -> None:
    lost: list[PeripheralHandle] = []
    bleak_transport.on_peripheral_disconnected(lost.append)
    handle = await connected_handle(bleak_transport)
    await bleak_transport.disconnect(handle)
    assert await bleak_transport.connect(handle)
    old, current = connector.clients

    old.disconnected_callback(old)

    assert current.is_connected
    assert handle.connected
    assert lost == []
    channel = await bleak_transport.discover_write_characteristic(
        handle, SERVICE_UUID, WRITE_CHARACTERISTIC_UUID
    )
    assert channel is not None


@pytest.mark.asyncio
async def test_power_off_forgets_clients(bleak_transport, connector) -> None:
    states: list[AdapterState] = []
    bleak_transport.on_adapter_state_change(states.append)
    handle = await connected_handle(bleak_transport)

    bleak_transport.notify_adapter_state(AdapterState.POWERED_OFF)

    assert states == [AdapterState.POWERED_OFF]
    assert await bleak_transport.discover_write_characteristic(
        handle, SERVICE_UUID, WRITE_CHARACTERISTIC_UUID
    ) is None


# ----- Characteristic and writes -----


@pytest.mark.asyncio
async def test_characteristic_lookup(bleak_transport) -> None:
    handle = await connected_handle(bleak_transport)

    channel = await bleak_transport.discover_write_characteristic(
        handle, SERVICE_UUID, WRITE_CHARACTERISTIC_UUID
    )

    assert channel.identifier == ADDRESS
    assert channel.uuid == WRITE_CHARACTERISTIC_UUID
    assert await bleak_transport.discover_write_characteristic(
        handle, "0000ffe0-0000-1000-8000-00805f9b34fb", WRITE_CHARACTERISTIC_UUID
    ) is None
    assert await bleak_transport.discover_write_characteristic(
        handle, SERVICE_UUID, "0000ffe1-0000-1000-8000-00805f9b34fb"
    ) is None


@pytest.mark.asyncio
async def test_characteristic_lookup_without_client(bleak_transport) -> None:
    handle = PeripheralHandle(ADDRESS)

    assert await bleak_transport.discover_write_characteristic(
        handle, SERVICE_UUID, WRITE_CHARACTERISTIC_UUID
    ) is None


@pytest.mark.asyncio
async def test_write(bleak_transport, connector) -> None:
    handle = await connected_handle(bleak_transport)
    channel = await bleak_transport.discover_write_characteristic(
        handle, SERVICE_UUID, WRITE_CHARACTERISTIC_UUID
    )
    frame = bytes.fromhex("7e0404010001ff00ef")

    assert await bleak_transport.write(channel, frame, without_response=True)
    assert await bleak_transport.write(channel, frame, without_response=False)
    assert connector.clients[0].writes == [
        (WRITE_CHARACTERISTIC_UUID, frame, False),
        (WRITE_CHARACTERISTIC_UUID, frame, True),
    ]

    connector.clients[0].write_error = BleakError("Not connected")
    assert await bleak_transport.write(channel, frame, without_response=True) is False
