from __future__ import annotations

import asyncio
from collections import deque

import pytest

from ledstrip_bledom.config import DeviceConfig
from ledstrip_bledom.transport import AdapterState, PeripheralHandle, WriteChannel

ADDRESS = "BE:58:00:12:34:56"


class FakeTransport:
    """In-memory Transport that records every call."""

    def __init__(self) -> None:
        self.adapter_handlers: list = []
        self.discovery_handlers: list = []
        self.disconnect_handlers: list = []
        self.calls: list[tuple] = []
        self.writes: list[bytes] = []
        self.peripherals = [PeripheralHandle(ADDRESS, "ELK-BLEDOM")]
        self.auto_discover = True
        self.scanning = False
        self.characteristic_available = True
        self.characteristic_gate: asyncio.Event | None = None
        self.connect_results: deque[bool] = deque()
        self.write_results: deque[bool] = deque()
        self.write_delay = 0.0
        self.disconnect_on_write = False

    def _subscribe(self, handlers: list, handler):
        handlers.append(handler)
        return lambda: handlers.remove(handler) if handler in handlers else None

    def on_adapter_state_change(self, handler):
        return self._subscribe(self.adapter_handlers, handler)

    def on_peripheral_discovered(self, handler):
        return self._subscribe(self.discovery_handlers, handler)

    def on_peripheral_disconnected(self, handler):
        return self._subscribe(self.disconnect_handlers, handler)

    def emit_discovered(self, handle: PeripheralHandle) -> None:
        for handler in list(self.discovery_handlers):
            handler(handle)

    def emit_disconnected(self, handle: PeripheralHandle) -> None:
        handle.connected = False
        for handler in list(self.disconnect_handlers):
            handler(handle)

    def emit_adapter_state(self, state: AdapterState) -> None:
        for handler in list(self.adapter_handlers):
            handler(state)

    def _announce(self) -> None:
        if not self.scanning:
            return
        for handle in self.peripherals:
            self.emit_discovered(handle)

    async def start_discovery(self) -> None:
        self.calls.append(("start_discovery",))
        self.scanning = True
        if self.auto_discover:
            asyncio.get_running_loop().call_soon(self._announce)

    async def stop_discovery(self) -> None:
        self.calls.append(("stop_discovery",))
        self.scanning = False

    async def connect(self, handle: PeripheralHandle) -> bool:
        self.calls.append(("connect", handle.identifier))
        ok = self.connect_results.popleft() if self.connect_results else True
        handle.connected = ok
        return ok

    async def disconnect(self, handle: PeripheralHandle) -> None:
        self.calls.append(("disconnect", handle.identifier))
        handle.connected = False

    async def discover_write_characteristic(self, handle, service_uuid, characteristic_uuid):
        self.calls.append(("discover_write_characteristic", handle.identifier))
        if self.characteristic_gate is not None:
            await self.characteristic_gate.wait()
        if not self.characteristic_available:
            return None
        return WriteChannel(handle.identifier, characteristic_uuid)

    async def write(self, channel: WriteChannel, frame: bytes, without_response: bool) -> bool:
        self.calls.append(("write", frame.hex()))
        self.writes.append(frame)
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        if self.disconnect_on_write:
            self.disconnect_on_write = False
            self.emit_disconnected(self.peripherals[0])
            return False
        return self.write_results.popleft() if self.write_results else True

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def config() -> DeviceConfig:
    return DeviceConfig(
        address=ADDRESS,
        name="Desk strip",
        disconnect_delay=0,
        scan_timeout=0.2,
        connect_backoff=0.01,
        write_backoff=0.01,
    )
