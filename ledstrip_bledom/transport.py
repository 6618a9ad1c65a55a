"""BLE transport capability and its bleak implementation.

The session layer never talks to bleak directly.  It consumes the
:class:`Transport` protocol below, which keeps the state machine testable
and lets several strips share one adapter owned by the caller.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError
from bleak_retry_connector import BLEAK_RETRY_EXCEPTIONS as BLEAK_EXCEPTIONS
from bleak_retry_connector import (
    BleakClientWithServiceCache,
    establish_connection,
)

from .exceptions import PeripheralNotFoundError
from .protocol import frame_to_hex

_LOGGER = logging.getLogger(__name__)


class AdapterState(Enum):
    """Radio adapter power state as reported by the transport."""

    POWERED_ON = "powered_on"
    POWERED_OFF = "powered_off"


@dataclass(eq=False)
class PeripheralHandle:
    """A discovered radio peer.  Only valid until it disconnects."""

    identifier: str
    name: str | None = None
    connected: bool = False
    backend: Any = field(default=None, repr=False)

    def matches(self, identifier: str) -> bool:
        return self.identifier.upper() == identifier.upper()


@dataclass(frozen=True, eq=False)
class WriteChannel:
    """The vendor write characteristic on a connected peripheral."""

    identifier: str
    uuid: str
    backend: Any = field(default=None, repr=False)


Unsubscribe = Callable[[], None]
AdapterStateHandler = Callable[[AdapterState], None]
PeripheralHandler = Callable[[PeripheralHandle], None]


class Transport(Protocol):
    """Capabilities the session layer needs from a BLE stack."""

    def on_adapter_state_change(self, handler: AdapterStateHandler) -> Unsubscribe:
        """Subscribe to adapter power changes."""

    def on_peripheral_discovered(self, handler: PeripheralHandler) -> Unsubscribe:
        """Subscribe to discovery events while discovery is running."""

    def on_peripheral_disconnected(self, handler: PeripheralHandler) -> Unsubscribe:
        """Subscribe to links dropped by the peer or the radio."""

    async def start_discovery(self) -> None:
        """Start scanning for peers.  Calls from several sessions may overlap."""

    async def stop_discovery(self) -> None:
        """Release one ``start_discovery``.  Scanning stops with the last user."""

    async def connect(self, handle: PeripheralHandle) -> bool:
        """Connect to a peer, returning False on failure."""

    async def disconnect(self, handle: PeripheralHandle) -> None:
        """Tear down the link to a peer."""

    async def discover_write_characteristic(
        self, handle: PeripheralHandle, service_uuid: str, characteristic_uuid: str
    ) -> WriteChannel | None:
        """Resolve the write characteristic, None when the peer lacks it."""

    async def write(self, channel: WriteChannel, frame: bytes, without_response: bool) -> bool:
        """Write one frame, returning False on failure."""


def _subscribe(handlers: list, handler: Callable) -> Unsubscribe:
    handlers.append(handler)

    def _unsubscribe() -> None:
        if handler in handlers:
            handlers.remove(handler)

    return _unsubscribe


def _dispatch(handlers: list, *args: Any) -> None:
    # Copy: handlers commonly unsubscribe themselves while being called
    for handler in list(handlers):
        try:
            handler(*args)
        except Exception as ex:
            _LOGGER.exception("Error in transport event handler: %s", ex)


class BleakTransport:
    """Transport backed by bleak and bleak-retry-connector.

    One instance owns the local adapter and can be shared by several
    :class:`~ledstrip_bledom.device.BledomDevice` sessions.
    """

    def __init__(self, adapter: str | None = None) -> None:
        """Initialize the transport.

        Args:
            adapter: Local adapter name (e.g. "hci0"), None for the default
        """
        self._adapter = adapter
        self._scanner: BleakScanner | None = None
        self._discovery_users = 0
        self._clients: dict[str, BleakClientWithServiceCache] = {}
        self._expected_disconnects: set[str] = set()
        self._adapter_handlers: list[AdapterStateHandler] = []
        self._discovery_handlers: list[PeripheralHandler] = []
        self._disconnect_handlers: list[PeripheralHandler] = []

    def on_adapter_state_change(self, handler: AdapterStateHandler) -> Unsubscribe:
        return _subscribe(self._adapter_handlers, handler)

    def on_peripheral_discovered(self, handler: PeripheralHandler) -> Unsubscribe:
        return _subscribe(self._discovery_handlers, handler)

    def on_peripheral_disconnected(self, handler: PeripheralHandler) -> Unsubscribe:
        return _subscribe(self._disconnect_handlers, handler)

    def notify_adapter_state(self, state: AdapterState) -> None:
        """Forward an adapter power change reported by the host."""
        _LOGGER.debug("Adapter state changed: %s", state.value)
        if state is AdapterState.POWERED_OFF:
            self._clients.clear()
            self._expected_disconnects.clear()
        _dispatch(self._adapter_handlers, state)

    # ----- Discovery -----

    def _on_detection(self, device: BLEDevice, advertisement: AdvertisementData) -> None:
        handle = PeripheralHandle(
            identifier=device.address,
            name=device.name or advertisement.local_name,
            backend=device,
        )
        _dispatch(self._discovery_handlers, handle)

    @property
    def discovering(self) -> bool:
        return self._scanner is not None

    async def start_discovery(self) -> None:
        """Start scanning, or join the scan another session already runs.

        Every call must be paired with one ``stop_discovery``;
        the scanner only stops once its last user released it.
        """
        self._discovery_users += 1
        if self._scanner is not None:
            _LOGGER.debug("BLE discovery already running (%s users)", self._discovery_users)
            return
        kwargs: dict[str, Any] = {"detection_callback": self._on_detection}
        if self._adapter:
            kwargs["adapter"] = self._adapter
        scanner = BleakScanner(**kwargs)
        self._scanner = scanner
        try:
            await scanner.start()
        except BleakError as ex:
            self._scanner = None
            self._discovery_users = 0
            _LOGGER.error("Failed to start BLE discovery: %s", ex)
            raise PeripheralNotFoundError(f"BLE discovery unavailable: {ex}") from ex
        _LOGGER.debug("BLE discovery started")

    async def stop_discovery(self) -> None:
        if self._discovery_users > 0:
            self._discovery_users -= 1
        if self._discovery_users:
            _LOGGER.debug("BLE discovery still used by %s sessions", self._discovery_users)
            return
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        try:
            await scanner.stop()
        except BleakError as ex:
            _LOGGER.debug("Error stopping BLE discovery: %s", ex)
        _LOGGER.debug("BLE discovery stopped")

    # ----- Connection -----

    def _disconnected_callback(self, handle: PeripheralHandle) -> Callable[[Any], None]:
        def _on_disconnected(client: BleakClientWithServiceCache) -> None:
            current = self._clients.get(handle.identifier)
            if current is not None and current is not client:
                _LOGGER.debug("Ignoring disconnect of a replaced client for %s", handle.identifier)
                return
            handle.connected = False
            if current is client:
                del self._clients[handle.identifier]
            if handle.identifier in self._expected_disconnects:
                self._expected_disconnects.discard(handle.identifier)
                _LOGGER.debug("Disconnected from %s", handle.identifier)
                return
            _LOGGER.warning("%s unexpectedly disconnected", handle.name or handle.identifier)
            _dispatch(self._disconnect_handlers, handle)

        return _on_disconnected

    async def connect(self, handle: PeripheralHandle) -> bool:
        existing = self._clients.get(handle.identifier)
        if existing is not None and existing.is_connected:
            handle.connected = True
            return True
        _LOGGER.debug("Connecting to %s (%s)", handle.name, handle.identifier)
        try:
            client = await establish_connection(
                BleakClientWithServiceCache,
                handle.backend,
                handle.name or handle.identifier,
                disconnected_callback=self._disconnected_callback(handle),
                # The session layer owns the retry policy
                max_attempts=1,
                use_services_cache=True,
                ble_device_callback=lambda: handle.backend,
            )
        except BLEAK_EXCEPTIONS as ex:
            _LOGGER.debug("Failed to connect to %s: %s", handle.identifier, ex)
            return False
        self._clients[handle.identifier] = client
        self._expected_disconnects.discard(handle.identifier)
        handle.connected = True
        _LOGGER.debug("Connected to %s", handle.identifier)
        return True

    async def disconnect(self, handle: PeripheralHandle) -> None:
        client = self._clients.pop(handle.identifier, None)
        handle.connected = False
        if client is None or not client.is_connected:
            return
        _LOGGER.debug("Disconnecting from %s", handle.identifier)
        self._expected_disconnects.add(handle.identifier)
        try:
            await client.disconnect()
        except BLEAK_EXCEPTIONS as ex:
            _LOGGER.debug("Error disconnecting from %s: %s", handle.identifier, ex)

    async def discover_write_characteristic(
        self, handle: PeripheralHandle, service_uuid: str, characteristic_uuid: str
    ) -> WriteChannel | None:
        client = self._clients.get(handle.identifier)
        if client is None:
            return None
        service = client.services.get_service(service_uuid)
        if service is None:
            _LOGGER.debug("Service %s not found on %s", service_uuid, handle.identifier)
            return None
        if char := service.get_characteristic(characteristic_uuid):
            _LOGGER.debug("Found write characteristic: %s", char)
            return WriteChannel(identifier=handle.identifier, uuid=char.uuid, backend=char)
        _LOGGER.debug("Characteristic %s not found on %s", characteristic_uuid, handle.identifier)
        return None

    async def write(self, channel: WriteChannel, frame: bytes, without_response: bool) -> bool:
        client = self._clients.get(channel.identifier)
        if client is None or not client.is_connected:
            return False
        _LOGGER.debug("Writing to %s: %s", channel.identifier, frame_to_hex(frame))
        try:
            await client.write_gatt_char(channel.backend, frame, response=not without_response)
        except BLEAK_EXCEPTIONS as ex:
            _LOGGER.debug("Write to %s failed: %s", channel.identifier, ex)
            return False
        return True
