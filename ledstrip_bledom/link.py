"""Connection state machine for a single ELK-BLEDOM peripheral.

States:

    DISCONNECTED -> SCANNING -> CONNECTING -> READY -> DISCONNECTING -> DISCONNECTED

Only one connect sequence runs at a time.  Every caller of
:meth:`PeripheralLink.ensure_ready` awaits the same task, and a powered-off
adapter cancels it, including any backoff sleep in progress.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum

from .config import DeviceConfig
from .exceptions import ConnectFailureError, LinkLostError, PeripheralNotFoundError
from .timer import IdleTimer
from .transport import AdapterState, PeripheralHandle, Transport, WriteChannel

_LOGGER = logging.getLogger(__name__)


class LinkState(Enum):
    """Lifecycle state of the physical link."""

    DISCONNECTED = "disconnected"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    READY = "ready"
    DISCONNECTING = "disconnecting"


class PeripheralLink:
    """Owns discovery, connection and teardown for one configured peripheral."""

    def __init__(self, transport: Transport, config: DeviceConfig) -> None:
        self._transport = transport
        self._config = config
        self._name = config.display_name
        self._state = LinkState.DISCONNECTED
        self._handle: PeripheralHandle | None = None
        self._channel: WriteChannel | None = None
        self._attempt = 0
        self._connect_task: asyncio.Task | None = None
        self._teardown_task: asyncio.Task | None = None
        self._background_tasks: set[asyncio.Task] = set()
        self._abort_reason: str | None = None
        self._closed = False
        self.idle_timer = IdleTimer(config.disconnect_delay, self._on_idle)
        self._unsubscribers = [
            transport.on_adapter_state_change(self._on_adapter_state_change),
            transport.on_peripheral_disconnected(self._on_peripheral_disconnected),
        ]

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is LinkState.READY

    @property
    def handle(self) -> PeripheralHandle | None:
        return self._handle

    @property
    def channel(self) -> WriteChannel | None:
        return self._channel

    @property
    def attempt(self) -> int:
        """Connect attempts made by the current (or last) connect sequence."""
        return self._attempt

    def _set_state(self, state: LinkState) -> None:
        if state is self._state:
            return
        _LOGGER.debug("%s: %s -> %s", self._name, self._state.value, state.value)
        self._state = state

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    # ----- Connect sequence -----

    async def ensure_ready(self) -> WriteChannel:
        """Return the write channel, running the connect sequence if needed.

        Raises:
            PeripheralNotFoundError: nothing matched within the scan window
            ConnectFailureError: every connect attempt failed or was aborted
        """
        self.idle_timer.cancel()
        if self._state is LinkState.READY and self._channel is not None:
            return self._channel

        if self._teardown_task is not None:
            await asyncio.shield(self._teardown_task)

        if self._connect_task is None or self._connect_task.done():
            if self._closed:
                raise ConnectFailureError(f"{self._name}: link is closed")
            self._abort_reason = None
            self._connect_task = asyncio.get_running_loop().create_task(
                self._connect_sequence()
            )
        else:
            _LOGGER.debug("%s: Connection already in progress, waiting for it to complete", self._name)
        return await asyncio.shield(self._connect_task)

    async def _connect_sequence(self) -> WriteChannel:
        try:
            if self._handle is None:
                self._handle = await self._scan()
            return await self._connect_with_retries(self._handle)
        except asyncio.CancelledError:
            if self._abort_reason is None:
                raise
            _LOGGER.error(
                "%s: connect aborted after %s attempts: %s",
                self._name,
                self._attempt,
                self._abort_reason,
            )
            raise ConnectFailureError(
                f"{self._name}: connect aborted: {self._abort_reason}", attempts=self._attempt
            ) from None

    async def _scan(self) -> PeripheralHandle:
        self._set_state(LinkState.SCANNING)
        found: asyncio.Future[PeripheralHandle] = asyncio.get_running_loop().create_future()

        def _on_discovered(handle: PeripheralHandle) -> None:
            if found.done() or not handle.matches(self._config.address):
                return
            found.set_result(handle)

        unsubscribe = self._transport.on_peripheral_discovered(_on_discovered)
        _LOGGER.debug("%s: Peripheral not known, starting scan...", self._name)
        try:
            await self._transport.start_discovery()
            try:
                handle = await asyncio.wait_for(found, self._config.scan_timeout)
            except asyncio.TimeoutError:
                _LOGGER.error(
                    "%s: no peripheral matching %s within %ss",
                    self._name,
                    self._config.address,
                    self._config.scan_timeout,
                )
                raise PeripheralNotFoundError(
                    f"{self._name}: {self._config.address} not found "
                    f"within {self._config.scan_timeout}s"
                ) from None
        except BaseException:
            if self._state is LinkState.SCANNING:
                self._set_state(LinkState.DISCONNECTED)
            raise
        finally:
            unsubscribe()
            await self._transport.stop_discovery()
        _LOGGER.debug("%s: Discovered %s - %s", self._name, handle.identifier, handle.name)
        return handle

    async def _try_connect(self, handle: PeripheralHandle) -> WriteChannel | None:
        if not await self._transport.connect(handle):
            _LOGGER.debug("%s: transport connect failed", self._name)
            return None
        channel = await self._transport.discover_write_characteristic(
            handle,
            self._config.service_uuid,
            self._config.write_characteristic_uuid,
        )
        if channel is None:
            _LOGGER.warning(
                "%s: write characteristic %s not found",
                self._name,
                self._config.write_characteristic_uuid,
            )
            await self._transport.disconnect(handle)
        return channel

    async def _connect_with_retries(self, handle: PeripheralHandle) -> WriteChannel:
        max_attempts = self._config.max_connect_attempts
        self._attempt = 0
        self._set_state(LinkState.CONNECTING)
        try:
            while True:
                self._attempt += 1
                _LOGGER.debug(
                    "%s: Connecting to %s (%s/%s)...",
                    self._name,
                    handle.identifier,
                    self._attempt,
                    max_attempts,
                )
                channel = await self._try_connect(handle)
                if channel is not None:
                    self._channel = channel
                    self._set_state(LinkState.READY)
                    _LOGGER.debug("%s: Connected", self._name)
                    self.idle_timer.reset()
                    return channel
                if self._attempt >= max_attempts:
                    break
                _LOGGER.warning(
                    "%s: connection attempt %s/%s failed, retrying in %ss",
                    self._name,
                    self._attempt,
                    max_attempts,
                    self._config.connect_backoff,
                )
                await asyncio.sleep(self._config.connect_backoff)
        except BaseException:
            if self._state is LinkState.CONNECTING:
                self._set_state(LinkState.DISCONNECTED)
            if handle.connected:
                # Aborted half way, release the half-open link
                self._spawn(self._transport.disconnect(handle))
            raise

        # Forget the handle so the next request re-discovers the peer
        self._handle = None
        self._set_state(LinkState.DISCONNECTED)
        _LOGGER.error(
            "%s: failed to connect to %s after %s attempts",
            self._name,
            handle.identifier,
            self._attempt,
        )
        raise ConnectFailureError(
            f"{self._name}: failed to connect after {self._attempt} attempts",
            attempts=self._attempt,
        )

    # ----- Writing -----

    async def write(self, channel: WriteChannel, frame: bytes) -> bool:
        """Write one frame on ``channel``.

        Raises LinkLostError if the channel was invalidated by a disconnect
        since it was handed out.
        """
        if self._state is not LinkState.READY or self._channel is not channel:
            raise LinkLostError(f"{self._name}: write channel is no longer valid")
        return await self._transport.write(
            channel, frame, without_response=self._config.write_without_response
        )

    # ----- Teardown -----

    def _on_idle(self) -> None:
        if self._state is not LinkState.READY:
            return
        _LOGGER.debug("%s: Disconnecting after %ss of inactivity", self._name, self.idle_timer.delay)
        self._begin_teardown()

    def _begin_teardown(self) -> asyncio.Task:
        # The channel is invalidated synchronously so nothing can be written
        # between the decision to disconnect and the transport call.
        self.idle_timer.cancel()
        self._channel = None
        self._set_state(LinkState.DISCONNECTING)
        self._teardown_task = self._spawn(self._teardown(self._handle))
        return self._teardown_task

    async def _teardown(self, handle: PeripheralHandle | None) -> None:
        try:
            if handle is not None:
                await self._transport.disconnect(handle)
        finally:
            if self._state is LinkState.DISCONNECTING:
                self._set_state(LinkState.DISCONNECTED)
            self._teardown_task = None
            _LOGGER.debug("%s: Disconnected", self._name)

    async def disconnect(self) -> None:
        """Drop the link now.  The peripheral handle is kept for reconnects."""
        connect_task = self._abort_connect("disconnect requested")
        if connect_task is not None:
            # Let the aborted sequence release any half-open link first
            await asyncio.gather(connect_task, return_exceptions=True)
        if self._teardown_task is None and self._state is LinkState.READY:
            self._begin_teardown()
        if self._teardown_task is not None:
            await asyncio.shield(self._teardown_task)

    async def close(self) -> None:
        """Disconnect and stop listening to the transport."""
        self._closed = True
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        await self.disconnect()
        self.idle_timer.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    def _abort_connect(self, reason: str) -> asyncio.Task | None:
        task = self._connect_task
        if task is None or task.done():
            return None
        self._abort_reason = reason
        task.cancel()
        return task

    # ----- Transport events -----

    def _on_adapter_state_change(self, state: AdapterState) -> None:
        if state is AdapterState.POWERED_OFF:
            self._force_disconnected()
        elif state is AdapterState.POWERED_ON:
            if (
                self._state is LinkState.DISCONNECTED
                and self._handle is None
                and not self._closed
            ):
                _LOGGER.debug("%s: Adapter powered on, looking for peripheral", self._name)
                self._spawn(self._background_connect())

    async def _background_connect(self) -> None:
        try:
            await self.ensure_ready()
        except (PeripheralNotFoundError, ConnectFailureError) as ex:
            _LOGGER.debug("%s: Background connect did not complete: %s", self._name, ex)

    def _force_disconnected(self) -> None:
        _LOGGER.warning("%s: Adapter powered off, dropping link", self._name)
        self.idle_timer.cancel()
        self._abort_connect("adapter powered off")
        handle = self._handle
        self._handle = None
        self._channel = None
        self._set_state(LinkState.DISCONNECTED)
        if handle is not None and handle.connected:
            self._spawn(self._transport.disconnect(handle))

    def _on_peripheral_disconnected(self, handle: PeripheralHandle) -> None:
        if self._handle is None or not handle.matches(self._handle.identifier):
            return
        if self._state is not LinkState.READY:
            # Teardown in progress, or a connect attempt that will notice by itself
            return
        _LOGGER.warning("%s: Link lost, will rediscover on next command", self._name)
        self.idle_timer.cancel()
        self._handle = None
        self._channel = None
        self._set_state(LinkState.DISCONNECTED)
