"""Device class for ELK-BLEDOM LED strips.

Composes the link state machine, the command queue and the protocol
encoder behind the setters a smart-home host calls.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Callable, Mapping

from . import protocol
from .color import hue_saturation_to_rgb
from .command_queue import CommandQueue
from .config import DeviceConfig
from .const import (
    DEFAULT_BRIGHTNESS,
    DEFAULT_HUE,
    DEFAULT_SATURATION,
    LIGHTNESS,
    MAX_HUE,
    MAX_SATURATION,
)
from .exceptions import InvalidArgumentError
from .link import LinkState, PeripheralLink
from .transport import Transport

_LOGGER = logging.getLogger(__name__)


@dataclass
class DesiredState:
    """Last state successfully sent to the strip."""

    power: bool = False
    brightness: int = DEFAULT_BRIGHTNESS  # 0-100
    hue: float = DEFAULT_HUE              # 0-360
    saturation: float = DEFAULT_SATURATION  # 0-100
    lightness: float = LIGHTNESS
    rgb: tuple[int, int, int] | None = None


def _validate_number(name: str, value: Any, maximum: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise InvalidArgumentError(f"{name} must be a number, got {value!r}")
    if not 0 <= value <= maximum:
        raise InvalidArgumentError(f"{name} {value} out of range 0-{maximum}")
    return value


class BledomDevice:
    """Represents one ELK-BLEDOM LED strip.

    Usage:
        transport = BleakTransport()
        device = BledomDevice(transport, DeviceConfig(address="BE:58:00:12:34:56"))
        await device.set_power(True)
        await device.set_hue(120)
        await device.stop()

    Every setter returns once its frame was written, or raises the terminal
    error (ConnectFailureError, PeripheralNotFoundError, WriteFailureError).
    State is only updated after a successful write, so a failed ``set_power``
    leaves ``is_on`` unchanged.
    """

    def __init__(self, transport: Transport, config: DeviceConfig) -> None:
        """Initialize the device.

        Args:
            transport: Shared BLE transport, owned by the caller
            config: Validated device configuration
        """
        self._config = config
        self._name = config.display_name
        self._state = DesiredState()
        self._link = PeripheralLink(transport, config)
        self._queue = CommandQueue(self._link, config)
        self._callbacks: list[Callable[[], None]] = []
        _LOGGER.debug(
            "Device initialized: %s (%s), disconnect_delay=%ss",
            self._name,
            config.address,
            config.disconnect_delay,
        )

    @classmethod
    def from_mapping(cls, transport: Transport, data: Mapping[str, Any]) -> BledomDevice:
        """Build a device from an unvalidated configuration mapping."""
        return cls(transport, DeviceConfig.from_mapping(data))

    @property
    def address(self) -> str:
        """Return the configured peripheral identifier."""
        return self._config.address

    @property
    def name(self) -> str:
        """Return the device name."""
        return self._name

    @property
    def link_state(self) -> LinkState:
        return self._link.state

    @property
    def desired_state(self) -> DesiredState:
        """Return a copy of the last state sent to the strip."""
        return replace(self._state)

    @property
    def is_on(self) -> bool:
        return self._state.power

    @property
    def brightness(self) -> int:
        """Return brightness (0-100)."""
        return self._state.brightness

    @property
    def hue(self) -> float:
        return self._state.hue

    @property
    def saturation(self) -> float:
        return self._state.saturation

    @property
    def rgb_color(self) -> tuple[int, int, int] | None:
        return self._state.rgb

    def register_callback(self, callback_fn: Callable[[], None]) -> None:
        """Register a callback for state updates."""
        self._callbacks.append(callback_fn)

    def unregister_callback(self, callback_fn: Callable[[], None]) -> None:
        """Unregister a callback."""
        if callback_fn in self._callbacks:
            self._callbacks.remove(callback_fn)

    def _notify_callbacks(self) -> None:
        for callback_fn in self._callbacks:
            try:
                callback_fn()
            except Exception as ex:
                _LOGGER.exception("Error in callback: %s", ex)

    async def _submit(
        self,
        description: str,
        build_frame: Callable[[], bytes],
        on_success: Callable[[], None],
    ) -> bytes:
        def _commit() -> None:
            on_success()
            self._notify_callbacks()

        return await self._queue.submit(description, build_frame, _commit)

    # ----- Public command methods -----

    async def set_power(self, status: bool) -> None:
        """Turn the strip on or off."""
        status = bool(status)
        frame = protocol.build_power_command(status)

        def _commit() -> None:
            self._state.power = status

        await self._submit(f"power={'on' if status else 'off'}", lambda: frame, _commit)

    async def turn_on(self) -> None:
        await self.set_power(True)

    async def turn_off(self) -> None:
        await self.set_power(False)

    async def set_brightness(self, level: int) -> None:
        """Set brightness 0-100.  Out of range levels raise InvalidArgumentError."""
        frame = protocol.build_brightness_command(level)

        def _commit() -> None:
            self._state.brightness = level

        await self._submit(f"brightness={level}", lambda: frame, _commit)

    async def set_rgb(self, r: int, g: int, b: int) -> None:
        """Set a static colour, each component 0-255."""
        frame = protocol.build_rgb_command(r, g, b)

        def _commit() -> None:
            self._state.rgb = (r, g, b)

        await self._submit(f"rgb=({r}, {g}, {b})", lambda: frame, _commit)

    async def set_hue(self, hue: float) -> None:
        """Set hue in degrees (0-360), keeping the current saturation."""
        hue = _validate_number("Hue", hue, MAX_HUE) % MAX_HUE
        await self._set_hs(f"hue={hue}", hue=hue)

    async def set_saturation(self, saturation: float) -> None:
        """Set saturation in percent (0-100), keeping the current hue."""
        saturation = _validate_number("Saturation", saturation, MAX_SATURATION)
        await self._set_hs(f"saturation={saturation}", saturation=saturation)

    async def _set_hs(
        self,
        description: str,
        hue: float | None = None,
        saturation: float | None = None,
    ) -> None:
        # Resolved when the command reaches the head of the queue, so a
        # hue change queued behind a saturation change sees the new saturation.
        resolved: dict[str, Any] = {}

        def _build_frame() -> bytes:
            resolved["hue"] = self._state.hue if hue is None else hue
            resolved["saturation"] = self._state.saturation if saturation is None else saturation
            resolved["rgb"] = hue_saturation_to_rgb(
                resolved["hue"], resolved["saturation"], self._state.lightness
            )
            _LOGGER.debug(
                "%s: hue=%s saturation=%s -> rgb=%s",
                self._name,
                resolved["hue"],
                resolved["saturation"],
                resolved["rgb"],
            )
            return protocol.build_rgb_command(*resolved["rgb"])

        def _commit() -> None:
            self._state.hue = resolved["hue"]
            self._state.saturation = resolved["saturation"]
            self._state.rgb = resolved["rgb"]

        await self._submit(description, _build_frame, _commit)

    async def disconnect(self) -> None:
        """Drop the link now; the next command reconnects."""
        await self._link.disconnect()

    async def stop(self) -> None:
        """Stop the device and clean up."""
        _LOGGER.debug("%s: Stop", self._name)
        await self._queue.close()
        await self._link.close()
        self._callbacks.clear()
