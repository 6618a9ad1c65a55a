"""Session layer for ELK-BLEDOM Bluetooth LED strips."""
from __future__ import annotations

from .color import hsl_to_rgb, hue_saturation_to_rgb
from .config import DeviceConfig
from .device import BledomDevice, DesiredState
from .exceptions import (
    BledomError,
    ConfigError,
    ConnectFailureError,
    InvalidArgumentError,
    LinkClosedError,
    LinkLostError,
    PeripheralNotFoundError,
    WriteFailureError,
)
from .link import LinkState
from .transport import AdapterState, BleakTransport, PeripheralHandle, Transport, WriteChannel

__version__ = "1.0.0"

__all__ = [
    "AdapterState",
    "BledomDevice",
    "BledomError",
    "BleakTransport",
    "ConfigError",
    "ConnectFailureError",
    "DesiredState",
    "DeviceConfig",
    "InvalidArgumentError",
    "LinkClosedError",
    "LinkLostError",
    "LinkState",
    "PeripheralHandle",
    "PeripheralNotFoundError",
    "Transport",
    "WriteChannel",
    "WriteFailureError",
    "hsl_to_rgb",
    "hue_saturation_to_rgb",
]
