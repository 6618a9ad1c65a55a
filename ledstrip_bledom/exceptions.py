"""Errors raised by the ELK-BLEDOM session layer."""
from __future__ import annotations


class BledomError(Exception):
    """Base error for ledstrip_bledom."""


class ConfigError(BledomError):
    """Raised when a device configuration mapping fails validation."""


class InvalidArgumentError(BledomError, ValueError):
    """Raised when a command argument is out of range.

    Raised before any transport activity, so nothing is sent to the strip.
    """


class PeripheralNotFoundError(BledomError):
    """Raised when no matching peripheral was discovered within the scan window."""


class ConnectFailureError(BledomError):
    """Raised when connecting (or resolving the write characteristic) failed terminally."""

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class WriteFailureError(BledomError):
    """Raised when a frame could not be written after all retries."""

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class LinkLostError(BledomError):
    """Raised when the peripheral dropped the link while a write was in flight."""


class LinkClosedError(BledomError):
    """Raised for commands still pending when the device session is stopped."""
