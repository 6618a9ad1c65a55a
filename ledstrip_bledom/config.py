"""Device configuration validation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

import voluptuous as vol

from .const import (
    CONF_ADDRESS,
    CONF_CONNECT_BACKOFF,
    CONF_DISCONNECT_DELAY,
    CONF_MAX_CONNECT_ATTEMPTS,
    CONF_MAX_WRITE_ATTEMPTS,
    CONF_NAME,
    CONF_SCAN_TIMEOUT,
    CONF_SERVICE_UUID,
    CONF_WRITE_BACKOFF,
    CONF_WRITE_CHARACTERISTIC_UUID,
    CONF_WRITE_WITHOUT_RESPONSE,
    DEFAULT_CONNECT_BACKOFF,
    DEFAULT_DISCONNECT_DELAY,
    DEFAULT_MAX_CONNECT_ATTEMPTS,
    DEFAULT_MAX_WRITE_ATTEMPTS,
    DEFAULT_SCAN_TIMEOUT,
    DEFAULT_WRITE_BACKOFF,
    SERVICE_UUID,
    WRITE_CHARACTERISTIC_UUID,
)
from .exceptions import ConfigError

_LOGGER = logging.getLogger(__name__)


def _identifier(value: Any) -> str:
    """Accept a MAC address or a platform UUID (macOS) as the peripheral id."""
    value = vol.Coerce(str)(value).strip()
    if not value:
        raise vol.Invalid("peripheral identifier must not be empty")
    return value.upper()


def _uuid(value: Any) -> str:
    value = vol.Coerce(str)(value).strip().lower()
    if len(value) == 4:
        # 16-bit short form, expand onto the Bluetooth base UUID
        value = f"0000{value}-0000-1000-8000-00805f9b34fb"
    return vol.Match(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")(value)


_SECONDS = vol.All(vol.Coerce(float), vol.Range(min=0))
_ATTEMPTS = vol.All(vol.Coerce(int), vol.Range(min=1, max=20))

DEVICE_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_ADDRESS): _identifier,
        vol.Optional(CONF_NAME, default=None): vol.Any(None, str),
        vol.Optional(CONF_SERVICE_UUID, default=SERVICE_UUID): _uuid,
        vol.Optional(CONF_WRITE_CHARACTERISTIC_UUID, default=WRITE_CHARACTERISTIC_UUID): _uuid,
        vol.Optional(CONF_DISCONNECT_DELAY, default=DEFAULT_DISCONNECT_DELAY): _SECONDS,
        vol.Optional(CONF_SCAN_TIMEOUT, default=DEFAULT_SCAN_TIMEOUT): vol.All(
            vol.Coerce(float), vol.Range(min=0, min_included=False)
        ),
        vol.Optional(CONF_MAX_CONNECT_ATTEMPTS, default=DEFAULT_MAX_CONNECT_ATTEMPTS): _ATTEMPTS,
        vol.Optional(CONF_CONNECT_BACKOFF, default=DEFAULT_CONNECT_BACKOFF): _SECONDS,
        vol.Optional(CONF_MAX_WRITE_ATTEMPTS, default=DEFAULT_MAX_WRITE_ATTEMPTS): _ATTEMPTS,
        vol.Optional(CONF_WRITE_BACKOFF, default=DEFAULT_WRITE_BACKOFF): _SECONDS,
        vol.Optional(CONF_WRITE_WITHOUT_RESPONSE, default=True): vol.Boolean(),
    }
)


@dataclass(frozen=True)
class DeviceConfig:
    """Validated settings for one LED strip session."""

    address: str
    name: str | None = None
    service_uuid: str = SERVICE_UUID
    write_characteristic_uuid: str = WRITE_CHARACTERISTIC_UUID
    disconnect_delay: float = DEFAULT_DISCONNECT_DELAY
    scan_timeout: float = DEFAULT_SCAN_TIMEOUT
    max_connect_attempts: int = DEFAULT_MAX_CONNECT_ATTEMPTS
    connect_backoff: float = DEFAULT_CONNECT_BACKOFF
    max_write_attempts: int = DEFAULT_MAX_WRITE_ATTEMPTS
    write_backoff: float = DEFAULT_WRITE_BACKOFF
    write_without_response: bool = True

    @property
    def display_name(self) -> str:
        return self.name or self.address

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> DeviceConfig:
        """Validate a plain mapping (e.g. parsed from JSON or CLI flags)."""
        try:
            validated = DEVICE_SCHEMA(dict(data))
        except vol.Invalid as ex:
            raise ConfigError(f"Invalid device configuration: {ex}") from ex
        _LOGGER.debug("Validated device configuration: %s", validated)
        return cls(**validated)
