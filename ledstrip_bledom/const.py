"""Constants for ELK-BLEDOM LED strips."""
from typing import Final

# Configuration keys
CONF_ADDRESS: Final = "address"
CONF_NAME: Final = "name"
CONF_SERVICE_UUID: Final = "service_uuid"
CONF_WRITE_CHARACTERISTIC_UUID: Final = "write_characteristic_uuid"
CONF_DISCONNECT_DELAY: Final = "disconnect_delay"
CONF_SCAN_TIMEOUT: Final = "scan_timeout"
CONF_MAX_CONNECT_ATTEMPTS: Final = "max_connect_attempts"
CONF_CONNECT_BACKOFF: Final = "connect_backoff"
CONF_MAX_WRITE_ATTEMPTS: Final = "max_write_attempts"
CONF_WRITE_BACKOFF: Final = "write_backoff"
CONF_WRITE_WITHOUT_RESPONSE: Final = "write_without_response"

# Default values
DEFAULT_DISCONNECT_DELAY: Final = 5.0   # seconds of inactivity before the link is dropped
DEFAULT_SCAN_TIMEOUT: Final = 30.0      # seconds
DEFAULT_MAX_CONNECT_ATTEMPTS: Final = 3
DEFAULT_CONNECT_BACKOFF: Final = 5.0    # seconds
DEFAULT_MAX_WRITE_ATTEMPTS: Final = 3
DEFAULT_WRITE_BACKOFF: Final = 2.0      # seconds

# BLE UUIDs
SERVICE_UUID: Final = "0000fff0-0000-1000-8000-00805f9b34fb"
WRITE_CHARACTERISTIC_UUID: Final = "0000fff3-0000-1000-8000-00805f9b34fb"

# Desired state defaults
DEFAULT_BRIGHTNESS: Final = 100  # 0-100
DEFAULT_HUE: Final = 0           # 0-360
DEFAULT_SATURATION: Final = 0    # 0-100
LIGHTNESS: Final = 0.5

# Value ranges
MIN_BRIGHTNESS: Final = 0
MAX_BRIGHTNESS: Final = 100
MAX_HUE: Final = 360
MAX_SATURATION: Final = 100
MAX_COLOR_COMPONENT: Final = 255

# Advertised names seen on this family of controllers
DEVICE_NAME_PREFIXES: Final = ("ELK-BLEDOM", "ELK-BLEDOB", "ELK-BULB", "BLEDOM", "MELK")
