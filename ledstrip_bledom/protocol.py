"""Protocol layer for ELK-BLEDOM LED strips.

Every command is a fixed 9 byte frame:

    [0x7E, opcode_hi, opcode_lo, payload x 5, 0xEF]

There is no checksum and no sequence number.  Frames are returned as
immutable ``bytes`` so a queued command can be retried without the
buffer changing underneath it.
"""
from __future__ import annotations

from .const import MAX_BRIGHTNESS, MAX_COLOR_COMPONENT, MIN_BRIGHTNESS
from .exceptions import InvalidArgumentError

PREAMBLE = 0x7E
TERMINATOR = 0xEF
FRAME_LENGTH = 9

OPCODE_POWER = (0x04, 0x04)
OPCODE_BRIGHTNESS = (0x04, 0x01)
OPCODE_RGB = (0x07, 0x05)

RGB_MODE = 0x03
RGB_TRAILER = 0x10


def _frame(opcode: tuple[int, int], payload: list[int]) -> bytes:
    return bytes([PREAMBLE, *opcode, *payload, TERMINATOR])


def frame_to_hex(frame: bytes) -> str:
    """Format a frame as 0xNN pairs for logging."""
    return " ".join(f"0x{b:02X}" for b in frame)


# =============================================================================
# POWER
# =============================================================================

def build_power_command(turn_on: bool) -> bytes:
    """
    Build power command.

    Format: [0x7E, 0x04, 0x04, state, 0x00, state, 0xFF, 0x00, 0xEF]
    State: 0x01 = ON, 0x00 = OFF
    """
    state = 0x01 if turn_on else 0x00
    return _frame(OPCODE_POWER, [state, 0x00, state, 0xFF, 0x00])


# =============================================================================
# BRIGHTNESS
# =============================================================================

def build_brightness_command(level: int) -> bytes:
    """
    Build brightness command.

    Format: [0x7E, 0x04, 0x01, level, 0xFF, 0xFF, 0xFF, 0x00, 0xEF]
    Level is a percentage 0-100.  Out of range levels are rejected, not clamped.
    """
    if isinstance(level, bool) or not isinstance(level, int):
        raise InvalidArgumentError(f"Brightness must be an integer, got {level!r}")
    if not MIN_BRIGHTNESS <= level <= MAX_BRIGHTNESS:
        raise InvalidArgumentError(
            f"Brightness {level} out of range {MIN_BRIGHTNESS}-{MAX_BRIGHTNESS}"
        )
    return _frame(OPCODE_BRIGHTNESS, [level, 0xFF, 0xFF, 0xFF, 0x00])


# =============================================================================
# COLOR
# =============================================================================

def validate_rgb(r: int, g: int, b: int) -> None:
    """Raise InvalidArgumentError unless every component is an int in 0-255."""
    for name, value in (("red", r), ("green", g), ("blue", b)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidArgumentError(f"RGB {name} must be an integer, got {value!r}")
        if not 0 <= value <= MAX_COLOR_COMPONENT:
            raise InvalidArgumentError(
                f"RGB {name} {value} out of range 0-{MAX_COLOR_COMPONENT}"
            )


def build_rgb_command(r: int, g: int, b: int) -> bytes:
    """
    Build static colour command.

    Format: [0x7E, 0x07, 0x05, 0x03, R, G, B, 0x10, 0xEF]
    """
    validate_rgb(r, g, b)
    return _frame(OPCODE_RGB, [RGB_MODE, r, g, b, RGB_TRAILER])
