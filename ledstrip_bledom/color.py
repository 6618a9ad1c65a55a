"""Colour conversion helpers."""
from __future__ import annotations

import colorsys
import math

from .const import LIGHTNESS, MAX_HUE, MAX_SATURATION


def _to_byte(value: float) -> int:
    # Round half up; round() would use banker's rounding on x.5 values
    return int(math.floor(value * 255 + 0.5))


def hsl_to_rgb(h: float, s: float, l: float) -> tuple[int, int, int]:
    """Convert HSL in [0, 1] to an RGB triple of 0-255 integers.

    Callers clamp their inputs; hue wraps around so 1.0 is the same as 0.0.
    """
    if s == 0:
        # Achromatic
        value = _to_byte(l)
        return value, value, value
    # colorsys orders the arguments hue, lightness, saturation
    r, g, b = colorsys.hls_to_rgb(h, l, s)
    return _to_byte(r), _to_byte(g), _to_byte(b)


def hue_saturation_to_rgb(
    hue: float, saturation: float, lightness: float = LIGHTNESS
) -> tuple[int, int, int]:
    """Convert hue in degrees (0-360) and saturation in percent (0-100)."""
    return hsl_to_rgb(hue / MAX_HUE, saturation / MAX_SATURATION, lightness)
