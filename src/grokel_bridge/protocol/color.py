"""RGB to HSV conversion for the Grokel frame encoding."""

from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class HSVColor:
    """HSV in frame units: hue 0-360 degrees, saturation and value 0-255."""

    h: int
    s: int
    v: int


@dataclass(frozen=True, slots=True)
class RGBColor:
    r: int
    g: int
    b: int


def _round_half_up(x: float) -> int:
    # Half-up, as the firmware reference encoder rounds.
    return math.floor(x + 0.5)


def rgb_to_hsv(r: int, g: int, b: int) -> HSVColor:
    """Convert 0-255 RGB channels to frame-unit HSV.

    Achromatic inputs (all channels equal) get hue 0. Inputs are assumed to be
    in range; :meth:`GrokelProtocol.encode_set_color` does the validation.

    >>> rgb_to_hsv(0, 255, 0)
    HSVColor(h=120, s=255, v=255)
    """
    rf, gf, bf = r / 255, g / 255, b / 255

    high = max(rf, gf, bf)
    low = min(rf, gf, bf)
    delta = high - low

    hue = 0.0
    saturation = 0.0 if high == 0 else delta / high

    if delta != 0:
        if high == rf:
            hue = ((gf - bf) / delta + (6 if gf < bf else 0)) / 6
        elif high == gf:
            hue = ((bf - rf) / delta + 2) / 6
        else:
            hue = ((rf - gf) / delta + 4) / 6

    return HSVColor(
        h=_round_half_up(hue * 360),
        s=_round_half_up(saturation * 255),
        v=_round_half_up(high * 255),
    )
