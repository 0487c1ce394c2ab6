"""Outbound device message shapes.

Devices receive either the 8-byte binary frame (primary) or a JSON text
envelope ``{"type": "color", "data": {...}}`` (compatibility fallback).
"""

from __future__ import annotations

import json
from enum import StrEnum

from grokel_bridge.protocol.color import HSVColor, RGBColor
from grokel_bridge.protocol.grokel_protocol import GrokelProtocol

ColorValue = RGBColor | HSVColor


class OutputFormat(StrEnum):
    """Outbound representation chosen per device connection."""

    BINARY = "binary"
    JSON = "json"

    @classmethod
    def parse(cls, raw: str | None, default: OutputFormat) -> OutputFormat:
        """Map a config/query value to a format, falling back to ``default``."""
        if not raw:
            return default
        try:
            return cls(raw.casefold())
        except ValueError:
            return default


def encode_json_color(color: ColorValue) -> str:
    """Build the JSON text envelope for a color update."""
    if isinstance(color, HSVColor):
        data = {"h": color.h, "s": color.s, "v": color.v}
    else:
        data = {"r": color.r, "g": color.g, "b": color.b}
    return json.dumps({"type": "color", "data": data})


def encode_color(color: ColorValue, output_format: OutputFormat, duration_ms: int = 0) -> bytes | str:
    """Encode a color for the given output format.

    Raises:
        InvalidArgumentError: If the color or duration is out of range (binary only)
    """
    if output_format is OutputFormat.JSON:
        return encode_json_color(color)
    if isinstance(color, HSVColor):
        return GrokelProtocol.encode_set_hsv(color, duration_ms)
    return GrokelProtocol.encode_set_color(color.r, color.g, color.b, duration_ms)
