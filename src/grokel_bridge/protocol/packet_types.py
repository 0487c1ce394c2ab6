"""Grokel binary frame definitions.

Frame layout (8 bytes, big-endian multi-byte fields)::

    0      opcode        uint8
    1..2   hue           uint16, 0-360
    3      saturation    uint8
    4      value         uint8
    5      auxiliary     uint8, reserved (0)
    6..7   duration_ms   uint16
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Final

CMD_SET_COLOR: Final = 0x01
CMD_OFFLINE: Final = 0x02
CMD_HEARTBEAT: Final = 0x03

PACKET_SIZE: Final = 8
PACKET_STRUCT: Final = struct.Struct(">BHBBBH")

MAX_HUE: Final = 360
MAX_CHANNEL: Final = 255
MAX_DURATION_MS: Final = 0xFFFF

OPCODE_NAMES: Final[dict[int, str]] = {
    CMD_SET_COLOR: "SET_COLOR",
    CMD_OFFLINE: "OFFLINE",
    CMD_HEARTBEAT: "HEARTBEAT",
}


@dataclass(frozen=True, slots=True)
class GrokelPacket:
    """One decoded 8-byte command frame."""

    opcode: int
    hue: int = 0
    saturation: int = 0
    value: int = 0
    aux: int = 0
    duration_ms: int = 0

    @property
    def name(self) -> str:
        return OPCODE_NAMES.get(self.opcode, "UNKNOWN")

    def to_bytes(self) -> bytes:
        return PACKET_STRUCT.pack(self.opcode, self.hue, self.saturation, self.value, self.aux, self.duration_ms)
