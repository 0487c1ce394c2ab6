"""Grokel protocol package - color conversion, frame codec and message shapes.

Public API:
- Opcode constants (CMD_*) and PACKET_SIZE
- GrokelPacket dataclass
- GrokelProtocol encoder/decoder
- rgb_to_hsv and the color value types
- JSON envelope and OutputFormat
"""

from grokel_bridge.protocol.color import HSVColor, RGBColor, rgb_to_hsv
from grokel_bridge.protocol.exceptions import GrokelError, InvalidArgumentError, MalformedFrameError
from grokel_bridge.protocol.grokel_protocol import GrokelProtocol
from grokel_bridge.protocol.messages import ColorValue, OutputFormat, encode_color, encode_json_color
from grokel_bridge.protocol.packet_types import (
    CMD_HEARTBEAT,
    CMD_OFFLINE,
    CMD_SET_COLOR,
    OPCODE_NAMES,
    PACKET_SIZE,
    GrokelPacket,
)

__all__ = [
    # Opcodes
    "CMD_HEARTBEAT",
    "CMD_OFFLINE",
    "CMD_SET_COLOR",
    "OPCODE_NAMES",
    "PACKET_SIZE",
    # Values
    "ColorValue",
    "GrokelPacket",
    "HSVColor",
    "RGBColor",
    # Codec
    "GrokelProtocol",
    "OutputFormat",
    "encode_color",
    "encode_json_color",
    "rgb_to_hsv",
    # Errors
    "GrokelError",
    "InvalidArgumentError",
    "MalformedFrameError",
]
