"""Grokel frame encoder/decoder.

Builds, validates and decodes the fixed 8-byte command frames consumed by the
light controller firmware. All methods are stateless.
"""

from __future__ import annotations

import logging

from grokel_bridge.protocol.color import HSVColor, rgb_to_hsv
from grokel_bridge.protocol.exceptions import InvalidArgumentError, MalformedFrameError
from grokel_bridge.protocol.packet_types import (
    CMD_HEARTBEAT,
    CMD_OFFLINE,
    CMD_SET_COLOR,
    MAX_CHANNEL,
    MAX_DURATION_MS,
    MAX_HUE,
    OPCODE_NAMES,
    PACKET_SIZE,
    PACKET_STRUCT,
    GrokelPacket,
)

logger = logging.getLogger(__name__)


def _check_duration(duration_ms: int) -> None:
    if not 0 <= duration_ms <= MAX_DURATION_MS:
        raise InvalidArgumentError("duration_out_of_range", duration_ms)


class GrokelProtocol:
    """Grokel protocol encoder/decoder.

    Provides static methods for building command frames, checking inbound
    frames and rendering them for diagnostics.
    """

    @staticmethod
    def encode_set_color(r: int, g: int, b: int, duration_ms: int = 0) -> bytes:
        """Encode a SET_COLOR frame from an RGB triple.

        Args:
            r: Red channel, 0-255
            g: Green channel, 0-255
            b: Blue channel, 0-255
            duration_ms: Fade duration, 0-65535

        Returns:
            8-byte frame

        Raises:
            InvalidArgumentError: If any channel or the duration is out of range

        Example:
            >>> GrokelProtocol.encode_set_color(255, 0, 0).hex()
            '010000ffff000000'

        """
        for channel in (r, g, b):
            if not 0 <= channel <= MAX_CHANNEL:
                raise InvalidArgumentError("rgb_out_of_range", (r, g, b))
        _check_duration(duration_ms)

        hsv = rgb_to_hsv(r, g, b)
        frame = GrokelPacket(CMD_SET_COLOR, hsv.h, hsv.s, hsv.v, 0, duration_ms).to_bytes()

        logger.debug(
            "Encoded SET_COLOR: rgb=(%d, %d, %d) -> hsv=(%d, %d, %d), duration=%dms",
            r,
            g,
            b,
            hsv.h,
            hsv.s,
            hsv.v,
            duration_ms,
        )
        return frame

    @staticmethod
    def encode_set_hsv(hsv: HSVColor, duration_ms: int = 0) -> bytes:
        """Encode a SET_COLOR frame from HSV already in frame units."""
        if not 0 <= hsv.h <= MAX_HUE:
            raise InvalidArgumentError("hue_out_of_range", hsv.h)
        if not (0 <= hsv.s <= MAX_CHANNEL and 0 <= hsv.v <= MAX_CHANNEL):
            raise InvalidArgumentError("sv_out_of_range", (hsv.s, hsv.v))
        _check_duration(duration_ms)

        return GrokelPacket(CMD_SET_COLOR, hsv.h, hsv.s, hsv.v, 0, duration_ms).to_bytes()

    @staticmethod
    def encode_offline() -> bytes:
        """Encode an OFFLINE frame (opcode then seven zero bytes)."""
        return GrokelPacket(CMD_OFFLINE).to_bytes()

    @staticmethod
    def encode_heartbeat() -> bytes:
        """Encode a HEARTBEAT frame (opcode then seven zero bytes)."""
        return GrokelPacket(CMD_HEARTBEAT).to_bytes()

    @staticmethod
    def decode_packet(frame: bytes | bytearray | memoryview) -> GrokelPacket:
        """Decode and validate an 8-byte frame.

        Raises:
            MalformedFrameError: On wrong length, unknown opcode or an
                out-of-range SET_COLOR hue

        """
        data = bytes(frame)
        if len(data) != PACKET_SIZE:
            raise MalformedFrameError("wrong_length", data)

        opcode, hue, saturation, value, aux, duration_ms = PACKET_STRUCT.unpack(data)
        if opcode not in OPCODE_NAMES:
            raise MalformedFrameError("unknown_opcode", data)
        if opcode == CMD_SET_COLOR and hue > MAX_HUE:
            raise MalformedFrameError("hue_out_of_range", data)

        return GrokelPacket(opcode, hue, saturation, value, aux, duration_ms)

    @staticmethod
    def validate(frame: object) -> bool:
        """Return True if ``frame`` is a well-formed 8-byte command frame."""
        if not isinstance(frame, (bytes, bytearray, memoryview)):
            return False
        try:
            GrokelProtocol.decode_packet(frame)
        except MalformedFrameError as e:
            logger.debug("Frame rejected: %s", e.reason)
            return False
        return True

    @staticmethod
    def describe(frame: object) -> str:
        """Render a frame for logs.

        Returns ``"SET_COLOR | HSV(h°, s, v) | aux:a | dur:dms"`` for color frames,
        the bare opcode name for the others, and ``"INVALID frame (<reason>)"``
        for anything that fails validation.
        """
        if not isinstance(frame, (bytes, bytearray, memoryview)):
            return "INVALID frame (not_bytes)"
        try:
            packet = GrokelProtocol.decode_packet(frame)
        except MalformedFrameError as e:
            return f"INVALID frame ({e.reason})"

        if packet.opcode == CMD_SET_COLOR:
            return (
                f"{packet.name} | HSV({packet.hue}°, {packet.saturation}, {packet.value})"
                f" | aux:{packet.aux} | dur:{packet.duration_ms}ms"
            )
        return packet.name
