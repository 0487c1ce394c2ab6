"""Exception types for the Grokel bridge.

Every error the bridge raises derives from :class:`GrokelError`, so callers can
catch the whole family while still handling specific failures by type.
"""

from __future__ import annotations

from grokel_bridge.protocol.packet_types import PACKET_SIZE


class GrokelError(Exception):
    """Base exception for all Grokel bridge errors."""


class InvalidArgumentError(GrokelError, ValueError):
    """An input was rejected at the call boundary.

    Raised for out-of-range color or duration values and for empty device
    identifiers. Nothing is applied when this is raised.

    Attributes:
        reason: Specific failure reason (e.g., "rgb_out_of_range", "empty_device_id")
        value: The offending value
    """

    def __init__(self, reason: str, value: object = None):
        self.reason = reason
        self.value = value
        super().__init__(f"Invalid argument: {reason} ({value!r})")


class MalformedFrameError(GrokelError):
    """A binary frame failed structural validation.

    Attributes:
        reason: Specific failure reason (e.g., "wrong_length", "unknown_opcode", "hue_out_of_range")
        data_preview: At most the first 8 bytes of the offending data
    """

    def __init__(self, reason: str, data: bytes = b""):
        self.reason = reason
        self.data_preview = bytes(data[:PACKET_SIZE]) if data else b""
        super().__init__(f"Malformed frame: {reason}")
