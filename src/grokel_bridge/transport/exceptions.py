"""Exception types for device transport errors."""

from __future__ import annotations

from grokel_bridge.protocol.exceptions import GrokelError


class TransportClosedError(GrokelError):
    """Write or probe attempted on a transport that is closing or closed.

    Expected while a session is being torn down; writers drop the message
    instead of surfacing the error.

    Attributes:
        device_id: Device the transport belongs to
        reason: Specific failure reason (e.g., "closed", "connection_reset", "write_timeout")
    """

    def __init__(self, device_id: str, reason: str = "closed") -> None:
        self.device_id: str = device_id
        self.reason: str = reason
        super().__init__(f"Transport closed for {device_id!r}: {reason}")
