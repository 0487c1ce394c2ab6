"""Typing protocol for device transports."""

from __future__ import annotations

from typing import Protocol


class DeviceTransport(Protocol):
    """A persistent, message-oriented connection to one device.

    Implementations must raise :class:`TransportClosedError` from ``send`` and
    ``ping`` once the connection is closing or closed.
    """

    @property
    def is_open(self) -> bool: ...

    @property
    def peer(self) -> str | None: ...

    async def send(self, payload: bytes | str) -> None:
        """Send one message (binary for bytes, text for str)."""
        ...

    async def ping(self) -> None:
        """Send a liveness probe."""
        ...

    async def close(self) -> None:
        """Close gracefully, bounded by the transport's close timeout."""
        ...

    def terminate(self) -> None:
        """Drop the connection immediately without a close handshake."""
        ...
