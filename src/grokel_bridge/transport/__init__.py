"""Device transport layer."""

from grokel_bridge.transport.exceptions import TransportClosedError
from grokel_bridge.transport.types import DeviceTransport
from grokel_bridge.transport.websocket import WebSocketTransport

__all__ = [
    "DeviceTransport",
    "TransportClosedError",
    "WebSocketTransport",
]
