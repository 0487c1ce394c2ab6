"""Device session lifecycle: sessions, registry and liveness sweeper."""

from grokel_bridge.sessions.registry import SessionRegistry
from grokel_bridge.sessions.session import DeviceSession, SessionState, SubscriptionHandle
from grokel_bridge.sessions.sweeper import LivenessSweeper

__all__ = [
    "DeviceSession",
    "LivenessSweeper",
    "SessionRegistry",
    "SessionState",
    "SubscriptionHandle",
]
