"""
Shared fixtures for unit tests.

Provides an in-memory store, a subscription bridge, a session registry and
fake device transports so session lifecycle tests run without sockets.
"""

from __future__ import annotations

import pytest

from grokel_bridge.bridge import SubscriptionBridge
from grokel_bridge.protocol import OutputFormat
from grokel_bridge.sessions import SessionRegistry
from grokel_bridge.store import InMemoryStateStore
from tests.helpers.fakes import FakeTransport


@pytest.fixture
def memory_store():
    """Empty in-memory state store."""
    return InMemoryStateStore()


@pytest.fixture
def bridge(memory_store):
    """Subscription bridge with the default desired-state and preview paths."""
    return SubscriptionBridge(memory_store)


@pytest.fixture
def registry(bridge):
    """Session registry emitting binary frames, with a short detach bound."""
    return SessionRegistry(bridge, detach_timeout=0.05, output_format=OutputFormat.BINARY)


@pytest.fixture
def transport_factory():
    """Build named fake transports."""

    def _make(device_id: str = "D1") -> FakeTransport:
        return FakeTransport(device_id)

    return _make
