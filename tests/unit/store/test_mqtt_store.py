"""Unit tests for the MQTT retained-topic state store (aiomqtt mocked)."""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import aiomqtt
import pytest

from grokel_bridge.store.mqtt import MQTTStateStore
from tests.helpers.fakes import wait_for_condition

PATH = "devices/D1/desiredState"
TOPIC = f"grokel/{PATH}"


def _message(topic: str, payload: object) -> SimpleNamespace:
    return SimpleNamespace(topic=SimpleNamespace(value=topic), payload=payload)


class FakeClient:
    """Minimal aiomqtt.Client stand-in: yields queued messages, then idles."""

    instances: list[FakeClient] = []
    fail_first = 0
    queued: list[SimpleNamespace] = []

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.subscribe = AsyncMock()
        FakeClient.instances.append(self)

    async def __aenter__(self) -> FakeClient:
        if FakeClient.fail_first > 0:
            FakeClient.fail_first -= 1
            raise aiomqtt.MqttError("Connection refused")
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    @property
    def messages(self):
        return self._iterate()

    async def _iterate(self):
        for message in FakeClient.queued:
            yield message
        await asyncio.Event().wait()


@pytest.fixture
def store():
    return MQTTStateStore("broker.local", topic_prefix="grokel", conn_delay=0.01, sync_timeout=0.05)


@pytest.fixture
def fake_client():
    FakeClient.instances = []
    FakeClient.fail_first = 0
    FakeClient.queued = []
    with patch("grokel_bridge.store.mqtt.aiomqtt.Client", FakeClient):
        yield FakeClient


class TestTopicMapping:
    """Tests for path/topic translation."""

    def test_topic_for(self, store) -> None:
        """Test paths are placed under the prefix."""
        assert store.topic_for(PATH) == TOPIC
        assert store.topic_for(f"/{PATH}/") == TOPIC

    def test_path_for(self, store) -> None:
        """Test topics map back to paths, foreign topics to None."""
        assert store.path_for(TOPIC) == PATH
        assert store.path_for("other/devices/D1") is None
        assert store.path_for("grokel/") is None


class TestHandleMessage:
    """Tests for cache updates and listener notification."""

    @pytest.mark.asyncio
    async def test_json_object_updates_cache_and_notifies(self, store) -> None:
        """Test a JSON object payload is cached and delivered."""
        received = []
        await store.subscribe(PATH, received.append)

        store.handle_message(TOPIC, json.dumps({"color": {"r": 1, "g": 2, "b": 3}}).encode())

        assert received == [{"color": {"r": 1, "g": 2, "b": 3}}]
        store._synced.set()
        assert await store.read(PATH) == {"color": {"r": 1, "g": 2, "b": 3}}

    @pytest.mark.asyncio
    async def test_retained_replay_does_not_notify(self, store) -> None:
        """Test an identical re-delivery is not a change."""
        received = []
        await store.subscribe(PATH, received.append)
        payload = json.dumps({"x": 1}).encode()

        store.handle_message(TOPIC, payload)
        store.handle_message(TOPIC, payload)

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_empty_payload_deletes(self, store) -> None:
        """Test an empty retained payload removes the value and delivers None."""
        store.handle_message(TOPIC, b'{"x": 1}')
        received = []
        await store.subscribe(PATH, received.append)

        store.handle_message(TOPIC, b"")
        store.handle_message(TOPIC, b"")

        assert received == [None]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [b"not json", b"[1, 2, 3]", b"42"])
    async def test_non_object_payload_ignored(self, store, payload) -> None:
        """Test payloads that are not JSON objects are dropped."""
        received = []
        await store.subscribe(PATH, received.append)
        store.handle_message(TOPIC, payload)
        assert received == []

    @pytest.mark.asyncio
    async def test_foreign_topic_ignored(self, store) -> None:
        """Test topics outside the prefix never reach listeners."""
        received = []
        await store.subscribe(PATH, received.append)
        store.handle_message(f"other/{PATH}", b'{"x": 1}')
        assert received == []


class TestRead:
    """Tests for read before and after the initial sync."""

    @pytest.mark.asyncio
    async def test_read_waits_then_uses_partial_cache(self, store) -> None:
        """Test read gives up waiting after sync_timeout and answers from the cache."""
        store.handle_message(TOPIC, b'{"x": 1}')
        assert await store.read(PATH) == {"x": 1}
        assert await store.read("devices/D9/desiredState") is None


class TestLifecycle:
    """Tests for the connect/receive loop."""

    @pytest.mark.asyncio
    async def test_start_subscribes_and_receives(self, store, fake_client) -> None:
        """Test start connects, subscribes to the wildcard and fills the cache."""
        fake_client.queued = [_message(TOPIC, b'{"color": {"r": 0, "g": 255, "b": 0}}')]

        await store.start()
        assert await wait_for_condition(lambda: store._values.get(PATH) is not None)

        client = fake_client.instances[0]
        client.subscribe.assert_awaited_once_with("grokel/#", qos=1)
        assert client.kwargs["hostname"] == "broker.local"
        assert store.is_connected

        await store.stop()
        assert store.start_task is None
        assert not store.is_connected

    @pytest.mark.asyncio
    async def test_reconnects_after_mqtt_error(self, store, fake_client) -> None:
        """Test a refused connection is retried after conn_delay."""
        fake_client.fail_first = 1

        await store.start()
        assert await wait_for_condition(lambda: store.is_connected)
        assert len(fake_client.instances) == 2

        await store.stop()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, store, fake_client) -> None:
        """Test a second start does not launch another loop."""
        await store.start()
        task = store.start_task
        await store.start()
        assert store.start_task is task
        await store.stop()
