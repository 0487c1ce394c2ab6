"""State store backed by retained MQTT topics.

Store path ``p`` lives at retained topic ``<prefix>/p`` with a JSON object
payload; an empty retained payload means the path was deleted. One wildcard
subscription keeps a local cache that ``read`` answers from.
"""

from __future__ import annotations

import asyncio
import copy
import json
import uuid
from typing import Any

import aiomqtt

from grokel_bridge.const import (
    GROKEL_MQTT_CONN_DELAY,
    GROKEL_STORE_SYNC_TIMEOUT,
    GROKEL_STORE_TOPIC,
    STORE_START_TASK_NAME,
)
from grokel_bridge.logging_abstraction import get_logger
from grokel_bridge.store.base import StateStore, StoreValue

logger = get_logger(__name__)

# Retained messages arrive right after SUBACK; give them this long before reads stop waiting.
RETAINED_SETTLE_SECONDS = 0.5


class MQTTStateStore(StateStore):
    """Read-only view of a retained-topic tree on an MQTT broker."""

    def __init__(
        self,
        host: str,
        port: int = 1883,
        username: str | None = None,
        password: str | None = None,
        topic_prefix: str = GROKEL_STORE_TOPIC,
        conn_delay: float = GROKEL_MQTT_CONN_DELAY,
        sync_timeout: float = GROKEL_STORE_SYNC_TIMEOUT,
    ) -> None:
        super().__init__()
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.topic_prefix = topic_prefix.strip("/")
        self.conn_delay = conn_delay
        self.sync_timeout = sync_timeout
        self.identifier = f"grokel_bridge_{uuid.uuid4().hex[:12]}"
        self.client: aiomqtt.Client | None = None
        self.start_task: asyncio.Task[None] | None = None
        self._values: dict[str, dict[str, Any]] = {}
        self._synced = asyncio.Event()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def topic_for(self, path: str) -> str:
        return f"{self.topic_prefix}/{path.strip('/')}"

    def path_for(self, topic: str) -> str | None:
        """Map a topic back to a store path, or None if it is outside the prefix."""
        prefix = f"{self.topic_prefix}/"
        if not topic.startswith(prefix) or topic == prefix:
            return None
        return topic[len(prefix) :]

    async def read(self, path: str) -> StoreValue:
        if not self._synced.is_set():
            try:
                await asyncio.wait_for(self._synced.wait(), timeout=self.sync_timeout)
            except TimeoutError:
                logger.warning(
                    "Store not synced after %.1fs, reading from partial cache",
                    self.sync_timeout,
                    extra={"path": path, "connected": self._connected},
                )
        value = self._values.get(path)
        return copy.deepcopy(value) if value is not None else None

    def handle_message(self, topic: str, payload: object) -> None:
        """Apply one retained-topic update to the cache and notify listeners on change."""
        path = self.path_for(topic)
        if path is None:
            return

        if payload is None or payload in (b"", ""):
            if self._values.pop(path, None) is not None:
                self._notify(path, None)
            return

        if isinstance(payload, bytes | bytearray):
            raw = payload.decode(errors="replace")
        else:
            raw = str(payload)
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring non-JSON store payload", extra={"topic": topic, "payload": raw[:64]})
            return
        if not isinstance(value, dict):
            logger.warning("Ignoring non-object store payload", extra={"topic": topic, "payload": raw[:64]})
            return

        if self._values.get(path) == value:
            logger.debug("Unchanged store value (retained replay)", extra={"path": path})
            return
        self._values[path] = value
        self._notify(path, value)

    async def start(self) -> None:
        """Launch the connect/receive loop in the background."""
        if self.start_task is None or self.start_task.done():
            self.start_task = asyncio.create_task(self._run(), name=STORE_START_TASK_NAME)

    async def _run(self) -> None:
        itr = 0
        delay = self.conn_delay if self.conn_delay > 0 else 5
        try:
            while True:
                itr += 1
                client = aiomqtt.Client(
                    hostname=self.host,
                    port=self.port,
                    username=self.username,
                    password=self.password,
                    identifier=self.identifier,
                )
                try:
                    async with client:
                        self.client = client
                        self._connected = True
                        logger.info(
                            "Connected to MQTT broker %s:%s",
                            self.host,
                            self.port,
                            extra={"attempt": itr, "prefix": self.topic_prefix},
                        )
                        await client.subscribe(f"{self.topic_prefix}/#", qos=1)
                        asyncio.get_running_loop().call_later(RETAINED_SETTLE_SECONDS, self._synced.set)
                        async for message in client.messages:
                            self.handle_message(message.topic.value, message.payload)
                except aiomqtt.MqttError as e:
                    logger.warning(
                        "MQTT store connection lost, retrying in %ss: %s",
                        delay,
                        e,
                        extra={"attempt": itr, "host": self.host},
                    )
                finally:
                    self._connected = False
                    self.client = None
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.debug("MQTT store task cancelled")
            raise
        except Exception:
            logger.exception("MQTT store task failed")

    async def stop(self) -> None:
        if self.start_task is not None and not self.start_task.done():
            self.start_task.cancel()
            try:
                await self.start_task
            except asyncio.CancelledError:
                pass
        self.start_task = None
        logger.info("MQTT store stopped")
