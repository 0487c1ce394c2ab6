"""Core shared state for the Grokel bridge."""

from __future__ import annotations

import asyncio
import os
from argparse import Namespace
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel

from grokel_bridge.const import (
    GROKEL_CLOSE_TIMEOUT,
    GROKEL_DESIRED_STATE_PATH,
    GROKEL_DETACH_TIMEOUT,
    GROKEL_FADE_DURATION_MS,
    GROKEL_METRICS_ENABLED,
    GROKEL_METRICS_PORT,
    GROKEL_MQTT_CONN_DELAY,
    GROKEL_MQTT_HOST,
    GROKEL_MQTT_PORT,
    GROKEL_OUTBOUND_QUEUE_SIZE,
    GROKEL_OUTPUT_FORMAT,
    GROKEL_PORT,
    GROKEL_PREVIEW_PATH,
    GROKEL_SRV_HOST,
    GROKEL_STORE_BACKEND,
    GROKEL_STORE_SYNC_TIMEOUT,
    GROKEL_STORE_TOPIC,
    GROKEL_SWEEP_INTERVAL,
    YES_ANSWER,
    env_float,
    env_int,
)

if TYPE_CHECKING:
    from grokel_bridge.server import GrokelServer
    from grokel_bridge.store.base import StateStore


class BridgeEnv(BaseModel):
    """Runtime settings for the bridge.

    Defaults come from the module-level constants in :mod:`grokel_bridge.const`;
    :meth:`GlobalObject.reload_env` refreshes them after a ``.env`` file is loaded.
    """

    srv_host: str = GROKEL_SRV_HOST
    srv_port: int = GROKEL_PORT
    sweep_interval: float = GROKEL_SWEEP_INTERVAL
    detach_timeout: float = GROKEL_DETACH_TIMEOUT
    close_timeout: float = GROKEL_CLOSE_TIMEOUT
    outbound_queue_size: int = GROKEL_OUTBOUND_QUEUE_SIZE
    output_format: str = GROKEL_OUTPUT_FORMAT
    fade_duration_ms: int = GROKEL_FADE_DURATION_MS
    desired_state_path: str = GROKEL_DESIRED_STATE_PATH
    preview_path: str = GROKEL_PREVIEW_PATH
    store_backend: str = GROKEL_STORE_BACKEND
    mqtt_host: str = GROKEL_MQTT_HOST
    mqtt_port: int = GROKEL_MQTT_PORT
    mqtt_user: str | None = None
    mqtt_pass: str | None = None
    store_topic: str = GROKEL_STORE_TOPIC
    mqtt_conn_delay: int = GROKEL_MQTT_CONN_DELAY
    store_sync_timeout: float = GROKEL_STORE_SYNC_TIMEOUT
    metrics_enabled: bool = GROKEL_METRICS_ENABLED
    metrics_port: int = GROKEL_METRICS_PORT


class GlobalObject:
    """Singleton container for cross-module state and services."""

    server: GrokelServer | None = None
    store: StateStore | None = None
    loop: asyncio.AbstractEventLoop | None = None
    tasks: ClassVar[list[asyncio.Task[Any]]] = []
    env: BridgeEnv = BridgeEnv()
    cli_args: Namespace | None = None

    _instance: GlobalObject | None = None

    def __new__(cls, *_args: Any, **_kwargs: Any) -> GlobalObject:
        """Ensure only one GlobalObject instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def reload_env(self) -> None:
        """Re-evaluate environment variables into ``self.env``."""
        env = self.env
        env.srv_host = os.environ.get("GROKEL_SRV_HOST", "0.0.0.0")
        env.srv_port = env_int("GROKEL_PORT", 8080)
        env.sweep_interval = env_float("GROKEL_SWEEP_INTERVAL", 30.0)
        env.detach_timeout = env_float("GROKEL_DETACH_TIMEOUT", 5.0)
        env.close_timeout = env_float("GROKEL_CLOSE_TIMEOUT", 5.0)
        env.outbound_queue_size = env_int("GROKEL_OUTBOUND_QUEUE_SIZE", 64)
        output_format = os.environ.get("GROKEL_OUTPUT_FORMAT", "binary").casefold()
        env.output_format = output_format if output_format in ("binary", "json") else "binary"
        env.fade_duration_ms = env_int("GROKEL_FADE_DURATION_MS", 0)
        env.desired_state_path = os.environ.get("GROKEL_DESIRED_STATE_PATH", "devices/{device_id}/desiredState")
        env.preview_path = os.environ.get("GROKEL_PREVIEW_PATH", "devices/{device_id}/preview")
        backend = os.environ.get("GROKEL_STORE_BACKEND", "mqtt").casefold()
        env.store_backend = backend if backend in ("mqtt", "memory") else "mqtt"
        env.mqtt_host = os.environ.get("GROKEL_MQTT_HOST", "localhost")
        env.mqtt_port = env_int("GROKEL_MQTT_PORT", 1883)
        env.mqtt_user = os.environ.get("GROKEL_MQTT_USER") or None
        env.mqtt_pass = os.environ.get("GROKEL_MQTT_PASS") or None
        env.store_topic = os.environ.get("GROKEL_STORE_TOPIC", "grokel").strip("/") or "grokel"
        env.mqtt_conn_delay = env_int("GROKEL_MQTT_CONN_DELAY", 10)
        env.store_sync_timeout = env_float("GROKEL_STORE_SYNC_TIMEOUT", 2.0)
        env.metrics_enabled = os.environ.get("GROKEL_METRICS_ENABLED", "false").casefold() in YES_ANSWER
        env.metrics_port = env_int("GROKEL_METRICS_PORT", 9400)
