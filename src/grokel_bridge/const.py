import logging
import os

from grokel_bridge import __version__

__all__ = [
    "DESIRED_STATE_SUBSCRIPTION",
    "GROKEL_CLOSE_TIMEOUT",
    "GROKEL_DEBUG",
    "GROKEL_DESIRED_STATE_PATH",
    "GROKEL_DETACH_TIMEOUT",
    "GROKEL_FADE_DURATION_MS",
    "GROKEL_LOG_FORMAT",
    "GROKEL_LOG_HUMAN_OUTPUT",
    "GROKEL_LOG_JSON_FILE",
    "GROKEL_LOG_NAME",
    "GROKEL_METRICS_ENABLED",
    "GROKEL_METRICS_PORT",
    "GROKEL_MQTT_CONN_DELAY",
    "GROKEL_MQTT_HOST",
    "GROKEL_MQTT_PASS",
    "GROKEL_MQTT_PORT",
    "GROKEL_MQTT_USER",
    "GROKEL_OUTBOUND_QUEUE_SIZE",
    "GROKEL_OUTPUT_FORMAT",
    "GROKEL_PERF_THRESHOLD_MS",
    "GROKEL_PERF_TRACKING",
    "GROKEL_PORT",
    "GROKEL_PREVIEW_PATH",
    "GROKEL_SRV_HOST",
    "GROKEL_STORE_BACKEND",
    "GROKEL_STORE_SYNC_TIMEOUT",
    "GROKEL_STORE_TOPIC",
    "GROKEL_SWEEP_INTERVAL",
    "GROKEL_VERSION",
    "LOG_FORMATTER",
    "PREVIEW_SUBSCRIPTION",
    "SERVER_START_TASK_NAME",
    "STORE_START_TASK_NAME",
    "SWEEPER_TASK_NAME",
    "YES_ANSWER",
    "env_float",
    "env_int",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", "on", "o")
GROKEL_LOG_NAME: str = "grokel_bridge"
GROKEL_VERSION: str = __version__

LOG_FORMATTER = logging.Formatter(
    "%(asctime)s.%(msecs)d %(levelname)s [%(module)s:%(lineno)d] > %(message)s",
    "%m/%d/%y %H:%M:%S",
)


def env_int(name: str, default: int) -> int:
    """Read an integer env var, falling back to ``default`` on missing or garbage values."""
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    """Read a float env var, falling back to ``default`` on missing or garbage values."""
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


GROKEL_SRV_HOST: str = os.environ.get("GROKEL_SRV_HOST", "0.0.0.0")
GROKEL_PORT: int = env_int("GROKEL_PORT", 8080)

# Session lifecycle
GROKEL_SWEEP_INTERVAL: float = env_float("GROKEL_SWEEP_INTERVAL", 30.0)
GROKEL_DETACH_TIMEOUT: float = env_float("GROKEL_DETACH_TIMEOUT", 5.0)
GROKEL_CLOSE_TIMEOUT: float = env_float("GROKEL_CLOSE_TIMEOUT", 5.0)
GROKEL_OUTBOUND_QUEUE_SIZE: int = env_int("GROKEL_OUTBOUND_QUEUE_SIZE", 64)

# Outbound device messages
_output_format = os.environ.get("GROKEL_OUTPUT_FORMAT", "binary").casefold()
GROKEL_OUTPUT_FORMAT: str = _output_format if _output_format in ("binary", "json") else "binary"
GROKEL_FADE_DURATION_MS: int = env_int("GROKEL_FADE_DURATION_MS", 0)

# Store paths, {device_id} is substituted per session
DESIRED_STATE_SUBSCRIPTION = "desired-state"
PREVIEW_SUBSCRIPTION = "preview-state"
GROKEL_DESIRED_STATE_PATH: str = os.environ.get("GROKEL_DESIRED_STATE_PATH", "devices/{device_id}/desiredState")
GROKEL_PREVIEW_PATH: str = os.environ.get("GROKEL_PREVIEW_PATH", "devices/{device_id}/preview")

# State store backend
_store_backend = os.environ.get("GROKEL_STORE_BACKEND", "mqtt").casefold()
GROKEL_STORE_BACKEND: str = _store_backend if _store_backend in ("mqtt", "memory") else "mqtt"
GROKEL_MQTT_HOST: str = os.environ.get("GROKEL_MQTT_HOST", "localhost")
GROKEL_MQTT_PORT: int = env_int("GROKEL_MQTT_PORT", 1883)
GROKEL_MQTT_USER: str | None = os.environ.get("GROKEL_MQTT_USER") or None
GROKEL_MQTT_PASS: str | None = os.environ.get("GROKEL_MQTT_PASS") or None
GROKEL_STORE_TOPIC: str = os.environ.get("GROKEL_STORE_TOPIC", "grokel").strip("/") or "grokel"
GROKEL_MQTT_CONN_DELAY: int = env_int("GROKEL_MQTT_CONN_DELAY", 10)
GROKEL_STORE_SYNC_TIMEOUT: float = env_float("GROKEL_STORE_SYNC_TIMEOUT", 2.0)

GROKEL_DEBUG: bool = os.environ.get("GROKEL_DEBUG", "0").casefold() in YES_ANSWER

# Logging Configuration
GROKEL_LOG_FORMAT: str = os.environ.get("GROKEL_LOG_FORMAT", "human")  # "json", "human", or "both"
GROKEL_LOG_JSON_FILE: str | None = os.environ.get("GROKEL_LOG_JSON_FILE") or None
GROKEL_LOG_HUMAN_OUTPUT: str = os.environ.get("GROKEL_LOG_HUMAN_OUTPUT", "stdout")  # "stdout", "stderr", or file path

# Performance Instrumentation
GROKEL_PERF_TRACKING: bool = os.environ.get("GROKEL_PERF_TRACKING", "true").casefold() in YES_ANSWER
GROKEL_PERF_THRESHOLD_MS: int = env_int("GROKEL_PERF_THRESHOLD_MS", 100)

# Prometheus exporter
GROKEL_METRICS_ENABLED: bool = os.environ.get("GROKEL_METRICS_ENABLED", "false").casefold() in YES_ANSWER
GROKEL_METRICS_PORT: int = env_int("GROKEL_METRICS_PORT", 9400)

SERVER_START_TASK_NAME = "GrokelServer_START"
STORE_START_TASK_NAME = "StateStore_START"
SWEEPER_TASK_NAME = "LivenessSweeper_RUN"
