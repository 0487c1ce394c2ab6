"""Prometheus metrics registry for the Grokel bridge."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

# Session lifecycle
grokel_sessions_active: Final = Gauge(  # type: ignore[assignment]
    "grokel_sessions_active",
    "Device sessions currently registered",
)

grokel_session_connect_total: Final = Counter(  # type: ignore[assignment]
    "grokel_session_connect_total",
    "Total device sessions opened",
    ["outcome"],
)

grokel_session_disconnect_total: Final = Counter(  # type: ignore[assignment]
    "grokel_session_disconnect_total",
    "Total device sessions closed",
    ["reason"],
)

grokel_session_replaced_total: Final = Counter(  # type: ignore[assignment]
    "grokel_session_replaced_total",
    "Total sessions superseded by a reconnect of the same device",
)

grokel_session_evicted_total: Final = Counter(  # type: ignore[assignment]
    "grokel_session_evicted_total",
    "Total sessions evicted by the liveness sweeper",
)

grokel_registry_lock_hold_seconds: Final = Histogram(  # type: ignore[assignment]
    "grokel_registry_lock_hold_seconds",
    "Session registry lock hold duration in seconds",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

grokel_sweep_duration_seconds: Final = Histogram(  # type: ignore[assignment]
    "grokel_sweep_duration_seconds",
    "Liveness sweep duration in seconds",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
)

# Outbound frames
grokel_frames_sent_total: Final = Counter(  # type: ignore[assignment]
    "grokel_frames_sent_total",
    "Total frames written to device transports",
    ["opcode", "outcome"],
)

grokel_outbound_dropped_total: Final = Counter(  # type: ignore[assignment]
    "grokel_outbound_dropped_total",
    "Total outbound messages dropped before reaching the transport",
    ["reason"],
)

# Inbound frames
grokel_frame_rejected_total: Final = Counter(  # type: ignore[assignment]
    "grokel_frame_rejected_total",
    "Total inbound binary frames that failed validation",
    ["reason"],
)

# Store subscriptions
grokel_store_events_total: Final = Counter(  # type: ignore[assignment]
    "grokel_store_events_total",
    "Total state store change events handled",
    ["subscription", "outcome"],
)

grokel_detach_failures_total: Final = Counter(  # type: ignore[assignment]
    "grokel_detach_failures_total",
    "Total subscription detaches that failed or timed out",
    ["subscription"],
)

_server_state = {"started": False}
_server_lock = threading.Lock()


def start_metrics_server(port: int = 9400) -> None:
    """Start Prometheus HTTP metrics server (idempotent)."""
    with _server_lock:
        if not _server_state["started"]:
            start_http_server(port)  # type: ignore[no-untyped-call]
            _server_state["started"] = True


def record_sessions_active(count: int) -> None:
    """Record the number of registered sessions."""
    grokel_sessions_active.set(count)  # type: ignore[no-untyped-call]


def record_session_connect(outcome: str) -> None:
    """Record a session open attempt."""
    grokel_session_connect_total.labels(outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_session_disconnect(reason: str) -> None:
    """Record a completed session close."""
    grokel_session_disconnect_total.labels(reason=reason).inc()  # type: ignore[no-untyped-call]


def record_session_replaced() -> None:
    grokel_session_replaced_total.inc()  # type: ignore[no-untyped-call]


def record_session_evicted() -> None:
    grokel_session_evicted_total.inc()  # type: ignore[no-untyped-call]


def record_lock_hold(seconds: float) -> None:
    """Record how long the registry lock was held."""
    grokel_registry_lock_hold_seconds.observe(seconds)  # type: ignore[no-untyped-call]


def record_sweep_duration(seconds: float) -> None:
    grokel_sweep_duration_seconds.observe(seconds)  # type: ignore[no-untyped-call]


def record_frame_sent(opcode: str, outcome: str) -> None:
    """Record an outbound frame write."""
    grokel_frames_sent_total.labels(opcode=opcode, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_outbound_dropped(reason: str) -> None:
    """Record an outbound message dropped before the transport."""
    grokel_outbound_dropped_total.labels(reason=reason).inc()  # type: ignore[no-untyped-call]


def record_frame_rejected(reason: str) -> None:
    grokel_frame_rejected_total.labels(reason=reason).inc()  # type: ignore[no-untyped-call]


def record_store_event(subscription: str, outcome: str) -> None:
    """Record a store change event for a subscription."""
    grokel_store_events_total.labels(subscription=subscription, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_detach_failure(subscription: str) -> None:
    grokel_detach_failures_total.labels(subscription=subscription).inc()  # type: ignore[no-untyped-call]
