"""Metrics module."""

from .registry import (
    record_detach_failure,
    record_frame_rejected,
    record_frame_sent,
    record_lock_hold,
    record_outbound_dropped,
    record_session_connect,
    record_session_disconnect,
    record_session_evicted,
    record_session_replaced,
    record_sessions_active,
    record_store_event,
    record_sweep_duration,
    start_metrics_server,
)

__all__ = [
    "record_detach_failure",
    "record_frame_rejected",
    "record_frame_sent",
    "record_lock_hold",
    "record_outbound_dropped",
    "record_session_connect",
    "record_session_disconnect",
    "record_session_evicted",
    "record_session_replaced",
    "record_sessions_active",
    "record_store_event",
    "record_sweep_duration",
    "start_metrics_server",
]
