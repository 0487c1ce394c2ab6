"""Per-device session state: transport, liveness flag, subscription handles and outbound queue."""

from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass
from enum import StrEnum

from grokel_bridge.correlation import correlation_context
from grokel_bridge.logging_abstraction import get_logger
from grokel_bridge.metrics import (
    record_detach_failure,
    record_frame_sent,
    record_outbound_dropped,
)
from grokel_bridge.protocol import ColorValue, GrokelProtocol, OutputFormat, encode_color
from grokel_bridge.store.base import StateStore, StoreSubscription
from grokel_bridge.store.exceptions import SubscriptionDetachError
from grokel_bridge.transport.exceptions import TransportClosedError
from grokel_bridge.transport.types import DeviceTransport

logger = get_logger(__name__)


class SessionState(StrEnum):
    """Lifecycle of a device session. CLOSED is terminal; nothing re-enters ACTIVE."""

    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(eq=False)
class SubscriptionHandle:
    """One attached store listener, owned by a session and detached by identity."""

    name: str
    path: str
    store: StateStore
    subscription: StoreSubscription
    detached: bool = False

    async def detach(self, timeout: float) -> bool:
        """Unregister the listener once; later calls are no-ops.

        Returns False when the store did not confirm removal in time. The
        failure is logged and counted, never raised.
        """
        if self.detached:
            return True
        self.detached = True

        error: SubscriptionDetachError
        try:
            confirmed = await asyncio.wait_for(self.store.unsubscribe(self.subscription), timeout=timeout)
        except TimeoutError:
            error = SubscriptionDetachError(self.path, "timeout")
        except Exception as e:
            error = SubscriptionDetachError(self.path, f"{type(e).__name__}: {e}")
        else:
            if confirmed:
                return True
            error = SubscriptionDetachError(self.path, "not_registered")

        logger.warning(
            "Abandoning subscription detach: %s",
            error,
            extra={"subscription": self.name, "path": self.path, "reason": error.reason},
        )
        record_detach_failure(self.name)
        return False


class DeviceSession:
    """One connected device.

    Outbound messages go through a bounded queue drained by a single writer
    task, so messages reach the transport in the order they were delivered.
    """

    def __init__(
        self,
        device_id: str,
        transport: DeviceTransport,
        output_format: OutputFormat = OutputFormat.BINARY,
        duration_ms: int = 0,
        queue_size: int = 64,
        correlation_id: str | None = None,
        generation: int = 0,
    ) -> None:
        self.device_id = device_id
        self.generation = generation
        self.transport = transport
        self.output_format = output_format
        self.duration_ms = duration_ms
        self.correlation_id = correlation_id
        self.state = SessionState.CONNECTING
        self.alive = True
        self.handles: dict[str, SubscriptionHandle] = {}
        self.connected_at = time.time()
        self._outbound: asyncio.Queue[tuple[str, bytes | str]] = asyncio.Queue(maxsize=queue_size)
        self._writer_task: asyncio.Task[None] | None = None

    def __repr__(self) -> str:
        return f"<DeviceSession {self.device_id!r} {self.state}>"

    @property
    def accepting(self) -> bool:
        """Whether new outbound messages are still queued for this device."""
        return self.state in (SessionState.CONNECTING, SessionState.ACTIVE) and self.transport.is_open

    @property
    def pending(self) -> int:
        return self._outbound.qsize()

    def activate(self) -> None:
        """CONNECTING -> ACTIVE; starts the writer, flushing anything queued while attaching."""
        if self.state is not SessionState.CONNECTING:
            return
        self.state = SessionState.ACTIVE
        self._writer_task = asyncio.create_task(self._writer(), name=f"grokel_writer_{self.device_id}")

    def begin_close(self) -> bool:
        """Move to CLOSING. Only the first caller gets True and owns the teardown."""
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return False
        self.state = SessionState.CLOSING
        return True

    async def finish_close(self) -> None:
        """Stop the writer, discard undelivered messages and mark CLOSED."""
        if self._writer_task is not None and not self._writer_task.done():
            self._writer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer_task
        self._writer_task = None

        dropped = 0
        while not self._outbound.empty():
            self._outbound.get_nowait()
            self._outbound.task_done()
            dropped += 1
        if dropped:
            logger.debug("Discarded %d undelivered message(s)", dropped, extra={"device_id": self.device_id})
            for _ in range(dropped):
                record_outbound_dropped("session_closed")
        self.state = SessionState.CLOSED

    def deliver(self, payload: bytes | str, label: str = "SET_COLOR") -> bool:
        """Queue a message for the device. Returns False (silently) when the session is closing."""
        if not self.accepting:
            record_outbound_dropped("transport_closed")
            return False
        try:
            self._outbound.put_nowait((label, payload))
        except asyncio.QueueFull:
            logger.warning(
                "Outbound queue full, dropping %s",
                label,
                extra={"device_id": self.device_id, "queue_size": self._outbound.maxsize},
            )
            record_outbound_dropped("queue_full")
            return False
        return True

    def send_color(self, color: ColorValue) -> bool:
        """Encode ``color`` in this session's output format and queue it.

        Raises:
            InvalidArgumentError: If the color or fade duration is out of range
        """
        payload = encode_color(color, self.output_format, self.duration_ms)
        label = "SET_COLOR" if self.output_format is OutputFormat.BINARY else "JSON_COLOR"
        return self.deliver(payload, label)

    def mark_alive(self) -> None:
        self.alive = True

    async def probe(self) -> None:
        """Send a liveness probe; binary devices also get a HEARTBEAT frame."""
        if self.output_format is OutputFormat.BINARY:
            self.deliver(GrokelProtocol.encode_heartbeat(), "HEARTBEAT")
        try:
            await self.transport.ping()
        except TransportClosedError as e:
            logger.debug("Probe skipped: %s", e, extra={"device_id": self.device_id, "reason": e.reason})

    def terminate(self) -> None:
        """Drop the transport without a close handshake."""
        self.transport.terminate()

    async def drain(self, timeout: float) -> bool:
        """Wait for queued messages to be written. Returns False on timeout."""
        if self._writer_task is None:
            return self._outbound.empty()
        try:
            await asyncio.wait_for(self._outbound.join(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    async def _writer(self) -> None:
        with correlation_context(self.correlation_id, auto_generate=False):
            while True:
                label, payload = await self._outbound.get()
                try:
                    await self.transport.send(payload)
                except TransportClosedError as e:
                    logger.debug(
                        "Dropped %s, transport closed",
                        label,
                        extra={"device_id": self.device_id, "reason": e.reason},
                    )
                    record_frame_sent(label, "dropped")
                    record_outbound_dropped("transport_closed")
                except Exception:
                    logger.exception("Failed to write %s", label, extra={"device_id": self.device_id})
                    record_frame_sent(label, "error")
                else:
                    if isinstance(payload, bytes):
                        logger.debug(
                            "Sent %s",
                            GrokelProtocol.describe(payload),
                            extra={"device_id": self.device_id},
                        )
                    record_frame_sent(label, "ok")
                finally:
                    self._outbound.task_done()
