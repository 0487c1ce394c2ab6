"""Registry of live device sessions keyed by device identifier."""

from __future__ import annotations

import asyncio
import itertools
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from grokel_bridge.correlation import ensure_correlation_id
from grokel_bridge.instrumentation import timed_async
from grokel_bridge.logging_abstraction import get_logger
from grokel_bridge.metrics import (
    record_lock_hold,
    record_session_connect,
    record_session_disconnect,
    record_session_evicted,
    record_session_replaced,
    record_sessions_active,
    record_sweep_duration,
)
from grokel_bridge.protocol import GrokelProtocol, InvalidArgumentError, OutputFormat
from grokel_bridge.sessions.session import DeviceSession, SessionState
from grokel_bridge.transport.types import DeviceTransport

if TYPE_CHECKING:
    from grokel_bridge.bridge import SubscriptionBridge

logger = get_logger(__name__)

# Lock hold time thresholds (seconds)
_LOCK_HOLD_CRITICAL_THRESHOLD = 0.1
_LOCK_HOLD_WARNING_THRESHOLD = 0.01


class SessionRegistry:
    """Owns every :class:`DeviceSession` from creation to teardown.

    **Concurrency**: the id -> session map is only mutated under ``_lock``.
    Network I/O (subscription attach/detach, transport close, probes) always
    happens with the lock released. Teardown is claimed through
    :meth:`DeviceSession.begin_close`, so when a transport close and a sweeper
    eviction race for the same session exactly one of them performs it.

    **Replace on reconnect**: every connect claims a generation for its id
    before attaching. Only the latest claim may take the map slot, so when two
    connects for one id overlap, the one called last wins no matter whose
    attach finishes first. The session it displaces is torn down in a
    background task so the new device's receive loop starts right away.
    """

    def __init__(
        self,
        bridge: SubscriptionBridge,
        detach_timeout: float = 5.0,
        output_format: OutputFormat = OutputFormat.BINARY,
        duration_ms: int = 0,
        queue_size: int = 64,
    ) -> None:
        self.bridge = bridge
        self.detach_timeout = detach_timeout
        self.output_format = output_format
        self.duration_ms = duration_ms
        self.queue_size = queue_size
        self._sessions: dict[str, DeviceSession] = {}
        self._lock = asyncio.Lock()
        self._generations = itertools.count(1)
        # device id -> generation of the most recent connect for it
        self._claims: dict[str, int] = {}
        self._teardowns: set[asyncio.Task[None]] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._sessions

    @asynccontextmanager
    async def _locked(self, operation: str) -> AsyncIterator[None]:
        async with self._lock:
            lock_start = time.perf_counter()
            try:
                yield
            finally:
                lock_duration = time.perf_counter() - lock_start
                record_lock_hold(lock_duration)
                if lock_duration > _LOCK_HOLD_CRITICAL_THRESHOLD:
                    logger.error(
                        "Registry lock held for %.3fs during %s (deadlock risk)",
                        lock_duration,
                        operation,
                        extra={"operation": operation, "lock_seconds": round(lock_duration, 4)},
                    )
                elif lock_duration > _LOCK_HOLD_WARNING_THRESHOLD:
                    logger.warning(
                        "Registry lock held for %.3fs during %s (investigate bottleneck)",
                        lock_duration,
                        operation,
                        extra={"operation": operation, "lock_seconds": round(lock_duration, 4)},
                    )

    async def connect(
        self,
        device_id: str,
        transport: DeviceTransport,
        output_format: OutputFormat | None = None,
    ) -> DeviceSession:
        """Register a new session for ``device_id`` and attach its subscriptions.

        Any session already registered under the id is replaced and torn down
        in the background. The returned session is ACTIVE, unless a newer
        connect for the same id started while this one was attaching; then it
        is torn down here and returned CLOSED.

        Raises:
            InvalidArgumentError: If ``device_id`` is empty; nothing is registered
                and the caller must close the transport
        """
        if not device_id:
            record_session_connect("rejected")
            raise InvalidArgumentError("empty_device_id", device_id)

        # No await between claiming and building the session.
        generation = next(self._generations)
        self._claims[device_id] = generation

        session = DeviceSession(
            device_id,
            transport,
            output_format=output_format or self.output_format,
            duration_ms=self.duration_ms,
            queue_size=self.queue_size,
            correlation_id=ensure_correlation_id(),
            generation=generation,
        )
        try:
            # Attach may queue the restore message; it is written once the session is ACTIVE.
            await self.bridge.attach(session)
        except asyncio.CancelledError:
            self._release_claim(session)
            session.begin_close()
            await asyncio.shield(self._teardown(session))
            raise
        except Exception:
            logger.exception("Subscription attach failed", extra={"device_id": device_id})
            record_session_connect("attach_failed")
            self._release_claim(session)
            session.begin_close()
            await self._teardown(session)
            raise

        previous: DeviceSession | None = None
        async with self._locked("connect"):
            superseded = self._claims.get(device_id) != generation
            if not superseded:
                previous = self._sessions.get(device_id)
                self._sessions[device_id] = session
                session.activate()
            count = len(self._sessions)

        if superseded:
            record_session_connect("superseded")
            logger.info(
                "Newer connection for device arrived during attach, dropping this one",
                extra={"device_id": device_id, "generation": generation},
            )
            session.begin_close()
            await self._teardown(session)
            return session

        record_sessions_active(count)
        record_session_connect("ok")

        logger.info(
            "Device connected",
            extra={
                "device_id": device_id,
                "peer": transport.peer,
                "format": str(session.output_format),
                "subscriptions": sorted(session.handles),
                "sessions": count,
            },
        )

        if previous is not None and previous.begin_close():
            record_session_replaced()
            logger.info(
                "Replacing stale session for reconnecting device",
                extra={"device_id": device_id, "previous_generation": previous.generation},
            )
            task = asyncio.create_task(
                self._finish_disconnect(device_id, previous, "replaced"),
                name=f"grokel_replace_{device_id}",
            )
            self._teardowns.add(task)
            task.add_done_callback(self._teardowns.discard)

        return session

    def _release_claim(self, session: DeviceSession) -> None:
        if self._claims.get(session.device_id) == session.generation:
            del self._claims[session.device_id]

    async def settle(self) -> None:
        """Wait for background teardowns of replaced sessions."""
        while self._teardowns:
            await asyncio.gather(*self._teardowns, return_exceptions=True)

    def lookup(self, device_id: str) -> DeviceSession | None:
        """Return the ACTIVE session for ``device_id``, if any."""
        session = self._sessions.get(device_id)
        if session is None or session.state is not SessionState.ACTIVE:
            return None
        return session

    async def disconnect(
        self,
        device_id: str,
        session: DeviceSession | None = None,
        reason: str = "closed",
    ) -> bool:
        """Tear down a session: detach subscriptions, close the transport, drop the map entry.

        Passing ``session`` pins the teardown to that exact session, so a late
        close event from a replaced connection never removes its successor.
        Idempotent; returns True only for the call that performed the teardown.
        """
        target = session if session is not None else self._sessions.get(device_id)
        if target is None or not target.begin_close():
            logger.debug("Disconnect no-op, already closing or absent", extra={"device_id": device_id, "reason": reason})
            return False
        await self._finish_disconnect(device_id, target, reason)
        return True

    async def _finish_disconnect(self, device_id: str, target: DeviceSession, reason: str) -> None:
        """Teardown for a session whose :meth:`DeviceSession.begin_close` this caller won."""
        try:
            await self._teardown(target)
        finally:
            async with self._locked("disconnect"):
                if self._sessions.get(device_id) is target:
                    del self._sessions[device_id]
                    self._release_claim(target)
                count = len(self._sessions)
            record_sessions_active(count)
            record_session_disconnect(reason)

        logger.info(
            "Device disconnected",
            extra={
                "device_id": device_id,
                "reason": reason,
                "connected_for_s": round(time.time() - target.connected_at, 1),
                "sessions": count,
            },
        )

    async def _teardown(self, session: DeviceSession) -> None:
        """CLOSING -> CLOSED: detach handles first, then stop writes and close the transport."""
        await self.bridge.detach(session, self.detach_timeout)
        await session.finish_close()
        await session.transport.close()

    def mark_alive(self, device_id: str, session: DeviceSession | None = None) -> None:
        """Record a liveness acknowledgment for ``device_id``.

        With ``session`` given, the ack only counts if that session still owns
        the id; a pong from a replaced socket never credits its successor.
        """
        current = self.lookup(device_id)
        if current is None or (session is not None and current is not session):
            return
        current.mark_alive()

    @timed_async("liveness_sweep")
    async def sweep(self) -> list[str]:
        """One liveness pass over every session.

        Sessions that did not acknowledge the previous probe are terminated and
        evicted; the rest are flagged not-alive and probed again.

        Returns:
            Device ids evicted in this pass
        """
        start = time.perf_counter()
        async with self._locked("sweep_snapshot"):
            sessions = list(self._sessions.values())

        results = await asyncio.gather(*(self._sweep_one(s) for s in sessions), return_exceptions=True)

        evicted: list[str] = []
        for session, result in zip(sessions, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Liveness check failed: %s",
                    result,
                    extra={"device_id": session.device_id, "error": type(result).__name__},
                )
            elif result:
                evicted.append(session.device_id)
        record_sweep_duration(time.perf_counter() - start)

        if evicted:
            logger.info("Liveness sweep evicted %d session(s)", len(evicted), extra={"evicted": evicted})
        return evicted

    async def _sweep_one(self, session: DeviceSession) -> bool:
        if session.state is not SessionState.ACTIVE:
            return False
        if not session.alive:
            logger.warning("Device unresponsive, terminating", extra={"device_id": session.device_id})
            session.terminate()
            evicted = await self.disconnect(session.device_id, session, reason="unresponsive")
            if evicted:
                record_session_evicted()
            return evicted
        session.alive = False
        await session.probe()
        return False

    async def close_all(self, reason: str = "shutdown", drain_timeout: float = 1.0) -> None:
        """Disconnect every session; binary devices are sent OFFLINE first."""
        async with self._locked("close_all"):
            sessions = list(self._sessions.values())
        if not sessions:
            await self.settle()
            return

        logger.info("Closing %d session(s)", len(sessions), extra={"reason": reason})
        offline = GrokelProtocol.encode_offline()

        async def _close(session: DeviceSession) -> None:
            if session.output_format is OutputFormat.BINARY and session.deliver(offline, "OFFLINE"):
                await session.drain(drain_timeout)
            await self.disconnect(session.device_id, session, reason=reason)

        results = await asyncio.gather(*(_close(s) for s in sessions), return_exceptions=True)
        for session, result in zip(sessions, results, strict=True):
            if isinstance(result, Exception):
                logger.error(
                    "Failed to close session: %s",
                    result,
                    extra={"device_id": session.device_id},
                )
        await self.settle()
