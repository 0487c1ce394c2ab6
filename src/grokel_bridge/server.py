"""aiohttp server: device WebSocket endpoint, health endpoint and bridge lifecycle."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from aiohttp import WSCloseCode, WSMsgType, web

from grokel_bridge.bridge import PathSpec, SubscriptionBridge, default_path_specs
from grokel_bridge.correlation import correlation_context
from grokel_bridge.logging_abstraction import get_logger
from grokel_bridge.metrics import record_frame_rejected
from grokel_bridge.protocol import GrokelProtocol, InvalidArgumentError, MalformedFrameError, OutputFormat
from grokel_bridge.sessions import DeviceSession, LivenessSweeper, SessionRegistry
from grokel_bridge.store.base import StateStore
from grokel_bridge.structs import BridgeEnv
from grokel_bridge.transport import WebSocketTransport

logger = get_logger(__name__)


class GrokelServer:
    """Accepts device WebSockets on ``/?id=<device_id>`` and wires them to the state store."""

    def __init__(
        self,
        store: StateStore,
        host: str = "0.0.0.0",
        port: int = 8080,
        sweep_interval: float = 30.0,
        detach_timeout: float = 5.0,
        close_timeout: float = 5.0,
        output_format: OutputFormat = OutputFormat.BINARY,
        duration_ms: int = 0,
        queue_size: int = 64,
        path_specs: Sequence[PathSpec] | None = None,
    ) -> None:
        self.store = store
        self.host = host
        self.port = port
        self.close_timeout = close_timeout
        self.bridge = SubscriptionBridge(store, path_specs)
        self.registry = SessionRegistry(
            self.bridge,
            detach_timeout=detach_timeout,
            output_format=output_format,
            duration_ms=duration_ms,
            queue_size=queue_size,
        )
        self.sweeper = LivenessSweeper(self.registry, interval=sweep_interval)
        self.app = self.build_app()
        self.runner: web.AppRunner | None = None
        self.running = False

    @classmethod
    def from_env(cls, env: BridgeEnv, store: StateStore) -> GrokelServer:
        return cls(
            store,
            host=env.srv_host,
            port=env.srv_port,
            sweep_interval=env.sweep_interval,
            detach_timeout=env.detach_timeout,
            close_timeout=env.close_timeout,
            output_format=OutputFormat.parse(env.output_format, OutputFormat.BINARY),
            duration_ms=env.fade_duration_ms,
            queue_size=env.outbound_queue_size,
            path_specs=default_path_specs(env.desired_state_path, env.preview_path),
        )

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self.handle_root)
        app.router.add_get("/health", self.handle_health)
        return app

    def health_payload(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "connections": len(self.registry),
            "timestamp": datetime.now(UTC).isoformat(),
        }

    async def handle_health(self, _request: web.Request) -> web.Response:
        """Handle GET /health - process-wide status."""
        return web.json_response(self.health_payload())

    async def handle_root(self, request: web.Request) -> web.StreamResponse:
        """Handle GET / - WebSocket upgrade for devices, health JSON for anything else."""
        ws = web.WebSocketResponse(autoping=False)
        if not ws.can_prepare(request).ok:
            return await self.handle_health(request)
        with correlation_context():
            return await self.handle_device(request, ws)

    async def handle_device(self, request: web.Request, ws: web.WebSocketResponse) -> web.WebSocketResponse:
        device_id = request.query.get("id", "").strip()
        output_format = OutputFormat.parse(request.query.get("format"), self.registry.output_format)
        await ws.prepare(request)
        transport = WebSocketTransport(device_id, ws, request, io_timeout=self.close_timeout)

        try:
            session = await self.registry.connect(device_id, transport, output_format)
        except InvalidArgumentError as e:
            logger.warning(
                "Rejecting connection without a device id",
                extra={"peer": request.remote, "reason": e.reason},
            )
            await transport.close(code=WSCloseCode.POLICY_VIOLATION, message=b"missing device id")
            return ws
        except Exception:
            await transport.close(code=WSCloseCode.INTERNAL_ERROR, message=b"session setup failed")
            return ws

        try:
            await self._receive_loop(ws, session)
        finally:
            await asyncio.shield(self.registry.disconnect(device_id, session, reason="transport_closed"))
        return ws

    async def _receive_loop(self, ws: web.WebSocketResponse, session: DeviceSession) -> None:
        async for msg in ws:
            if msg.type == WSMsgType.PONG:
                self.registry.mark_alive(session.device_id, session)
            elif msg.type == WSMsgType.PING:
                await ws.pong(msg.data)
            elif msg.type == WSMsgType.BINARY:
                self._handle_device_frame(session, msg.data)
            elif msg.type == WSMsgType.TEXT:
                logger.debug(
                    "Text message from device ignored",
                    extra={"device_id": session.device_id, "length": len(msg.data)},
                )
            elif msg.type == WSMsgType.ERROR:
                logger.warning(
                    "WebSocket error: %s",
                    ws.exception(),
                    extra={"device_id": session.device_id},
                )
                break

    def _handle_device_frame(self, session: DeviceSession, data: bytes) -> None:
        try:
            GrokelProtocol.decode_packet(data)
        except MalformedFrameError as e:
            record_frame_rejected(e.reason)
            logger.warning(
                "Discarding malformed frame from device",
                extra={"device_id": session.device_id, "reason": e.reason, "preview": e.data_preview.hex()},
            )
            return
        logger.debug(
            "Frame from device: %s",
            GrokelProtocol.describe(data),
            extra={"device_id": session.device_id},
        )

    async def start(self) -> None:
        """Start the store, the HTTP listener and the liveness sweeper."""
        await self.store.start()
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.host, self.port)
        try:
            await site.start()
        except OSError as e:
            logger.exception("Failed to start server", extra={"host": self.host, "port": self.port, "error": str(e)})
            await self.runner.cleanup()
            self.runner = None
            raise
        await self.sweeper.start()
        self.running = True
        logger.info(
            "Grokel bridge listening",
            extra={"host": self.host, "port": self.port, "sweep_interval": self.sweeper.interval},
        )

    async def stop(self) -> None:
        """Stop sweeping, close every session (OFFLINE first for binary devices), then the listener and store."""
        self.running = False
        try:
            await self.sweeper.stop()
            await self.registry.close_all(reason="shutdown")
            if self.runner is not None:
                await self.runner.cleanup()
                self.runner = None
        except asyncio.CancelledError as ce:
            logger.debug("Server stop cancelled", extra={"reason": str(ce)})
            raise
        except Exception as e:
            logger.exception("Error during server shutdown", extra={"error": str(e)})
        else:
            logger.info("Server stopped successfully")
        finally:
            await self.store.stop()
