"""aiohttp WebSocket device transport with bounded I/O."""

from __future__ import annotations

import asyncio
import logging

from aiohttp import WSCloseCode, web

from grokel_bridge.transport.exceptions import TransportClosedError

logger = logging.getLogger(__name__)


class WebSocketTransport:
    """Device transport over an aiohttp server-side WebSocket."""

    def __init__(
        self,
        device_id: str,
        ws: web.WebSocketResponse,
        request: web.BaseRequest,
        io_timeout: float = 5.0,
    ):
        """
        Wrap a prepared WebSocket.

        Args:
            device_id: Device the socket belongs to (for errors and logs)
            ws: Prepared WebSocket response
            request: The upgrade request, used to reach the raw socket on terminate
            io_timeout: Bound on each send, ping and close
        """
        self.device_id = device_id
        self.io_timeout = io_timeout
        self._ws = ws
        self._request = request
        self._terminated = False

    @property
    def is_open(self) -> bool:
        return not (self._terminated or self._ws.closed)

    @property
    def peer(self) -> str | None:
        return self._request.remote

    async def send(self, payload: bytes | str) -> None:
        if not self.is_open:
            raise TransportClosedError(self.device_id)
        try:
            if isinstance(payload, str):
                await asyncio.wait_for(self._ws.send_str(payload), timeout=self.io_timeout)
            else:
                await asyncio.wait_for(self._ws.send_bytes(payload), timeout=self.io_timeout)
        except TimeoutError as e:
            raise TransportClosedError(self.device_id, "write_timeout") from e
        except ConnectionError as e:
            raise TransportClosedError(self.device_id, "connection_reset") from e

    async def ping(self) -> None:
        if not self.is_open:
            raise TransportClosedError(self.device_id)
        try:
            await asyncio.wait_for(self._ws.ping(), timeout=self.io_timeout)
        except TimeoutError as e:
            raise TransportClosedError(self.device_id, "ping_timeout") from e
        except ConnectionError as e:
            raise TransportClosedError(self.device_id, "connection_reset") from e

    async def close(self, code: int = WSCloseCode.GOING_AWAY, message: bytes = b"") -> None:
        """Close the socket, aborting it if the close handshake does not finish in time."""
        if self._ws.closed:
            return
        try:
            await asyncio.wait_for(self._ws.close(code=code, message=message), timeout=self.io_timeout)
        except TimeoutError:
            logger.warning(
                "WebSocket close for %s timed out after %.1fs, aborting",
                self.device_id,
                self.io_timeout,
                extra={"device_id": self.device_id, "timeout": self.io_timeout},
            )
            self.terminate()
        except ConnectionError as e:
            logger.debug(
                "WebSocket close for %s failed: %s",
                self.device_id,
                e,
                extra={"device_id": self.device_id},
            )

    def terminate(self) -> None:
        """Abort the underlying socket; the handler's receive loop then ends."""
        self._terminated = True
        transport = self._request.transport
        if transport is not None and not transport.is_closing():
            transport.abort()
        logger.debug("Terminated transport for %s", self.device_id, extra={"device_id": self.device_id})
