"""Tests for GrokelServer over a real aiohttp WebSocket."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import pytest
from aiohttp import WSCloseCode, WSMsgType
from aiohttp.test_utils import TestClient, TestServer
from prometheus_client import REGISTRY

from grokel_bridge.protocol import GrokelProtocol
from grokel_bridge.server import GrokelServer
from grokel_bridge.store import InMemoryStateStore
from grokel_bridge.structs import BridgeEnv
from tests.helpers.fakes import DESIRED_D1, PREVIEW_D1, wait_for_condition

RED_FRAME = GrokelProtocol.encode_set_color(255, 0, 0)
GREEN_FRAME = GrokelProtocol.encode_set_color(0, 255, 0)


@asynccontextmanager
async def serve(server: GrokelServer) -> AsyncIterator[TestClient]:
    """Run the server's app on an ephemeral port without the sweeper."""
    client = TestClient(TestServer(server.app))
    await client.start_server()
    try:
        yield client
    finally:
        await client.close()


def make_server(**kwargs) -> tuple[GrokelServer, InMemoryStateStore]:
    store = InMemoryStateStore()
    kwargs.setdefault("detach_timeout", 0.1)
    kwargs.setdefault("close_timeout", 0.5)
    return GrokelServer(store, **kwargs), store


class TestHealth:
    """Tests for the HTTP side of the server."""

    @pytest.mark.asyncio
    async def test_health_endpoint(self) -> None:
        """Test /health reports status and connection count."""
        server, _ = make_server()
        async with serve(server) as client:
            resp = await client.get("/health")
            body = await resp.json()

        assert resp.status == 200
        assert body["status"] == "ok"
        assert body["connections"] == 0
        assert "timestamp" in body

    @pytest.mark.asyncio
    async def test_root_without_upgrade_returns_health(self) -> None:
        """Test a plain GET on / is answered with the health payload."""
        server, _ = make_server()
        async with serve(server) as client:
            resp = await client.get("/")
            body = await resp.json()

        assert resp.status == 200
        assert body["status"] == "ok"

    @pytest.mark.asyncio
    async def test_health_counts_connections(self) -> None:
        """Test connected devices show up in the health payload."""
        server, _ = make_server()
        async with serve(server) as client:
            ws = await client.ws_connect("/?id=D1")
            assert await wait_for_condition(lambda: len(server.registry) == 1)
            body = await (await client.get("/health")).json()
            await ws.close()

        assert body["connections"] == 1


class TestDeviceSocket:
    """Tests for the device WebSocket endpoint."""

    @pytest.mark.asyncio
    async def test_restore_update_and_close(self) -> None:
        """Test stored state on connect, a live update, then cleanup on close."""
        server, store = make_server()
        store.set(DESIRED_D1, {"color": {"r": 255, "g": 0, "b": 0}})

        async with serve(server) as client:
            ws = await client.ws_connect("/?id=D1")
            assert await ws.receive_bytes(timeout=1.0) == RED_FRAME

            store.set(DESIRED_D1, {"color": {"r": 0, "g": 255, "b": 0}})
            assert await ws.receive_bytes(timeout=1.0) == GREEN_FRAME

            await ws.close()
            assert await wait_for_condition(lambda: len(server.registry) == 0)

        assert store.listener_count() == 0

    @pytest.mark.asyncio
    async def test_json_format_query(self) -> None:
        """Test ``format=json`` switches the connection to text envelopes."""
        server, store = make_server()

        async with serve(server) as client:
            ws = await client.ws_connect("/?id=D1&format=json")
            assert await wait_for_condition(lambda: server.registry.lookup("D1") is not None)

            store.set(PREVIEW_D1, {"r": 0, "g": 0, "b": 255})
            message = await ws.receive_json(timeout=1.0)
            await ws.close()

        assert message == {"type": "color", "data": {"r": 0, "g": 0, "b": 255}}

    @pytest.mark.asyncio
    async def test_missing_id_is_rejected(self) -> None:
        """Test a connection without ``id`` is closed with a policy violation."""
        server, store = make_server()

        async with serve(server) as client:
            ws = await client.ws_connect("/")
            msg = await ws.receive(timeout=1.0)

            assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSED)
            assert ws.close_code == WSCloseCode.POLICY_VIOLATION

        assert len(server.registry) == 0
        assert store.listener_count() == 0

    @pytest.mark.asyncio
    async def test_reconnect_replaces_old_socket(self) -> None:
        """Test a second connection for the same id closes the first."""
        server, store = make_server()

        async with serve(server) as client:
            first = await client.ws_connect("/?id=D1")
            assert await wait_for_condition(lambda: server.registry.lookup("D1") is not None)
            original = server.registry.lookup("D1")

            second = await client.ws_connect("/?id=D1")
            msg = await first.receive(timeout=1.0)
            assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSED)
            assert await wait_for_condition(lambda: server.registry.lookup("D1") not in (None, original))

            store.set(PREVIEW_D1, {"r": 0, "g": 255, "b": 0})
            assert await second.receive_bytes(timeout=1.0) == GREEN_FRAME
            await second.close()

        assert store.listener_count() == 0

    @pytest.mark.asyncio
    async def test_pong_marks_alive(self) -> None:
        """Test a probe answered with a pong keeps the device alive across sweeps."""
        server, _ = make_server()

        async with serve(server) as client:
            ws = await client.ws_connect("/?id=D1", autoping=False)
            assert await wait_for_condition(lambda: server.registry.lookup("D1") is not None)
            session = server.registry.lookup("D1")

            await server.registry.sweep()
            assert session.alive is False

            received = {(await ws.receive(timeout=1.0)).type for _ in range(2)}
            assert received == {WSMsgType.BINARY, WSMsgType.PING}
            await ws.pong()

            assert await wait_for_condition(lambda: session.alive)
            assert await server.registry.sweep() == []
            assert server.registry.lookup("D1") is session
            await ws.close()

    @pytest.mark.asyncio
    async def test_malformed_frame_counted(self) -> None:
        """Test a bad inbound frame is discarded and counted; the socket stays up."""
        server, _ = make_server()
        labels = {"reason": "wrong_length"}
        before = REGISTRY.get_sample_value("grokel_frame_rejected_total", labels) or 0.0

        async with serve(server) as client:
            ws = await client.ws_connect("/?id=D1")
            await ws.send_bytes(b"\x01\x02\x03")
            assert await wait_for_condition(
                lambda: (REGISTRY.get_sample_value("grokel_frame_rejected_total", labels) or 0.0) > before
            )
            assert server.registry.lookup("D1") is not None
            await ws.close()

    @pytest.mark.asyncio
    async def test_close_all_sends_offline(self) -> None:
        """Test shutdown sends OFFLINE to binary devices before closing."""
        server, _ = make_server()

        async with serve(server) as client:
            ws = await client.ws_connect("/?id=D1")
            assert await wait_for_condition(lambda: server.registry.lookup("D1") is not None)

            close_task = asyncio.create_task(server.registry.close_all())
            assert await ws.receive_bytes(timeout=1.0) == GrokelProtocol.encode_offline()
            msg = await ws.receive(timeout=1.0)
            await close_task

        assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSED)
        assert len(server.registry) == 0


class TestLifecycle:
    """Tests for start/stop and construction from settings."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        """Test the listener, sweeper and store come up and go down together."""
        server, _ = make_server(host="127.0.0.1", port=0, sweep_interval=60.0)

        await server.start()
        try:
            assert server.running is True
            assert server.runner is not None
            assert server.sweeper.task is not None
        finally:
            await server.stop()

        assert server.running is False
        assert server.runner is None
        assert server.sweeper.task is None

    def test_from_env(self) -> None:
        """Test settings map onto the server and its components."""
        env = BridgeEnv(
            srv_host="127.0.0.1",
            srv_port=9999,
            sweep_interval=12.0,
            detach_timeout=1.5,
            output_format="json",
            fade_duration_ms=250,
            outbound_queue_size=8,
            desired_state_path="want/{device_id}",
            preview_path="peek/{device_id}",
        )
        server = GrokelServer.from_env(env, InMemoryStateStore())

        assert (server.host, server.port) == ("127.0.0.1", 9999)
        assert server.sweeper.interval == 12.0
        assert server.registry.detach_timeout == 1.5
        assert server.registry.output_format == "json"
        assert server.registry.duration_ms == 250
        assert server.registry.queue_size == 8
        assert [spec.path_for("D1") for spec in server.bridge.specs] == ["want/D1", "peek/D1"]
