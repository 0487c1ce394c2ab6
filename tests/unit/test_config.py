"""Tests for env parsing, the shared settings object and CLI overrides."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from grokel_bridge.const import env_float, env_int
from grokel_bridge.main import build_store, parse_cli
from grokel_bridge.store import InMemoryStateStore, MQTTStateStore
from grokel_bridge.structs import BridgeEnv, GlobalObject


@pytest.fixture
def fresh_env():
    """Give GlobalObject a default BridgeEnv for the duration of a test."""
    g = GlobalObject()
    with patch.object(GlobalObject, "env", BridgeEnv()):
        yield g


class TestEnvHelpers:
    """Tests for env_int / env_float."""

    def test_env_int(self, monkeypatch) -> None:
        monkeypatch.setenv("GROKEL_TEST_INT", "42")
        assert env_int("GROKEL_TEST_INT", 7) == 42

    @pytest.mark.parametrize("raw", ["", "abc", "1.5"])
    def test_env_int_fallback(self, monkeypatch, raw) -> None:
        monkeypatch.setenv("GROKEL_TEST_INT", raw)
        assert env_int("GROKEL_TEST_INT", 7) == 7

    def test_env_int_missing(self, monkeypatch) -> None:
        monkeypatch.delenv("GROKEL_TEST_INT", raising=False)
        assert env_int("GROKEL_TEST_INT", 7) == 7

    def test_env_float(self, monkeypatch) -> None:
        monkeypatch.setenv("GROKEL_TEST_FLOAT", "0.25")
        assert env_float("GROKEL_TEST_FLOAT", 1.0) == 0.25
        monkeypatch.setenv("GROKEL_TEST_FLOAT", "soon")
        assert env_float("GROKEL_TEST_FLOAT", 1.0) == 1.0


class TestGlobalObject:
    """Tests for the settings singleton."""

    def test_singleton(self) -> None:
        assert GlobalObject() is GlobalObject()

    def test_reload_env(self, fresh_env, monkeypatch) -> None:
        monkeypatch.setenv("GROKEL_PORT", "9090")
        monkeypatch.setenv("GROKEL_SWEEP_INTERVAL", "5")
        monkeypatch.setenv("GROKEL_OUTPUT_FORMAT", "JSON")
        monkeypatch.setenv("GROKEL_STORE_BACKEND", "memory")
        monkeypatch.setenv("GROKEL_STORE_TOPIC", "/lights/")
        monkeypatch.setenv("GROKEL_METRICS_ENABLED", "yes")

        fresh_env.reload_env()

        assert fresh_env.env.srv_port == 9090
        assert fresh_env.env.sweep_interval == 5.0
        assert fresh_env.env.output_format == "json"
        assert fresh_env.env.store_backend == "memory"
        assert fresh_env.env.store_topic == "lights"
        assert fresh_env.env.metrics_enabled is True

    def test_reload_env_rejects_unknown_values(self, fresh_env, monkeypatch) -> None:
        monkeypatch.setenv("GROKEL_OUTPUT_FORMAT", "xml")
        monkeypatch.setenv("GROKEL_STORE_BACKEND", "firebase")

        fresh_env.reload_env()

        assert fresh_env.env.output_format == "binary"
        assert fresh_env.env.store_backend == "mqtt"


class TestParseCli:
    """Tests for CLI flag handling."""

    def test_flags_override_env(self, fresh_env) -> None:
        args = parse_cli(["--store", "memory", "--format", "json", "--port", "7000"])

        assert args.store == "memory"
        assert fresh_env.env.store_backend == "memory"
        assert fresh_env.env.output_format == "json"
        assert fresh_env.env.srv_port == 7000

    def test_no_flags_keep_env(self, fresh_env) -> None:
        parse_cli([])
        assert fresh_env.env.model_dump() == BridgeEnv().model_dump()

    def test_env_file_loaded(self, fresh_env, tmp_path, monkeypatch) -> None:
        monkeypatch.delenv("GROKEL_PORT", raising=False)
        env_file = tmp_path / "bridge.env"
        env_file.write_text("GROKEL_PORT=8123\n")

        parse_cli(["--env", str(env_file)])

        assert fresh_env.env.srv_port == 8123
        monkeypatch.delenv("GROKEL_PORT", raising=False)

    def test_cli_wins_over_env_file(self, fresh_env, tmp_path, monkeypatch) -> None:
        monkeypatch.delenv("GROKEL_PORT", raising=False)
        env_file = tmp_path / "bridge.env"
        env_file.write_text("GROKEL_PORT=8123\n")

        parse_cli(["--env", str(env_file), "--port", "9001"])

        assert fresh_env.env.srv_port == 9001
        monkeypatch.delenv("GROKEL_PORT", raising=False)

    def test_missing_env_file(self, fresh_env, tmp_path) -> None:
        parse_cli(["--env", str(tmp_path / "nope.env")])
        assert fresh_env.env.model_dump() == BridgeEnv().model_dump()

    def test_invalid_store_choice(self, fresh_env) -> None:
        with pytest.raises(SystemExit):
            parse_cli(["--store", "firebase"])


class TestBuildStore:
    """Tests for backend selection."""

    def test_memory_backend(self) -> None:
        assert isinstance(build_store(BridgeEnv(store_backend="memory")), InMemoryStateStore)

    def test_mqtt_backend(self) -> None:
        env = BridgeEnv(store_backend="mqtt", mqtt_host="broker", mqtt_port=1884, store_topic="lights")
        store = build_store(env)

        assert isinstance(store, MQTTStateStore)
        assert store.host == "broker"
        assert store.port == 1884
        assert store.topic_for("devices/D1/desiredState") == "lights/devices/D1/desiredState"
