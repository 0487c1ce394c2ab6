from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

import dotenv
import uvloop

from grokel_bridge.const import GROKEL_DEBUG, GROKEL_LOG_NAME, GROKEL_VERSION, LOG_FORMATTER, SERVER_START_TASK_NAME
from grokel_bridge.correlation import correlation_context
from grokel_bridge.logging_abstraction import get_logger
from grokel_bridge.metrics import start_metrics_server
from grokel_bridge.server import GrokelServer
from grokel_bridge.store import InMemoryStateStore, MQTTStateStore, StateStore
from grokel_bridge.structs import BridgeEnv, GlobalObject

logger = get_logger(__name__)
# Package-level handlers for modules that log through plain ``logging`` (protocol, transport).
pkg_logger = get_logger(GROKEL_LOG_NAME)

# Third-party loggers get their own handler so aiohttp access lines stay readable
_tp_handler = logging.StreamHandler(sys.stdout)
_tp_handler.setFormatter(LOG_FORMATTER)
for _name, _level in (("aiohttp.access", logging.WARNING), ("aiohttp.server", logging.INFO), ("aiomqtt", logging.ERROR)):
    _tp_logger = logging.getLogger(_name)
    _tp_logger.setLevel(_level)
    _tp_logger.propagate = False
    _tp_logger.addHandler(_tp_handler)

g = GlobalObject()


def build_store(env: BridgeEnv) -> StateStore:
    if env.store_backend == "memory":
        logger.warning("Using in-memory state store; nothing is persisted or shared")
        return InMemoryStateStore()
    return MQTTStateStore(
        host=env.mqtt_host,
        port=env.mqtt_port,
        username=env.mqtt_user,
        password=env.mqtt_pass,
        topic_prefix=env.store_topic,
        conn_delay=env.mqtt_conn_delay,
        sync_timeout=env.store_sync_timeout,
    )


def _enable_debug() -> None:
    for name, candidate in list(logging.root.manager.loggerDict.items()):
        if name.startswith(GROKEL_LOG_NAME) and isinstance(candidate, logging.Logger):
            candidate.setLevel(logging.DEBUG)
            for handler in candidate.handlers:
                handler.setLevel(logging.DEBUG)
    logger.set_level(logging.DEBUG)


def parse_cli(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Grokel bridge: state store to light controller relay")
    parser.add_argument("-D", "--debug", action="store_true", help="Enable debug mode")
    parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    parser.add_argument("--store", choices=("mqtt", "memory"), default=None, help="State store backend")
    parser.add_argument(
        "--format",
        choices=("binary", "json"),
        default=None,
        dest="output_format",
        help="Default outbound message format",
    )
    parser.add_argument("--port", type=int, default=None, help="Listen port")
    g.cli_args = args = parser.parse_args(argv)

    if args.debug:
        _enable_debug()
        logger.info("Debug mode enabled via CLI argument")

    if args.env:
        env_path = args.env.expanduser().resolve()
        if not env_path.exists():
            logger.error("Environment file not found", extra={"path": str(env_path)})
        elif dotenv.load_dotenv(env_path, override=True):
            logger.info("Environment variables loaded", extra={"source": str(env_path)})
            g.reload_env()
        else:
            logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})

    # CLI flags win over the environment
    if args.store:
        g.env.store_backend = args.store
    if args.output_format:
        g.env.output_format = args.output_format
    if args.port:
        g.env.srv_port = args.port
    return args


def signal_handler(signum: int) -> None:
    logger.info("Intercepted signal: %s (%s)", signal.Signals(signum).name, signum)
    for task in g.tasks:
        if not task.done():
            task.cancel()


async def run() -> None:
    """Start the bridge and serve until cancelled by a signal."""
    g.loop = loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler, sig)

    if g.env.metrics_enabled:
        start_metrics_server(g.env.metrics_port)
        logger.info("Prometheus metrics exporter started", extra={"port": g.env.metrics_port})

    g.store = build_store(g.env)
    g.server = server = GrokelServer.from_env(g.env, g.store)
    await server.start()
    serve_task = asyncio.create_task(asyncio.Event().wait(), name=SERVER_START_TASK_NAME)
    g.tasks.append(serve_task)
    try:
        await serve_task
    except asyncio.CancelledError:
        logger.info("Shutdown requested")
    finally:
        await server.stop()


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the Grokel bridge."""
    with correlation_context():
        logger.info("Starting Grokel bridge", extra={"version": GROKEL_VERSION})

        parse_cli(argv)

        if GROKEL_DEBUG:
            logger.info("Debug logging enabled via configuration")
            _enable_debug()

        try:
            uvloop.run(run())
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
        except Exception as e:
            logger.exception("Fatal error in main loop", extra={"error": str(e)})
            sys.exit(1)
        finally:
            logger.info("Grokel bridge shutdown complete")


if __name__ == "__main__":
    main()
