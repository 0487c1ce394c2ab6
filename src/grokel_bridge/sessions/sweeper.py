"""Periodic liveness sweep over all registered sessions."""

from __future__ import annotations

import asyncio
import contextlib

from grokel_bridge.const import SWEEPER_TASK_NAME
from grokel_bridge.logging_abstraction import get_logger
from grokel_bridge.sessions.registry import SessionRegistry

logger = get_logger(__name__)


class LivenessSweeper:
    """Runs :meth:`SessionRegistry.sweep` every ``interval`` seconds.

    A device that stops answering probes is evicted on the second sweep after
    its last acknowledgment: no sooner than one interval, no later than two.
    """

    def __init__(self, registry: SessionRegistry, interval: float = 30.0) -> None:
        self.registry = registry
        self.interval = interval
        self.running = False
        self.task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self.task is not None and not self.task.done():
            return
        self.running = True
        self.task = asyncio.create_task(self.run(), name=SWEEPER_TASK_NAME)

    async def stop(self) -> None:
        self.running = False
        if self.task is not None and not self.task.done():
            self.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self.task
        self.task = None

    async def sweep_once(self) -> list[str]:
        return await self.registry.sweep()

    async def run(self) -> None:
        logger.info("Starting liveness sweeper (every %.0f seconds)", self.interval, extra={"interval": self.interval})

        while self.running:
            try:
                await asyncio.sleep(self.interval)

                if not self.running:
                    break

                evicted = await self.sweep_once()
                logger.debug(
                    "Liveness sweep complete",
                    extra={"sessions": len(self.registry), "evicted": len(evicted)},
                )

            except asyncio.CancelledError:
                logger.info("Liveness sweeper cancelled")
                break
            except Exception as e:
                logger.exception("Error in liveness sweep", extra={"error": str(e)})
