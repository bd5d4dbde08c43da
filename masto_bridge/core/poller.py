"""
Periodic Mastodon notification digest.

The loop awaits a full cycle (fetch + send) before it starts the next wait,
so a slow homeserver or Mastodon instance delays the following tick instead
of stacking overlapping ones.
"""

import asyncio
import logging
from typing import Optional

from masto_bridge.core.router import BridgeRouter
from masto_bridge.core.types import RelayResult

logger = logging.getLogger(__name__)


class NotificationPoller:
    def __init__(self, router: BridgeRouter, interval: float, initial_delay: Optional[float] = None):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.router = router
        self.interval = interval
        self.initial_delay = interval if initial_delay is None else initial_delay
        self.ticks = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Optional[RelayResult]:
        self.ticks += 1
        logger.debug("Polling Mastodon notifications", extra={"tick": self.ticks})
        try:
            return await self.router.poll_tick()
        except Exception as e:
            logger.error("Notification poll failed", extra={"error": str(e)}, exc_info=True)
            return None

    async def _run(self) -> None:
        logger.info(f"Starting notification poller with interval: {self.interval}s")
        await asyncio.sleep(self.initial_delay)
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Notification poller stopped", extra={"ticks": self.ticks})
