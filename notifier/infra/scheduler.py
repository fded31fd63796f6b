# notifier/infra/scheduler.py
"""
Fixed-rate driver for the subscription processor.

Runs ``processor.tick()`` once per period inside a single asyncio task. Each
tick is awaited before the next is scheduled; periods a slow tick overran are
skipped rather than made up.
"""
from __future__ import annotations

import asyncio
import math
import time
from typing import Awaitable, Callable

from notifier.infra.logging_config import get_logger
from notifier.infra.metrics import inc_counter

logger = get_logger(__name__)


class DispatchScheduler:
    """
    Usage:
        scheduler = DispatchScheduler(processor.tick, interval=60.0)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        tick: Callable[[], Awaitable[object]],
        *,
        interval: float = 60.0,
        initial_delay: float = 0.0,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._tick = tick
        self._interval = interval
        self._initial_delay = initial_delay
        self._task: asyncio.Task | None = None
        self._running = False
        self._ticks = 0
        self._skipped_periods = 0

    @property
    def running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def skipped_periods(self) -> int:
        return self._skipped_periods

    async def start(self) -> None:
        """Start the tick loop as an asyncio task."""
        if self.running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="dispatch_scheduler")
        self._task.add_done_callback(self._on_task_done)
        logger.info(f"Dispatch scheduler started: interval={self._interval}s")

    async def stop(self) -> None:
        """Stop the loop; a tick in progress is cancelled."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Dispatch scheduler stopped")

    async def _loop(self) -> None:
        if self._initial_delay > 0:
            await asyncio.sleep(self._initial_delay)

        next_at = time.monotonic()
        while self._running:
            try:
                self._ticks += 1
                await self._tick()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"Dispatch tick raised: {exc}", exc_info=True)
                inc_counter("dispatch_scheduler_errors")

            next_at += self._interval
            now = time.monotonic()
            if now > next_at:
                missed = math.ceil((now - next_at) / self._interval)
                next_at += missed * self._interval
                self._skipped_periods += missed
                inc_counter("dispatch_periods_skipped", missed)
                logger.warning(f"Dispatch tick overran its period, skipping {missed} period(s)")

            await asyncio.sleep(max(0.0, next_at - now))

    @staticmethod
    def _on_task_done(task: asyncio.Task) -> None:
        """Log unexpected scheduler death."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error(
                f"Dispatch scheduler task died unexpectedly: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
