from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[None]]


class CountdownTimer:
    """Periodic tick source for one playing session.

    ``on_tick`` is awaited once per ``interval`` seconds until ``stop()`` is
    called. Stopping from inside ``on_tick`` ends the loop after the current
    callback returns instead of cancelling it mid-flight.
    """

    def __init__(self, interval: float, on_tick: TickCallback):
        self.interval = interval
        self._on_tick = on_tick
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    def stop(self):
        task, self._task = self._task, None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()

    async def _run(self):
        me = asyncio.current_task()
        try:
            while self._task is me:
                await asyncio.sleep(self.interval)
                if self._task is not me:
                    break
                try:
                    await self._on_tick()
                except Exception:
                    logger.exception("tick callback failed")
        except asyncio.CancelledError:
            logger.debug("countdown timer cancelled")
            raise
