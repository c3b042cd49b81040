from __future__ import annotations

import asyncio
import datetime as dt
import logging
import math
from typing import Awaitable, Callable

from .types import ensure_aware

logger = logging.getLogger(__name__)

UTC = dt.timezone.utc


def utcnow() -> dt.datetime:
    return dt.datetime.now(tz=UTC)


class DeadlineClock:
    # recomputed from started_at on every tick; fires at most once
    def __init__(
        self,
        started_at: dt.datetime,
        time_limit_minutes: int | None,
        *,
        on_timeout: Callable[[], Awaitable[None]] | None = None,
        now: Callable[[], dt.datetime] = utcnow,
        tick_s: float = 1.0,
    ) -> None:
        self.started_at = ensure_aware(started_at)
        self.time_limit_minutes = time_limit_minutes or None
        self._on_timeout = on_timeout
        self._now = now
        self.tick_s = tick_s
        self._fired = False
        self._task: asyncio.Task | None = None

    @property
    def deadline(self) -> dt.datetime | None:
        if not self.time_limit_minutes:
            return None
        return self.started_at + dt.timedelta(minutes=self.time_limit_minutes)

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def remaining(self) -> dt.timedelta | None:
        deadline = self.deadline
        if deadline is None:
            return None
        left = deadline - ensure_aware(self._now())
        if left < dt.timedelta(0):
            return dt.timedelta(0)
        return left

    def remaining_seconds(self) -> int | None:
        left = self.remaining()
        if left is None:
            return None
        return int(math.floor(left.total_seconds()))

    def expired(self) -> bool:
        left = self.remaining()
        return left is not None and left <= dt.timedelta(0)

    async def poll(self) -> bool:
        if self._fired or not self.expired():
            return False
        self._fired = True
        logger.info("deadline_reached deadline=%s", self.deadline.isoformat())
        if self._on_timeout is not None:
            await self._on_timeout()
        return True

    def start(self, *, delay: float = 0.0) -> None:
        if self.deadline is None or self._fired or self.running:
            return
        self._task = asyncio.create_task(self._run(delay))

    def stop(self) -> None:
        task = self._task
        self._task = None
        # stop() may be reached from inside the timeout callback
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _run(self, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        while not self._fired:
            if await self.poll():
                return
            await asyncio.sleep(self.tick_s)
