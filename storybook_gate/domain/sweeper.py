from __future__ import annotations

import asyncio

from .admission import AdmissionLimiter
from .clock import SYSTEM_CLOCK, Clock


class PeriodicSweeper:
    """Drive `AdmissionLimiter.cleanup()` on a fixed cadence.

    Started and closed by whoever composes the process; the limiter itself
    never schedules anything.
    """

    def __init__(
        self,
        *,
        limiter: AdmissionLimiter,
        interval_s: float,
        logger,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self._limiter = limiter
        self._interval_s = max(0.001, float(interval_s))
        self._logger = logger
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name="admission-sweeper")

    async def close(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None

    def sweep(self) -> int:
        removed = self._limiter.cleanup()
        if removed:
            self._logger.info("limiter.cleanup", removed=removed, tracked=len(self._limiter))
        return removed

    async def _run(self) -> None:
        while True:
            await self._clock.sleep(self._interval_s)
            self.sweep()
