"""
Cooperative scheduling for long runs.

Nothing here runs in parallel.  A run awaits a *yield point* after each byte
chunk and after each batch of rows (or once the time budget is spent), which
lets the host's event loop serve other requests in between.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from mobile_cleaner.errors import RunCancelled

logger = logging.getLogger(__name__)

YieldPoint = Callable[[], Awaitable[None]]
ProgressCallback = Callable[[int], None]


async def event_loop_yield() -> None:
    """Default yield point: one tick of the asyncio loop."""
    await asyncio.sleep(0)


class CancelToken:
    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ProgressReporter:
    """Integer percentages, never decreasing within one run."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self.percent = 0

    def report(self, percent: int) -> None:
        percent = max(0, min(100, int(percent)))
        if percent <= self.percent:
            return
        self.percent = percent
        if self.callback is not None:
            self.callback(percent)

    def report_fraction(self, done: int, total: int) -> None:
        if total <= 0:
            return
        self.report(round(done / total * 100))

    def finish(self) -> None:
        self.report(100)


class Cooperator:
    """
    Decides when a run should give control back to the host.

    ``tick()`` is called once per processed row; it yields after
    ``batch_size`` rows or after ``time_budget_ms``, whichever comes first.
    ``checkpoint()`` always yields (used after each streamed chunk).
    """

    def __init__(
        self,
        yield_point: Optional[YieldPoint] = None,
        batch_size: int = 500,
        time_budget_ms: int = 30,
        cancel_token: Optional[CancelToken] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.yield_point = yield_point or event_loop_yield
        self.batch_size = max(1, batch_size)
        self.time_budget = time_budget_ms / 1000.0
        self.cancel_token = cancel_token
        self.clock = clock
        self.yields = 0
        self._pending = 0
        self._since = clock()

    @classmethod
    def from_settings(cls, settings, yield_point=None, cancel_token=None) -> "Cooperator":
        return cls(
            yield_point=yield_point,
            batch_size=settings.PROCESS_BATCH_ROWS,
            time_budget_ms=settings.YIELD_TIME_BUDGET_MS,
            cancel_token=cancel_token,
        )

    async def checkpoint(self) -> None:
        if self.cancel_token is not None and self.cancel_token.cancelled:
            logger.info("Run cancelled at yield point %d", self.yields)
            raise RunCancelled("Processing was cancelled")
        await self.yield_point()
        self.yields += 1
        self._pending = 0
        self._since = self.clock()

    async def tick(self, count: int = 1) -> None:
        self._pending += count
        if self._pending >= self.batch_size or (self.clock() - self._since) >= self.time_budget:
            await self.checkpoint()
