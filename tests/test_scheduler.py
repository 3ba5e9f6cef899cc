import asyncio

import pytest

from mobile_cleaner.errors import RunCancelled
from mobile_cleaner.services.scheduler import CancelToken, Cooperator, ProgressReporter


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestProgressReporter:
    def test_never_decreases(self):
        seen = []
        reporter = ProgressReporter(seen.append)
        for percent in [10, 5, 30, 30, 20, 100]:
            reporter.report(percent)
        assert seen == [10, 30, 100]

    def test_clamped(self):
        reporter = ProgressReporter()
        reporter.report(250)
        assert reporter.percent == 100

    def test_fraction(self):
        seen = []
        reporter = ProgressReporter(seen.append)
        reporter.report_fraction(1, 3)
        assert seen == [33]

    def test_zero_total_is_ignored(self):
        reporter = ProgressReporter()
        reporter.report_fraction(5, 0)
        assert reporter.percent == 0


class TestCooperator:
    def test_yields_per_batch(self):
        calls = []

        async def yield_point():
            calls.append(1)

        cooperator = Cooperator(yield_point, batch_size=10, time_budget_ms=10_000, clock=FakeClock())

        async def run():
            for _ in range(35):
                await cooperator.tick()

        asyncio.run(run())
        assert len(calls) == 3
        assert cooperator.yields == 3

    def test_yields_when_time_budget_spent(self):
        clock = FakeClock()
        cooperator = Cooperator(batch_size=1000, time_budget_ms=30, clock=clock)

        async def run():
            await cooperator.tick()
            clock.now = 0.05
            await cooperator.tick()

        asyncio.run(run())
        assert cooperator.yields == 1

    def test_cancel_raises_at_next_yield(self):
        token = CancelToken()
        cooperator = Cooperator(batch_size=2, cancel_token=token, clock=FakeClock())

        async def run():
            await cooperator.tick()
            token.cancel()
            await cooperator.tick()

        with pytest.raises(RunCancelled):
            asyncio.run(run())

    def test_checkpoint_always_yields(self):
        cooperator = Cooperator(clock=FakeClock())
        asyncio.run(cooperator.checkpoint())
        assert cooperator.yields == 1
