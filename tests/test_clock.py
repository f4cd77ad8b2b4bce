"""Tests for timers built on the injectable clock."""

import pytest

from tiktok.core.clock import Scheduler


class TestScheduler:
    @pytest.mark.asyncio
    async def test_timer_fires_after_delay(self, clock):
        scheduler = Scheduler(clock)
        fired = []

        scheduler.call_later(10, lambda: fired.append(clock.monotonic()), label="tick")
        await clock.advance(9)
        assert fired == []

        await clock.advance(1)
        assert fired == [10]
        assert scheduler.pending == []

    @pytest.mark.asyncio
    async def test_cancel_all_drops_pending(self, clock):
        scheduler = Scheduler(clock)
        fired = []
        scheduler.call_later(5, lambda: fired.append("a"))
        scheduler.call_later(8, lambda: fired.append("b"))
        await clock.advance(0)
        assert len(scheduler.pending) == 2

        scheduler.cancel_all()
        await clock.advance(10)

        assert fired == []
        assert scheduler.pending == []
