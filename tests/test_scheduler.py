"""
Tests for the interval ticker.
"""
import asyncio

import pytest

from quotekeeper.infra.scheduler import Clock, IntervalTicker


class TestIntervalTicker:

    @pytest.mark.asyncio
    async def test_ticks_until_stopped(self, clock):
        calls = []

        async def cb():
            calls.append(clock.now())

        ticker = IntervalTicker(5.0, cb, clock=clock, name="watchdog")
        ticker.start()
        while ticker.ticks < 3:
            await asyncio.sleep(0)
        await ticker.stop()

        assert calls[:3] == [1005.0, 1010.0, 1015.0]
        assert not ticker.running

    @pytest.mark.asyncio
    async def test_callback_error_keeps_ticking(self, clock, caplog):
        async def cb():
            raise RuntimeError("tick failed")

        ticker = IntervalTicker(1.0, cb, clock=clock, name="watchdog")
        ticker.start()
        while ticker.ticks < 2:
            await asyncio.sleep(0)
        await ticker.stop()

        assert "watchdog_error" in caplog.text

    @pytest.mark.asyncio
    async def test_stop_before_start_is_noop(self):
        async def cb():
            pass

        await IntervalTicker(1.0, cb).stop()

    def test_rejects_non_positive_interval(self):
        async def cb():
            pass

        with pytest.raises(ValueError):
            IntervalTicker(0, cb)

    @pytest.mark.asyncio
    async def test_real_clock_sleep_skips_non_positive(self):
        await Clock().sleep(0)
        await Clock().sleep(-1)
