"""Tests for the interval ticker."""

import asyncio

import pytest

from content_sync.sync import Ticker


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_job_exception_is_contained(self):
        async def failing_job():
            raise RuntimeError("boom")

        ticker = Ticker("test", failing_job, interval_seconds=60)

        assert await ticker.run_once() is True
        assert ticker.failures == 1
        assert ticker.runs == 1

    @pytest.mark.asyncio
    async def test_overlapping_invocation_is_refused(self):
        release = asyncio.Event()
        calls = 0

        async def slow_job():
            nonlocal calls
            calls += 1
            await release.wait()

        ticker = Ticker("test", slow_job, interval_seconds=60)
        first = asyncio.create_task(ticker.run_once())
        await asyncio.sleep(0)

        assert await ticker.run_once() is False

        release.set()
        assert await first is True
        assert calls == 1


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_runs_repeatedly_until_stopped(self):
        ran = asyncio.Event()
        calls = 0

        async def job():
            nonlocal calls
            calls += 1
            if calls >= 3:
                ran.set()

        ticker = Ticker("test", job, interval_seconds=0.01)
        task = asyncio.create_task(ticker.run())
        await asyncio.wait_for(ran.wait(), timeout=5)
        ticker.stop()
        await asyncio.wait_for(task, timeout=5)

        assert calls >= 3
        assert not ticker.is_running

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_the_loop(self):
        ran = asyncio.Event()
        calls = 0

        async def flaky_job():
            nonlocal calls
            calls += 1
            if calls >= 2:
                ran.set()
            raise RuntimeError("transient")

        ticker = Ticker("test", flaky_job, interval_seconds=0.01)
        task = asyncio.create_task(ticker.run())
        await asyncio.wait_for(ran.wait(), timeout=5)
        ticker.stop()
        await asyncio.wait_for(task, timeout=5)

        assert ticker.failures >= 2

    @pytest.mark.asyncio
    async def test_run_immediately_runs_before_first_interval(self):
        ran = asyncio.Event()

        async def job():
            ran.set()

        ticker = Ticker("test", job, interval_seconds=3600, run_immediately=True)
        task = asyncio.create_task(ticker.run())
        await asyncio.wait_for(ran.wait(), timeout=5)
        ticker.stop()
        await asyncio.wait_for(task, timeout=5)

        assert ticker.runs == 1

    @pytest.mark.asyncio
    async def test_stop_interrupts_the_wait(self):
        async def job():
            pass

        ticker = Ticker("test", job, interval_seconds=3600)
        task = asyncio.create_task(ticker.run())
        await asyncio.sleep(0)
        ticker.stop()

        await asyncio.wait_for(task, timeout=5)
        assert ticker.runs == 0

    @pytest.mark.asyncio
    async def test_stopped_before_start_never_runs(self):
        async def job():
            pass

        ticker = Ticker("test", job, interval_seconds=0.01, run_immediately=True)
        ticker.stop()

        await asyncio.wait_for(ticker.run(), timeout=5)
        assert ticker.runs == 0


def test_delay_includes_jitter():
    async def job():
        pass

    ticker = Ticker("test", job, interval_seconds=10, jitter_seconds=5)

    delays = [ticker.next_delay() for _ in range(50)]
    assert all(10 <= d <= 15 for d in delays)


@pytest.mark.parametrize("kwargs", [{"interval_seconds": 0}, {"interval_seconds": 1, "jitter_seconds": -1}])
def test_invalid_timing_is_rejected(kwargs):
    async def job():
        pass

    with pytest.raises(ValueError):
        Ticker("test", job, **kwargs)
