"""Interval ticker driving periodic jobs."""

from __future__ import annotations

import asyncio
import random
import signal
from collections.abc import Awaitable, Callable
from typing import Any

from ..logging import get_logger

logger = get_logger(__name__)


class Ticker:
    """Calls an async job every ``interval_seconds`` plus random jitter.

    The job is awaited before the next wait starts, and ``run_once`` refuses
    to start while a previous invocation is still running, so runs never
    overlap. Exceptions from the job are logged and the loop keeps going.
    """

    def __init__(
        self,
        name: str,
        job: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        jitter_seconds: float = 0.0,
        run_immediately: bool = False,
    ):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        if jitter_seconds < 0:
            raise ValueError(f"jitter_seconds must be non-negative, got {jitter_seconds}")
        self.name = name
        self._job = job
        self.interval_seconds = interval_seconds
        self.jitter_seconds = jitter_seconds
        self.run_immediately = run_immediately
        self._running = False
        self._in_flight = False
        self._stop_event = asyncio.Event()
        self.runs = 0
        self.failures = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def next_delay(self) -> float:
        """Seconds to wait before the next run."""
        return self.interval_seconds + random.uniform(0, self.jitter_seconds)

    async def run_once(self) -> bool:
        """Run the job once unless it is already running.

        Returns:
            True if the job was started, False if it was skipped.
        """
        if self._in_flight:
            logger.warning("Previous run still in progress, skipping", ticker=self.name)
            return False

        self._in_flight = True
        try:
            await self._job()
        except Exception:
            self.failures += 1
            logger.exception("Ticker job failed", ticker=self.name)
        finally:
            self._in_flight = False
            self.runs += 1
        return True

    async def run(self) -> None:
        """Run until ``stop`` is called. A stopped ticker does not restart."""
        if self._stop_event.is_set():
            return
        self._running = True
        logger.info(
            "Ticker starting",
            ticker=self.name,
            interval_seconds=self.interval_seconds,
            jitter_seconds=self.jitter_seconds,
            run_immediately=self.run_immediately,
        )

        if self.run_immediately:
            await self.run_once()

        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.next_delay())
            except asyncio.TimeoutError:
                pass
            if not self._stop_event.is_set():
                await self.run_once()

        self._running = False
        logger.info("Ticker stopped", ticker=self.name, runs=self.runs, failures=self.failures)

    def stop(self) -> None:
        """Stop after the current run, if any."""
        if self._running:
            logger.info("Stopping ticker", ticker=self.name)
        self._running = False
        self._stop_event.set()


def setup_signal_handlers(*tickers: Ticker) -> None:
    """Stop the tickers on SIGINT / SIGTERM. Must be called inside the loop."""
    loop = asyncio.get_running_loop()

    def handle_signal(signum: int) -> None:
        logger.info("Received signal", signal=signum)
        for ticker in tickers:
            ticker.stop()

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, handle_signal, signum)


async def run_tickers(*tickers: Ticker) -> None:
    """Run tickers concurrently until all of them are stopped."""
    setup_signal_handlers(*tickers)
    await asyncio.gather(*(ticker.run() for ticker in tickers))
