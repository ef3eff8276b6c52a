"""SimulationDriver — pumps simulator events into the ingestor on a timer."""

from __future__ import annotations

import asyncio
import time
from types import TracebackType
from typing import Any

import structlog

from tradeops.ingest.ingestor import EventIngestor
from tradeops.sim.simulator import MarketSimulator

logger = structlog.stdlib.get_logger()


class SimulationDriver:
    """Background loop feeding one simulated tick per interval.

    Each tick delivers a market-data message (skipped while stale-data chaos
    is on, so the feed heartbeat goes quiet) and, with ``order_probability``,
    an order event plus a random exposure reading up to ``max_exposure_usd``.

    Usage::

        driver = SimulationDriver(simulator, ingestor, interval_secs=0.05)
        async with driver:
            await asyncio.sleep(30)
    """

    def __init__(
        self,
        simulator: MarketSimulator,
        ingestor: EventIngestor,
        interval_secs: float = 0.05,
        order_probability: float = 0.3,
        max_exposure_usd: float = 1_200_000.0,
    ) -> None:
        self._simulator = simulator
        self._ingestor = ingestor
        self._interval_secs = interval_secs
        self._order_probability = order_probability
        self._max_exposure_usd = max_exposure_usd
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._ticks = 0
        self._error_count = 0

    @property
    def simulator(self) -> MarketSimulator:
        return self._simulator

    @property
    def running(self) -> bool:
        return self._running

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def error_count(self) -> int:
        return self._error_count

    async def tick(self, now: float | None = None) -> None:
        """Generate and deliver one tick of events."""
        now = time.time() if now is None else now
        sim = self._simulator

        if not sim.stale_data:
            await self._ingestor.on_market_data(sim.generate_market_data(now))

        if sim.rng.random() < self._order_probability:
            await self._ingestor.on_order_event(sim.generate_order_event(now=now))
            self._ingestor.record_exposure(sim.rng.random() * self._max_exposure_usd, now=now)

        self._ticks += 1

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "ticks": self._ticks,
            "errors": self._error_count,
            **self._simulator.status(),
        }

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("simulation_started", interval_secs=self._interval_secs)

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("simulation_stopped", ticks=self._ticks)

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception:
                self._error_count += 1
                logger.exception("simulation_tick_error", error_count=self._error_count)

            try:
                await asyncio.sleep(self._interval_secs)
            except asyncio.CancelledError:
                break

    async def __aenter__(self) -> SimulationDriver:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
