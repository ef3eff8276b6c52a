"""MonitorLoop — periodic KPI computation and alert evaluation."""

from __future__ import annotations

import asyncio
import time

import structlog

from tradeops.alerting.engine import AlertRuleEngine
from tradeops.core.types import Alert
from tradeops.metrics.aggregator import KPIAggregator
from tradeops.storage.base import MetricStore

logger = structlog.stdlib.get_logger()


class MonitorLoop:
    """Background task that runs one evaluation cycle every ``interval_secs``.

    A cycle computes KPIs over the last ``window_minutes``, reads feed health
    and hands both to the engine.  Failures are logged and the loop carries
    on with the next cycle.

    Usage::

        loop = MonitorLoop(aggregator, engine, store, interval_secs=2)
        await loop.start()
        # ...
        await loop.stop()
    """

    def __init__(
        self,
        aggregator: KPIAggregator,
        engine: AlertRuleEngine,
        store: MetricStore,
        interval_secs: float = 2.0,
        window_minutes: float = 5,
    ) -> None:
        self._aggregator = aggregator
        self._engine = engine
        self._store = store
        self._interval_secs = interval_secs
        self._window_minutes = window_minutes
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._cycles = 0
        self._failed_cycles = 0
        self._last_cycle_at: float | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def cycles(self) -> int:
        return self._cycles

    @property
    def failed_cycles(self) -> int:
        return self._failed_cycles

    @property
    def last_cycle_at(self) -> float | None:
        return self._last_cycle_at

    async def run_cycle(
        self, now: float | None = None, raise_errors: bool = False,
    ) -> list[Alert]:
        """Evaluate once. Returns newly triggered alerts.

        A failed cycle is logged and counted, then returns [] (or re-raises
        when ``raise_errors`` is set).
        """
        now = time.time() if now is None else now
        self._cycles += 1
        with structlog.contextvars.bound_contextvars(cycle=self._cycles):
            try:
                snapshot = await self._aggregator.calculate_kpis(self._window_minutes, now=now)
                feeds = await self._store.list_feed_health()
                triggered = await self._engine.check_alerts(snapshot, feeds, now=now)
            except Exception:
                self._failed_cycles += 1
                logger.exception("monitor_cycle_error", failed_cycles=self._failed_cycles)
                if raise_errors:
                    raise
                return []
            self._last_cycle_at = now
            if triggered:
                logger.info(
                    "monitor_cycle_alerts",
                    triggered=[a.alert_id for a in triggered],
                )
            return triggered

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "monitor_loop_started",
            interval_secs=self._interval_secs,
            window_minutes=self._window_minutes,
        )

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("monitor_loop_stopped", cycles=self._cycles)

    # ── Internal loop ───────────────────────────────────────────

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                return
            try:
                await asyncio.sleep(self._interval_secs)
            except asyncio.CancelledError:
                return
