"""Convenience factory for wiring the monitoring stack."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from tradeops.alerting.engine import AlertRuleEngine
from tradeops.core.config import Settings
from tradeops.incidents.manager import IncidentManager
from tradeops.ingest.ingestor import EventIngestor
from tradeops.metrics.aggregator import KPIAggregator
from tradeops.metrics.recorder import MetricsRecorder
from tradeops.monitor.loop import MonitorLoop
from tradeops.sim.driver import SimulationDriver
from tradeops.sim.simulator import MarketSimulator
from tradeops.storage.base import MetricStore
from tradeops.storage.memory import MemoryStore
from tradeops.storage.sqlite import SQLiteStore

logger = structlog.stdlib.get_logger()


@dataclass
class MonitorStack:
    """Every long-lived monitoring object, built once and shared."""

    settings: Settings
    store: MetricStore
    recorder: MetricsRecorder
    aggregator: KPIAggregator
    incidents: IncidentManager
    engine: AlertRuleEngine
    ingestor: EventIngestor
    loop: MonitorLoop
    simulation: SimulationDriver | None = None

    async def start(self) -> None:
        """Restore live alerts, then start recorder, loop and simulation."""
        await self.engine.restore()
        await self.recorder.start()
        await self.loop.start()
        if self.simulation is not None:
            await self.simulation.start()
        logger.info(
            "monitor_stack_started",
            storage=self.settings.storage.backend,
            simulation=self.simulation is not None,
        )

    async def stop(self) -> None:
        """Stop in reverse order; the recorder's final flush runs before the store closes."""
        if self.simulation is not None:
            await self.simulation.stop()
        await self.loop.stop()
        await self.recorder.stop()
        await self.incidents.close()
        await self.store.close()
        logger.info("monitor_stack_stopped")


def create_store(settings: Settings) -> MetricStore:
    if settings.storage.backend == "sqlite":
        return SQLiteStore(settings.storage.path)
    return MemoryStore()


def create_monitor_stack(
    settings: Settings,
    store: MetricStore | None = None,
    simulate: bool | None = None,
) -> MonitorStack:
    """Build the recorder, aggregator, engine, incident manager and loop from config.

    Args:
        settings: Root settings.
        store: Optional pre-built store (tests); otherwise built from
            ``settings.storage``.
        simulate: Override ``settings.simulator.enabled``.
    """
    store = store if store is not None else create_store(settings)

    recorder = MetricsRecorder(
        store,
        buffer_size=settings.recorder.buffer_size,
        flush_interval_secs=settings.recorder.flush_interval_secs,
    )
    aggregator = KPIAggregator(store)
    incidents = IncidentManager(
        store, remediation_delay_secs=settings.incidents.remediation_delay_secs,
    )
    engine = AlertRuleEngine(store, incidents, config=settings.alerts)
    ingestor = EventIngestor(recorder, store, feed_name=settings.simulator.feed_name)
    loop = MonitorLoop(
        aggregator,
        engine,
        store,
        interval_secs=settings.alerts.check_interval_secs,
        window_minutes=settings.kpi.alert_window_minutes,
    )

    simulation: SimulationDriver | None = None
    sim_cfg = settings.simulator
    if sim_cfg.enabled if simulate is None else simulate:
        simulation = SimulationDriver(
            MarketSimulator(seed=sim_cfg.seed),
            ingestor,
            interval_secs=sim_cfg.interval_secs,
            order_probability=sim_cfg.order_probability,
            max_exposure_usd=sim_cfg.max_exposure_usd,
        )

    return MonitorStack(
        settings=settings,
        store=store,
        recorder=recorder,
        aggregator=aggregator,
        incidents=incidents,
        engine=engine,
        ingestor=ingestor,
        loop=loop,
        simulation=simulation,
    )
