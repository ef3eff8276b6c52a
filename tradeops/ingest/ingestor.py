"""EventIngestor — turns market-data and order events into observations.

Feed adapters (or the simulator) push events here.  Every event becomes one
or more observations on the :class:`MetricsRecorder`; market-data events also
refresh the feed's heartbeat row so stale-feed detection sees them.
"""

from __future__ import annotations

import asyncio
import time

import structlog

from tradeops.core.types import (
    FeedHealth,
    FeedStatus,
    FeedType,
    MarketDataEvent,
    Observation,
    OrderEvent,
)
from tradeops.metrics.aggregator import (
    EXPOSURE_METRIC,
    LATENCY_METRIC,
    MARKET_DATA_METRIC_TYPE,
    ORDER_METRIC_TYPE,
)
from tradeops.metrics.recorder import MetricsRecorder
from tradeops.storage.base import MetricStore

logger = structlog.stdlib.get_logger()

POSITION_METRIC_TYPE = "position"


class EventIngestor:
    """Records inbound events and maintains feed heartbeats.

    Usage::

        ingestor = EventIngestor(recorder, store, feed_name="primary_feed")
        await ingestor.on_market_data(event)
        await ingestor.on_order_event(order)
        ingestor.record_exposure(1_050_000.0)
    """

    def __init__(
        self,
        recorder: MetricsRecorder,
        store: MetricStore,
        feed_name: str = "primary_feed",
    ) -> None:
        self._recorder = recorder
        self._store = store
        self._feed_name = feed_name
        # Serializes read-modify-write of feed_health counters.
        self._feed_lock = asyncio.Lock()

    @property
    def feed_name(self) -> str:
        return self._feed_name

    async def on_market_data(self, event: MarketDataEvent) -> None:
        """Record a market-data message and refresh the feed heartbeat."""
        self._recorder.record(
            MARKET_DATA_METRIC_TYPE,
            event.type.value,
            1,
            {"symbol": event.symbol, "latency_ms": event.latency_ms},
            now=event.timestamp,
        )
        if event.latency_ms is not None:
            self._recorder.record(
                LATENCY_METRIC, LATENCY_METRIC, event.latency_ms, now=event.timestamp,
            )

        async with self._feed_lock:
            current = await self._store.get_feed_health(self._feed_name)
            await self._store.upsert_feed_health(FeedHealth(
                feed_name=self._feed_name,
                feed_type=FeedType.MARKET_DATA,
                last_heartbeat=event.timestamp,
                status=FeedStatus.HEALTHY,
                latency_ms=event.latency_ms,
                message_count=(current.message_count if current else 0) + 1,
                error_count=current.error_count if current else 0,
            ))

    async def on_order_event(self, event: OrderEvent) -> None:
        """Record an order lifecycle step and its gateway latency."""
        self._recorder.record(
            ORDER_METRIC_TYPE,
            event.type.value,
            1,
            {
                "order_id": event.order_id,
                "symbol": event.symbol,
                "side": event.side,
                "status": event.status,
                "reject_reason": event.reject_reason,
            },
            now=event.timestamp,
        )
        if event.latency_ms is not None:
            self._recorder.record(
                LATENCY_METRIC,
                LATENCY_METRIC,
                event.latency_ms,
                {"order_id": event.order_id},
                now=event.timestamp,
            )

    def record_exposure(self, value: float, now: float | None = None) -> Observation:
        """Record the current gross position exposure in USD."""
        return self._recorder.record(POSITION_METRIC_TYPE, EXPOSURE_METRIC, value, now=now)

    async def record_feed_error(
        self, feed_name: str | None = None, now: float | None = None,
    ) -> FeedHealth:
        """Count an error against a feed and mark it degraded.

        The heartbeat is left untouched so a silent feed still goes stale.
        """
        name = feed_name or self._feed_name
        async with self._feed_lock:
            current = await self._store.get_feed_health(name)
            if current is None:
                current = FeedHealth(
                    feed_name=name,
                    last_heartbeat=time.time() if now is None else now,
                )
            updated = current.model_copy(update={
                "status": FeedStatus.DEGRADED,
                "error_count": current.error_count + 1,
            })
            await self._store.upsert_feed_health(updated)
        logger.warning("feed_error_recorded", feed_name=name, error_count=updated.error_count)
        return updated
