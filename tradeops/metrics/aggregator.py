"""KPIAggregator — point-in-time KPIs over a trailing window of observations.

Every call recomputes from the store; nothing is cached between calls, so two
calls with no intervening writes return identical snapshots.

Definitions (window = observations with ``timestamp > now - window``):

- fill / cancel / reject rate: share of ``metric_type="order"`` observations
  named ``fill`` / ``cancel`` / ``reject``, in percent.  The denominator is
  floored at 1 so an empty window yields 0 rather than a division error.
- latency P50/P95/P99: nearest-rank percentile over ``metric_name="latency"``.
- position exposure: the most recent ``position_exposure`` value, else 0.
- message rate: ``market_data`` observations per second of window.
"""

from __future__ import annotations

import math
import time
from collections.abc import Sequence

import structlog

from tradeops.core.types import KPISnapshot, Observation
from tradeops.metrics.exceptions import KPIQueryError
from tradeops.storage.base import MetricStore
from tradeops.storage.exceptions import StorageError

logger = structlog.stdlib.get_logger()

ORDER_METRIC_TYPE = "order"
MARKET_DATA_METRIC_TYPE = "market_data"
LATENCY_METRIC = "latency"
EXPOSURE_METRIC = "position_exposure"


def percentile(values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile: element ``ceil(p/100 * n) - 1`` of the sorted input.

    The index is clamped to ``[0, n - 1]``; an empty input yields 0.
    """
    if not values:
        return 0.0
    ordered = sorted(values)
    n = len(ordered)
    index = math.ceil(p * n / 100) - 1
    return ordered[min(max(index, 0), n - 1)]


def latest(observations: Sequence[Observation]) -> Observation | None:
    """Most recent observation; ties go to the later insertion."""
    found: Observation | None = None
    for obs in observations:
        if found is None or obs.timestamp >= found.timestamp:
            found = obs
    return found


class KPIAggregator:
    """Computes :class:`KPISnapshot` values from a :class:`MetricStore`."""

    def __init__(self, store: MetricStore) -> None:
        self._store = store

    async def calculate_kpis(
        self, window_minutes: float = 60, now: float | None = None,
    ) -> KPISnapshot:
        """Compute KPIs over the trailing ``window_minutes``.

        Raises:
            ValueError: If the window is not positive.
            KPIQueryError: If the store could not be queried.
        """
        if window_minutes <= 0:
            raise ValueError(f"window_minutes must be positive, got {window_minutes}")
        now = time.time() if now is None else now
        since = now - window_minutes * 60

        try:
            orders = await self._store.query_observations(since, metric_type=ORDER_METRIC_TYPE)
            latencies = await self._store.query_observations(since, metric_name=LATENCY_METRIC)
            exposures = await self._store.query_observations(since, metric_name=EXPOSURE_METRIC)
            market_data = await self._store.query_observations(
                since, metric_type=MARKET_DATA_METRIC_TYPE,
            )
        except StorageError as exc:
            logger.warning("kpi_query_failed", window_minutes=window_minutes, error=str(exc))
            raise KPIQueryError(f"KPI query over {window_minutes}m window failed") from exc

        fills = sum(1 for o in orders if o.metric_name == "fill")
        cancels = sum(1 for o in orders if o.metric_name == "cancel")
        rejects = sum(1 for o in orders if o.metric_name == "reject")
        denominator = max(len(orders), 1)

        latency_values = [o.value for o in latencies]
        newest_exposure = latest(exposures)

        return KPISnapshot(
            fill_rate=fills / denominator * 100,
            cancel_rate=cancels / denominator * 100,
            reject_rate=rejects / denominator * 100,
            latency_p50=percentile(latency_values, 50),
            latency_p95=percentile(latency_values, 95),
            latency_p99=percentile(latency_values, 99),
            position_exposure=newest_exposure.value if newest_exposure else 0.0,
            order_count=len(orders),
            message_rate=len(market_data) / (window_minutes * 60),
        )

    async def get_recent_metrics(
        self,
        metric_name: str,
        window_minutes: float = 60,
        now: float | None = None,
    ) -> list[Observation]:
        """Observations named ``metric_name`` in the window, newest first.

        Raises:
            KPIQueryError: If the store could not be queried.
        """
        now = time.time() if now is None else now
        since = now - window_minutes * 60
        try:
            rows = await self._store.query_observations(since, metric_name=metric_name)
        except StorageError as exc:
            raise KPIQueryError(f"metric query for {metric_name!r} failed") from exc
        return sorted(reversed(rows), key=lambda o: o.timestamp, reverse=True)
