"""Metrics subsystem — buffered recording and windowed KPI aggregation."""

from tradeops.metrics.aggregator import KPIAggregator, percentile
from tradeops.metrics.exceptions import KPIQueryError, MetricsError
from tradeops.metrics.recorder import MetricsRecorder

__all__ = [
    "KPIAggregator",
    "KPIQueryError",
    "MetricsError",
    "MetricsRecorder",
    "percentile",
]
