"""Metrics subsystem exceptions."""

from __future__ import annotations


class MetricsError(Exception):
    """Base exception for metrics recording and aggregation errors."""


class KPIQueryError(MetricsError):
    """KPIs could not be computed because the backing store query failed."""
