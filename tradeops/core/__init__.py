"""Core module — config, types, logging."""

from tradeops.core.config import Settings, get_settings, load_settings, reset_settings
from tradeops.core.logging import setup_logging
from tradeops.core.types import (
    Alert,
    AlertStatus,
    ConditionType,
    FeedHealth,
    FeedStatus,
    FeedType,
    Incident,
    IncidentStatus,
    KPISnapshot,
    MarketDataEvent,
    Observation,
    OrderEvent,
    RemediationStatus,
    Severity,
)

__all__ = [
    "Alert",
    "AlertStatus",
    "ConditionType",
    "FeedHealth",
    "FeedStatus",
    "FeedType",
    "Incident",
    "IncidentStatus",
    "KPISnapshot",
    "MarketDataEvent",
    "Observation",
    "OrderEvent",
    "RemediationStatus",
    "Settings",
    "Severity",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
