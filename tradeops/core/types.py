"""Domain types for venue health monitoring — observations, KPIs, alerts, incidents."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Severity(StrEnum):
    """Alert / incident severity."""

    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class ConditionType(StrEnum):
    """How an alert rule decides it has fired."""

    THRESHOLD = "threshold"
    STALE = "stale"
    RATE = "rate"


class AlertStatus(StrEnum):
    """Lifecycle state of a persisted alert row."""

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class IncidentStatus(StrEnum):
    """Lifecycle state of an incident."""

    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"


class RemediationStatus(StrEnum):
    """Progress of the automated remediation attached to an incident."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class FeedType(StrEnum):
    """Kind of monitored feed."""

    MARKET_DATA = "market_data"
    ORDER_GATEWAY = "order_gateway"


class FeedStatus(StrEnum):
    """Health of a monitored feed."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


# ── Metrics ─────────────────────────────────────────────────────


class Observation(BaseModel):
    """A single timestamped numeric observation — immutable, append-only."""

    model_config = ConfigDict(frozen=True)

    timestamp: float
    metric_type: str
    metric_name: str
    value: float
    metadata: dict[str, Any] | None = None


class KPISnapshot(BaseModel):
    """Point-in-time KPIs derived from the observations in a trailing window.

    Rates are percentages (0-100).  Latencies are in milliseconds.
    """

    model_config = ConfigDict(frozen=True)

    fill_rate: float = 0.0
    cancel_rate: float = 0.0
    reject_rate: float = 0.0
    latency_p50: float = 0.0
    latency_p95: float = 0.0
    latency_p99: float = 0.0
    position_exposure: float = 0.0
    order_count: int = 0
    message_rate: float = 0.0


# ── Alerts & Incidents ──────────────────────────────────────────


class Alert(BaseModel):
    """One occurrence of an alert rule firing."""

    alert_id: str
    name: str
    severity: Severity
    condition_type: ConditionType
    threshold: float | None = None
    current_value: float = 0.0
    status: AlertStatus = AlertStatus.ACTIVE
    triggered_at: float
    resolved_at: float | None = None
    created_at: float | None = None
    message: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def live(self) -> bool:
        """Whether this occurrence has not been resolved yet."""
        return self.status != AlertStatus.RESOLVED


class Incident(BaseModel):
    """Incident record opened when an alert triggers."""

    incident_id: str
    alert_id: str
    title: str
    description: str = ""
    severity: Severity
    status: IncidentStatus = IncidentStatus.OPEN
    remediation_action: str | None = None
    remediation_status: RemediationStatus = RemediationStatus.PENDING
    started_at: float
    resolved_at: float | None = None
    mttd_seconds: float | None = None
    mttr_seconds: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class FeedHealth(BaseModel):
    """Heartbeat bookkeeping for one monitored feed."""

    feed_name: str
    feed_type: FeedType = FeedType.MARKET_DATA
    last_heartbeat: float
    status: FeedStatus = FeedStatus.HEALTHY
    latency_ms: float | None = None
    message_count: int = 0
    error_count: int = 0

    def staleness_ms(self, now: float) -> float:
        """Milliseconds since the last heartbeat."""
        return (now - self.last_heartbeat) * 1000.0


class Runbook(BaseModel):
    """Operator guidance for a given alert type."""

    runbook_id: str
    title: str
    alert_type: str
    severity: Severity
    description: str
    triage_steps: list[str] = Field(default_factory=list)
    remediation_steps: list[str] = Field(default_factory=list)
    rollback_steps: list[str] = Field(default_factory=list)
    related_alerts: list[str] = Field(default_factory=list)


# ── Ingestion Events ────────────────────────────────────────────


class MarketDataEventType(StrEnum):
    """Kind of market-data message."""

    QUOTE = "quote"
    TRADE = "trade"
    HEARTBEAT = "heartbeat"


class OrderEventType(StrEnum):
    """Order lifecycle step."""

    NEW = "new"
    ACK = "ack"
    FILL = "fill"
    REJECT = "reject"
    CANCEL = "cancel"


class OrderSide(StrEnum):
    """Order side."""

    BUY = "buy"
    SELL = "sell"


class OrderStatus(StrEnum):
    """Order state reported alongside an order event."""

    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    FILLED = "filled"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class MarketDataEvent(BaseModel):
    """Market-data message pushed by a feed adapter or the simulator."""

    type: MarketDataEventType
    symbol: str
    timestamp: float
    bid: float | None = None
    ask: float | None = None
    price: float | None = None
    volume: float | None = None
    latency_ms: float | None = None


class OrderEvent(BaseModel):
    """Order lifecycle event pushed by an order gateway or the simulator."""

    type: OrderEventType
    order_id: str
    symbol: str
    timestamp: float
    side: OrderSide
    quantity: float
    price: float | None = None
    status: OrderStatus
    latency_ms: float | None = None
    reject_reason: str | None = None
