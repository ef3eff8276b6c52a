"""Static operator runbooks, one per alert type."""

from __future__ import annotations

from tradeops.alerting.rules import HIGH_LATENCY, HIGH_REJECTS, RISK_BREACH, STALE_FEED
from tradeops.core.types import Runbook, Severity

FEED_FAILOVER = "feed_failover"

RUNBOOKS: tuple[Runbook, ...] = (
    Runbook(
        runbook_id="RB001",
        title="Stale Market Data Feed",
        alert_type=STALE_FEED,
        severity=Severity.CRITICAL,
        description="Market data feed has not sent a heartbeat within the silence threshold",
        triage_steps=[
            "Check feed health dashboard",
            "Verify network connectivity",
            "Check feed provider status page",
            "Review recent error logs",
        ],
        remediation_steps=[
            "Restart feed connector process",
            "Switch to backup feed if available",
            "Contact feed provider support",
            "Escalate to infrastructure team if unresolved",
        ],
        rollback_steps=[
            "Switch back to primary feed",
            "Monitor for stability",
            "Document incident",
        ],
        related_alerts=["feed_health", "latency"],
    ),
    Runbook(
        runbook_id="RB002",
        title="High Order Latency",
        alert_type=HIGH_LATENCY,
        severity=Severity.WARNING,
        description="Order acknowledgment latency P95 exceeds threshold",
        triage_steps=[
            "Check current latency metrics",
            "Review order gateway health",
            "Check network path to exchange",
            "Verify system load",
        ],
        remediation_steps=[
            "Reduce order rate temporarily",
            "Switch to backup gateway",
            "Restart order gateway service",
            "Check for network congestion",
        ],
        rollback_steps=[
            "Restore normal order rate",
            "Switch back to primary gateway",
            "Monitor latency trends",
        ],
        related_alerts=["latency", "order_gateway"],
    ),
    Runbook(
        runbook_id="RB003",
        title="High Reject Rate",
        alert_type=HIGH_REJECTS,
        severity=Severity.WARNING,
        description="Order reject rate exceeds baseline",
        triage_steps=[
            "Check reject reasons in logs",
            "Verify account status",
            "Check risk limits",
            "Review order parameters",
        ],
        remediation_steps=[
            "Pause trading if reject rate > 10%",
            "Adjust order parameters",
            "Increase risk limits if appropriate",
            "Contact exchange support",
        ],
        rollback_steps=[
            "Resume normal trading",
            "Monitor reject rate",
            "Update risk parameters",
        ],
        related_alerts=["rejects", "risk"],
    ),
    Runbook(
        runbook_id="RB004",
        title="Position Limit Breach",
        alert_type=RISK_BREACH,
        severity=Severity.CRITICAL,
        description="Position exposure exceeds configured limits",
        triage_steps=[
            "Check current position",
            "Verify limit configuration",
            "Review recent trades",
            "Check for duplicate fills",
        ],
        remediation_steps=[
            "IMMEDIATE: Trigger kill-switch",
            "Flatten position if necessary",
            "Review and adjust limits",
            "Investigate root cause",
        ],
        rollback_steps=[
            "Re-enable trading with adjusted limits",
            "Monitor position closely",
            "Update risk controls",
        ],
        related_alerts=["position", "risk", "kill_switch"],
    ),
    Runbook(
        runbook_id="RB005",
        title="Feed Failover",
        alert_type=FEED_FAILOVER,
        severity=Severity.WARNING,
        description="Automatic failover to backup feed triggered",
        triage_steps=[
            "Verify backup feed is healthy",
            "Check primary feed status",
            "Monitor data quality",
            "Review failover logs",
        ],
        remediation_steps=[
            "Monitor backup feed performance",
            "Investigate primary feed issue",
            "Plan return to primary feed",
            "Update monitoring thresholds",
        ],
        rollback_steps=[
            "Switch back to primary feed",
            "Monitor for stability",
            "Document failover event",
        ],
        related_alerts=["feed_health", "failover"],
    ),
)

_BY_ALERT_TYPE: dict[str, Runbook] = {rb.alert_type: rb for rb in RUNBOOKS}


def get_runbook(alert_type: str) -> Runbook | None:
    """Runbook for an alert type, or None when none is written."""
    return _BY_ALERT_TYPE.get(alert_type)


def list_runbooks() -> list[Runbook]:
    """All runbooks, critical first."""
    order = {Severity.CRITICAL: 0, Severity.WARNING: 1, Severity.INFO: 2}
    return sorted(RUNBOOKS, key=lambda rb: (order[rb.severity], rb.runbook_id))
