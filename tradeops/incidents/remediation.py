"""Automated remediation plans, keyed by alert id."""

from __future__ import annotations

from dataclasses import dataclass

from tradeops.alerting.rules import HIGH_LATENCY, HIGH_REJECTS, RISK_BREACH, STALE_FEED
from tradeops.core.types import RemediationStatus


@dataclass(frozen=True)
class RemediationPlan:
    """Action attached to an incident when its alert triggers.

    When ``follow_up_action`` is set, the incident is updated again after the
    manager's remediation delay, provided it is still open by then.
    """

    action: str
    status: RemediationStatus
    follow_up_action: str | None = None
    follow_up_status: RemediationStatus = RemediationStatus.COMPLETED

    @property
    def has_follow_up(self) -> bool:
        return self.follow_up_action is not None


REMEDIATION_PLANS: dict[str, RemediationPlan] = {
    STALE_FEED: RemediationPlan(
        action="attempt automatic reconnection",
        status=RemediationStatus.IN_PROGRESS,
        follow_up_action="reconnection successful",
    ),
    HIGH_LATENCY: RemediationPlan(
        action="switch to backup order gateway",
        status=RemediationStatus.IN_PROGRESS,
    ),
    RISK_BREACH: RemediationPlan(
        action="kill-switch activated: trading halted",
        status=RemediationStatus.COMPLETED,
    ),
    HIGH_REJECTS: RemediationPlan(
        action="reduce order rate by 50%",
        status=RemediationStatus.IN_PROGRESS,
    ),
}
