"""Alerting subsystem exceptions."""

from __future__ import annotations


class AlertingError(Exception):
    """Base exception for alerting errors."""


class ConfigurationError(AlertingError):
    """An alert rule is malformed. Raised at startup, never mid-evaluation."""


class InvariantViolation(AlertingError):
    """More than one live alert row exists for a single alert id."""

    def __init__(self, alert_id: str, live_rows: int) -> None:
        super().__init__(f"{live_rows} live alert rows for {alert_id!r}")
        self.alert_id = alert_id
        self.live_rows = live_rows
