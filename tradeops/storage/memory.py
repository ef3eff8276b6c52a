"""MemoryStore — in-process MetricStore for tests, demos and simulation runs."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from tradeops.core.types import Alert, AlertStatus, FeedHealth, Incident, IncidentStatus, Observation
from tradeops.storage.base import MetricStore, status_filter


class MemoryStore(MetricStore):
    """Keeps every table in plain Python containers.

    Rows are copied on the way in and on the way out so callers can never
    mutate stored state behind the store's back.
    """

    def __init__(self) -> None:
        self._observations: list[Observation] = []
        self._alerts: list[Alert] = []
        self._incidents: dict[str, Incident] = {}
        self._feeds: dict[str, FeedHealth] = {}

    # ── metrics ─────────────────────────────────────────────────

    async def insert_observations(self, batch: Sequence[Observation]) -> int:
        self._observations.extend(batch)
        return len(batch)

    async def query_observations(
        self,
        since: float,
        metric_type: str | None = None,
        metric_name: str | None = None,
    ) -> list[Observation]:
        return [
            obs for obs in self._observations
            if obs.timestamp > since
            and (metric_type is None or obs.metric_type == metric_type)
            and (metric_name is None or obs.metric_name == metric_name)
        ]

    @property
    def observation_count(self) -> int:
        return len(self._observations)

    # ── alerts ──────────────────────────────────────────────────

    async def insert_alert(self, alert: Alert) -> None:
        self._alerts.append(alert.model_copy(deep=True))

    async def update_alert(
        self,
        alert_id: str,
        fields: dict[str, Any],
        triggered_at: float | None = None,
    ) -> Alert | None:
        target: int | None = None
        for i, row in enumerate(self._alerts):
            if row.alert_id != alert_id:
                continue
            if triggered_at is not None:
                if row.triggered_at == triggered_at:
                    target = i
            elif row.live and (
                target is None or row.triggered_at >= self._alerts[target].triggered_at
            ):
                target = i
        if target is None:
            return None
        updated = self._alerts[target].model_copy(update=fields)
        self._alerts[target] = updated
        return updated.model_copy(deep=True)

    async def list_alerts(
        self,
        status: AlertStatus | Sequence[AlertStatus] | None = None,
        alert_id: str | None = None,
    ) -> list[Alert]:
        wanted = status_filter(status)
        rows = [
            a.model_copy(deep=True) for a in self._alerts
            if (wanted is None or a.status in wanted)
            and (alert_id is None or a.alert_id == alert_id)
        ]
        rows.sort(key=lambda a: a.triggered_at, reverse=True)
        return rows

    # ── incidents ───────────────────────────────────────────────

    async def insert_incident(self, incident: Incident) -> None:
        self._incidents[incident.incident_id] = incident.model_copy(deep=True)

    async def update_incident(
        self, incident_id: str, fields: dict[str, Any],
    ) -> Incident | None:
        row = self._incidents.get(incident_id)
        if row is None:
            return None
        updated = row.model_copy(update=fields)
        self._incidents[incident_id] = updated
        return updated.model_copy(deep=True)

    async def get_incident(self, incident_id: str) -> Incident | None:
        row = self._incidents.get(incident_id)
        return row.model_copy(deep=True) if row is not None else None

    async def find_open_incident(self, alert_id: str) -> Incident | None:
        candidates = [
            i for i in self._incidents.values()
            if i.alert_id == alert_id and i.status != IncidentStatus.RESOLVED
        ]
        if not candidates:
            return None
        latest = max(candidates, key=lambda i: i.started_at)
        return latest.model_copy(deep=True)

    async def list_incidents(self, since: float | None = None) -> list[Incident]:
        rows = [
            i.model_copy(deep=True) for i in self._incidents.values()
            if since is None or i.started_at > since
        ]
        rows.sort(key=lambda i: i.started_at, reverse=True)
        return rows

    # ── feed health ─────────────────────────────────────────────

    async def upsert_feed_health(self, feed: FeedHealth) -> None:
        self._feeds[feed.feed_name] = feed.model_copy()

    async def get_feed_health(self, feed_name: str) -> FeedHealth | None:
        row = self._feeds.get(feed_name)
        return row.model_copy() if row is not None else None

    async def list_feed_health(self) -> list[FeedHealth]:
        return [self._feeds[name].model_copy() for name in sorted(self._feeds)]
