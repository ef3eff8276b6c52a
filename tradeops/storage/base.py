"""Abstract store for observations, alerts, incidents and feed health.

Any engine offering insert, point update by key and range/filter queries by
timestamp and status can back the monitor.  Implementations raise
:class:`~tradeops.storage.exceptions.TransientStorageError` when an operation
fails in a way a retry might fix.
"""

from __future__ import annotations

import abc
from collections.abc import Sequence
from types import TracebackType
from typing import Any

from tradeops.core.types import Alert, AlertStatus, FeedHealth, Incident, Observation


class MetricStore(abc.ABC):
    """Persistence contract for the four monitoring tables."""

    # ── metrics ─────────────────────────────────────────────────

    @abc.abstractmethod
    async def insert_observations(self, batch: Sequence[Observation]) -> int:
        """Append a batch of observations. Returns the number written."""

    @abc.abstractmethod
    async def query_observations(
        self,
        since: float,
        metric_type: str | None = None,
        metric_name: str | None = None,
    ) -> list[Observation]:
        """Observations with ``timestamp > since`` in insertion order."""

    # ── alerts ──────────────────────────────────────────────────

    @abc.abstractmethod
    async def insert_alert(self, alert: Alert) -> None:
        """Persist a new alert occurrence."""

    @abc.abstractmethod
    async def update_alert(
        self,
        alert_id: str,
        fields: dict[str, Any],
        triggered_at: float | None = None,
    ) -> Alert | None:
        """Update one alert row.

        Targets the occurrence with the given ``triggered_at`` when supplied,
        otherwise the most recently triggered non-resolved row for
        ``alert_id``.  Returns the updated row, or None if nothing matched.
        """

    @abc.abstractmethod
    async def list_alerts(
        self,
        status: AlertStatus | Sequence[AlertStatus] | None = None,
        alert_id: str | None = None,
    ) -> list[Alert]:
        """Alert rows matching the filters, newest ``triggered_at`` first."""

    # ── incidents ───────────────────────────────────────────────

    @abc.abstractmethod
    async def insert_incident(self, incident: Incident) -> None:
        """Persist a new incident."""

    @abc.abstractmethod
    async def update_incident(
        self, incident_id: str, fields: dict[str, Any],
    ) -> Incident | None:
        """Point update by incident id. Returns the updated row or None."""

    @abc.abstractmethod
    async def get_incident(self, incident_id: str) -> Incident | None:
        """Fetch one incident by id."""

    @abc.abstractmethod
    async def find_open_incident(self, alert_id: str) -> Incident | None:
        """The most recent incident for ``alert_id`` whose status is not resolved."""

    @abc.abstractmethod
    async def list_incidents(self, since: float | None = None) -> list[Incident]:
        """Incidents with ``started_at > since``, newest first."""

    # ── feed health ─────────────────────────────────────────────

    @abc.abstractmethod
    async def upsert_feed_health(self, feed: FeedHealth) -> None:
        """Insert or replace the row keyed by ``feed.feed_name``."""

    @abc.abstractmethod
    async def get_feed_health(self, feed_name: str) -> FeedHealth | None:
        """Fetch one feed row."""

    @abc.abstractmethod
    async def list_feed_health(self) -> list[FeedHealth]:
        """All feed rows ordered by name."""

    # ── lifecycle ───────────────────────────────────────────────

    async def close(self) -> None:
        """Release any underlying resources."""

    async def __aenter__(self) -> MetricStore:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()


def status_filter(
    status: AlertStatus | Sequence[AlertStatus] | None,
) -> set[AlertStatus] | None:
    """Normalise a status filter argument to a set (or None for no filter)."""
    if status is None:
        return None
    if isinstance(status, AlertStatus):
        return {status}
    return set(status)
