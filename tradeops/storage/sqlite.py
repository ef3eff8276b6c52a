"""SQLiteStore — durable MetricStore on the standard-library sqlite3 driver.

Each call runs on a worker thread via ``asyncio.to_thread`` so the event loop
never blocks on disk I/O.  A single connection is shared and guarded by a
lock; every write is committed before the call returns.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from collections.abc import Callable, Sequence
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

import structlog

from tradeops.core.types import Alert, AlertStatus, FeedHealth, Incident, IncidentStatus, Observation
from tradeops.storage.base import MetricStore, status_filter
from tradeops.storage.exceptions import TransientStorageError

logger = structlog.stdlib.get_logger()

T = TypeVar("T")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS metrics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp REAL NOT NULL,
    metric_type TEXT NOT NULL,
    metric_name TEXT NOT NULL,
    value REAL NOT NULL,
    metadata TEXT
);
CREATE INDEX IF NOT EXISTS idx_metrics_timestamp ON metrics(timestamp);
CREATE INDEX IF NOT EXISTS idx_metrics_type ON metrics(metric_type);
CREATE INDEX IF NOT EXISTS idx_metrics_name ON metrics(metric_name);

CREATE TABLE IF NOT EXISTS alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    alert_id TEXT NOT NULL,
    name TEXT NOT NULL,
    severity TEXT NOT NULL CHECK(severity IN ('critical', 'warning', 'info')),
    condition_type TEXT NOT NULL,
    threshold REAL,
    current_value REAL,
    status TEXT NOT NULL CHECK(status IN ('active', 'resolved', 'acknowledged')),
    triggered_at REAL NOT NULL,
    resolved_at REAL,
    created_at REAL,
    message TEXT,
    metadata TEXT,
    UNIQUE(alert_id, triggered_at)
);
CREATE INDEX IF NOT EXISTS idx_alerts_status ON alerts(status);
CREATE INDEX IF NOT EXISTS idx_alerts_alert_id ON alerts(alert_id);

CREATE TABLE IF NOT EXISTS incidents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    incident_id TEXT UNIQUE NOT NULL,
    alert_id TEXT,
    title TEXT NOT NULL,
    description TEXT,
    severity TEXT NOT NULL CHECK(severity IN ('critical', 'warning', 'info')),
    status TEXT NOT NULL CHECK(status IN ('open', 'investigating', 'resolved')),
    remediation_action TEXT,
    remediation_status TEXT,
    started_at REAL NOT NULL,
    resolved_at REAL,
    mttd_seconds REAL,
    mttr_seconds REAL,
    metadata TEXT
);
CREATE INDEX IF NOT EXISTS idx_incidents_status ON incidents(status);
CREATE INDEX IF NOT EXISTS idx_incidents_alert_id ON incidents(alert_id);

CREATE TABLE IF NOT EXISTS feed_health (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    feed_name TEXT UNIQUE NOT NULL,
    feed_type TEXT NOT NULL CHECK(feed_type IN ('market_data', 'order_gateway')),
    last_heartbeat REAL NOT NULL,
    status TEXT NOT NULL CHECK(status IN ('healthy', 'degraded', 'down')),
    latency_ms REAL,
    message_count INTEGER DEFAULT 0,
    error_count INTEGER DEFAULT 0
);
"""

_ALERT_COLUMNS = (
    "alert_id", "name", "severity", "condition_type", "threshold",
    "current_value", "status", "triggered_at", "resolved_at", "created_at",
    "message", "metadata",
)

_INCIDENT_COLUMNS = (
    "incident_id", "alert_id", "title", "description", "severity", "status",
    "remediation_action", "remediation_status", "started_at", "resolved_at",
    "mttd_seconds", "mttr_seconds", "metadata",
)

_FEED_COLUMNS = (
    "feed_name", "feed_type", "last_heartbeat", "status", "latency_ms",
    "message_count", "error_count",
)


def _dump(value: Any) -> Any:
    """Convert a model field value into something sqlite3 can bind."""
    if isinstance(value, dict):
        return json.dumps(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _row_dict(row: sqlite3.Row) -> dict[str, Any]:
    data = dict(row)
    data.pop("id", None)
    if data.get("metadata") is not None:
        data["metadata"] = json.loads(data["metadata"])
    return data


def _alert_from_row(row: sqlite3.Row) -> Alert:
    data = _row_dict(row)
    if data.get("metadata") is None:
        data["metadata"] = {}
    return Alert(**data)


def _incident_from_row(row: sqlite3.Row) -> Incident:
    data = _row_dict(row)
    if data.get("metadata") is None:
        data["metadata"] = {}
    return Incident(**data)


class SQLiteStore(MetricStore):
    """SQLite persistence for the monitoring tables.

    Usage::

        store = SQLiteStore("data/tradeops.db")
        await store.insert_observations(batch)
        ...
        await store.close()
    """

    def __init__(self, db_path: str | Path = "data/tradeops.db") -> None:
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._conn:
            self._conn.executescript(_SCHEMA)

    @property
    def db_path(self) -> str:
        return self._db_path

    async def _run(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Execute ``fn`` against the connection on a worker thread."""

        def _locked() -> T:
            with self._lock:
                try:
                    with self._conn:
                        return fn(self._conn)
                except sqlite3.Error as exc:
                    raise TransientStorageError(str(exc)) from exc

        return await asyncio.to_thread(_locked)

    # ── metrics ─────────────────────────────────────────────────

    async def insert_observations(self, batch: Sequence[Observation]) -> int:
        if not batch:
            return 0
        rows = [
            (o.timestamp, o.metric_type, o.metric_name, o.value, _dump(o.metadata))
            for o in batch
        ]

        def _insert(conn: sqlite3.Connection) -> int:
            conn.executemany(
                "INSERT INTO metrics (timestamp, metric_type, metric_name, value, metadata)"
                " VALUES (?, ?, ?, ?, ?)",
                rows,
            )
            return len(rows)

        return await self._run(_insert)

    async def query_observations(
        self,
        since: float,
        metric_type: str | None = None,
        metric_name: str | None = None,
    ) -> list[Observation]:
        sql = "SELECT timestamp, metric_type, metric_name, value, metadata FROM metrics WHERE timestamp > ?"
        params: list[Any] = [since]
        if metric_type is not None:
            sql += " AND metric_type = ?"
            params.append(metric_type)
        if metric_name is not None:
            sql += " AND metric_name = ?"
            params.append(metric_name)
        sql += " ORDER BY id"

        def _query(conn: sqlite3.Connection) -> list[Observation]:
            return [Observation(**_row_dict(r)) for r in conn.execute(sql, params)]

        return await self._run(_query)

    # ── alerts ──────────────────────────────────────────────────

    async def insert_alert(self, alert: Alert) -> None:
        data = alert.model_dump()
        values = [_dump(data[c]) for c in _ALERT_COLUMNS]
        placeholders = ", ".join("?" for _ in _ALERT_COLUMNS)

        def _insert(conn: sqlite3.Connection) -> None:
            conn.execute(
                f"INSERT INTO alerts ({', '.join(_ALERT_COLUMNS)}) VALUES ({placeholders})",
                values,
            )

        await self._run(_insert)

    async def update_alert(
        self,
        alert_id: str,
        fields: dict[str, Any],
        triggered_at: float | None = None,
    ) -> Alert | None:
        assignments = ", ".join(f"{k} = ?" for k in fields)
        values = [_dump(v) for v in fields.values()]

        def _update(conn: sqlite3.Connection) -> Alert | None:
            if triggered_at is not None:
                row = conn.execute(
                    "SELECT id FROM alerts WHERE alert_id = ? AND triggered_at = ?",
                    (alert_id, triggered_at),
                ).fetchone()
            else:
                row = conn.execute(
                    "SELECT id FROM alerts WHERE alert_id = ? AND status != ?"
                    " ORDER BY triggered_at DESC LIMIT 1",
                    (alert_id, AlertStatus.RESOLVED.value),
                ).fetchone()
            if row is None:
                return None
            if fields:
                conn.execute(
                    f"UPDATE alerts SET {assignments} WHERE id = ?",
                    [*values, row["id"]],
                )
            updated = conn.execute("SELECT * FROM alerts WHERE id = ?", (row["id"],)).fetchone()
            return _alert_from_row(updated)

        return await self._run(_update)

    async def list_alerts(
        self,
        status: AlertStatus | Sequence[AlertStatus] | None = None,
        alert_id: str | None = None,
    ) -> list[Alert]:
        sql = "SELECT * FROM alerts WHERE 1 = 1"
        params: list[Any] = []
        wanted = status_filter(status)
        if wanted is not None:
            sql += f" AND status IN ({', '.join('?' for _ in wanted)})"
            params.extend(s.value for s in wanted)
        if alert_id is not None:
            sql += " AND alert_id = ?"
            params.append(alert_id)
        sql += " ORDER BY triggered_at DESC"

        def _query(conn: sqlite3.Connection) -> list[Alert]:
            return [_alert_from_row(r) for r in conn.execute(sql, params)]

        return await self._run(_query)

    # ── incidents ───────────────────────────────────────────────

    async def insert_incident(self, incident: Incident) -> None:
        data = incident.model_dump()
        values = [_dump(data[c]) for c in _INCIDENT_COLUMNS]
        placeholders = ", ".join("?" for _ in _INCIDENT_COLUMNS)

        def _insert(conn: sqlite3.Connection) -> None:
            conn.execute(
                f"INSERT INTO incidents ({', '.join(_INCIDENT_COLUMNS)}) VALUES ({placeholders})",
                values,
            )

        await self._run(_insert)

    async def update_incident(
        self, incident_id: str, fields: dict[str, Any],
    ) -> Incident | None:
        assignments = ", ".join(f"{k} = ?" for k in fields)
        values = [_dump(v) for v in fields.values()]

        def _update(conn: sqlite3.Connection) -> Incident | None:
            if fields:
                conn.execute(
                    f"UPDATE incidents SET {assignments} WHERE incident_id = ?",
                    [*values, incident_id],
                )
            row = conn.execute(
                "SELECT * FROM incidents WHERE incident_id = ?", (incident_id,),
            ).fetchone()
            return _incident_from_row(row) if row is not None else None

        return await self._run(_update)

    async def get_incident(self, incident_id: str) -> Incident | None:
        return await self.update_incident(incident_id, {})

    async def find_open_incident(self, alert_id: str) -> Incident | None:
        def _query(conn: sqlite3.Connection) -> Incident | None:
            row = conn.execute(
                "SELECT * FROM incidents WHERE alert_id = ? AND status != ?"
                " ORDER BY started_at DESC LIMIT 1",
                (alert_id, IncidentStatus.RESOLVED.value),
            ).fetchone()
            return _incident_from_row(row) if row is not None else None

        return await self._run(_query)

    async def list_incidents(self, since: float | None = None) -> list[Incident]:
        sql = "SELECT * FROM incidents"
        params: list[Any] = []
        if since is not None:
            sql += " WHERE started_at > ?"
            params.append(since)
        sql += " ORDER BY started_at DESC"

        def _query(conn: sqlite3.Connection) -> list[Incident]:
            return [_incident_from_row(r) for r in conn.execute(sql, params)]

        return await self._run(_query)

    # ── feed health ─────────────────────────────────────────────

    async def upsert_feed_health(self, feed: FeedHealth) -> None:
        data = feed.model_dump()
        values = [_dump(data[c]) for c in _FEED_COLUMNS]
        updates = ", ".join(f"{c} = excluded.{c}" for c in _FEED_COLUMNS[1:])

        def _upsert(conn: sqlite3.Connection) -> None:
            conn.execute(
                f"INSERT INTO feed_health ({', '.join(_FEED_COLUMNS)})"
                f" VALUES ({', '.join('?' for _ in _FEED_COLUMNS)})"
                f" ON CONFLICT(feed_name) DO UPDATE SET {updates}",
                values,
            )

        await self._run(_upsert)

    async def get_feed_health(self, feed_name: str) -> FeedHealth | None:
        def _query(conn: sqlite3.Connection) -> FeedHealth | None:
            row = conn.execute(
                "SELECT * FROM feed_health WHERE feed_name = ?", (feed_name,),
            ).fetchone()
            return FeedHealth(**_row_dict(row)) if row is not None else None

        return await self._run(_query)

    async def list_feed_health(self) -> list[FeedHealth]:
        def _query(conn: sqlite3.Connection) -> list[FeedHealth]:
            rows = conn.execute("SELECT * FROM feed_health ORDER BY feed_name")
            return [FeedHealth(**_row_dict(r)) for r in rows]

        return await self._run(_query)

    # ── lifecycle ───────────────────────────────────────────────

    async def close(self) -> None:
        with self._lock:
            self._conn.close()
        logger.debug("sqlite_store_closed", db_path=self._db_path)
