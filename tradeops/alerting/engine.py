"""AlertRuleEngine — evaluates rules against KPIs and drives the alert lifecycle.

Each rule is a small state machine keyed by alert id::

    none  --condition true-->  active  --condition false-->  resolved (none)
    active/acknowledged --condition true--> no-op (failed remediation retried)

Only a transition writes anything.  The in-memory live map is the source of
truth for "is this rule currently firing"; the store holds every occurrence.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING

import structlog

from tradeops.alerting.exceptions import InvariantViolation
from tradeops.alerting.rules import AlertRule, build_default_rules, validate_rules
from tradeops.core.config import AlertsConfig
from tradeops.core.types import Alert, AlertStatus, FeedHealth, KPISnapshot
from tradeops.storage.base import MetricStore
from tradeops.storage.exceptions import StorageError

if TYPE_CHECKING:
    from tradeops.incidents.manager import IncidentManager

logger = structlog.stdlib.get_logger()

LIVE_STATUSES = (AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED)


def check_single_live(alert_id: str, live_rows: Sequence[Alert]) -> None:
    """Raise :class:`InvariantViolation` if more than one row is live."""
    if len(live_rows) > 1:
        raise InvariantViolation(alert_id, len(live_rows))


class AlertRuleEngine:
    """Evaluates a fixed rule set and opens/resolves alerts and incidents.

    ``check_alerts`` is serialized: concurrent callers queue on a lock, so a
    rule can never be triggered twice by overlapping cycles.

    Usage::

        engine = AlertRuleEngine(store, incidents, config=settings.alerts)
        await engine.restore()
        new_alerts = await engine.check_alerts(snapshot, feeds)
    """

    def __init__(
        self,
        store: MetricStore,
        incidents: IncidentManager,
        rules: Sequence[AlertRule] | None = None,
        config: AlertsConfig | None = None,
    ) -> None:
        self._store = store
        self._incidents = incidents
        self._rules = list(rules) if rules is not None else build_default_rules(config)
        validate_rules(self._rules)
        self._live: dict[str, Alert] = {}
        self._unremediated: set[str] = set()
        self._lock = asyncio.Lock()

    @property
    def rules(self) -> list[AlertRule]:
        return list(self._rules)

    @property
    def live_alerts(self) -> dict[str, Alert]:
        """Snapshot of the alerts currently firing, keyed by alert id."""
        return dict(self._live)

    # ── Evaluation ──────────────────────────────────────────────

    async def check_alerts(
        self,
        snapshot: KPISnapshot,
        feed_health: Sequence[FeedHealth],
        now: float | None = None,
    ) -> list[Alert]:
        """Evaluate every rule once, in declaration order.

        Returns the alerts newly triggered by this call.  A rule whose storage
        writes fail is skipped for this cycle and retried on the next one.
        """
        now = time.time() if now is None else now
        triggered: list[Alert] = []
        async with self._lock:
            for rule in self._rules:
                try:
                    alert = await self._evaluate_rule(rule, snapshot, feed_health, now)
                except StorageError:
                    logger.exception("alert_rule_storage_error", alert_id=rule.alert_id)
                    continue
                if alert is not None:
                    triggered.append(alert)
        return triggered

    async def _evaluate_rule(
        self,
        rule: AlertRule,
        snapshot: KPISnapshot,
        feeds: Sequence[FeedHealth],
        now: float,
    ) -> Alert | None:
        firing = rule.evaluate(snapshot, feeds, now)
        live = self._live.get(rule.alert_id)

        if firing and live is None:
            value = rule.current_value(snapshot, feeds, now)
            return await self._trigger(rule, value, now)
        if firing and live is not None and rule.alert_id in self._unremediated:
            await self._remediate(live)
        if not firing and live is not None:
            await self._resolve(live, now)
        return None

    async def _trigger(self, rule: AlertRule, value: float, now: float) -> Alert:
        """Insert the alert row and open its incident, or neither.

        A failed incident insert resolves the row again and re-raises, so the
        rule stays out of the live map and triggers afresh next cycle.
        """
        await self._reconcile_before_insert(rule.alert_id, now)

        alert = Alert(
            alert_id=rule.alert_id,
            name=rule.name,
            severity=rule.severity,
            condition_type=rule.condition_type,
            threshold=rule.threshold,
            current_value=value,
            status=AlertStatus.ACTIVE,
            triggered_at=now,
            created_at=now,
            message=rule.render_message(value),
            metadata={"incident_id": self._incidents.next_incident_id(now)},
        )
        await self._store.insert_alert(alert)
        try:
            await self._incidents.open_incident(alert)
        except StorageError:
            await self._roll_back(alert, now)
            raise

        self._live[rule.alert_id] = alert
        logger.warning(
            "alert_triggered",
            alert_id=alert.alert_id,
            severity=alert.severity,
            current_value=value,
            threshold=rule.threshold,
        )
        self._unremediated.add(rule.alert_id)
        await self._remediate(alert)
        return alert

    async def _roll_back(self, alert: Alert, now: float) -> None:
        try:
            await self._store.update_alert(
                alert.alert_id,
                {
                    "status": AlertStatus.RESOLVED,
                    "resolved_at": now,
                    "metadata": {**alert.metadata, "rolled_back": True},
                },
                triggered_at=alert.triggered_at,
            )
        except StorageError:
            # Left live in the store; reconciled before the next insert.
            logger.exception("alert_rollback_failed", alert_id=alert.alert_id)
        else:
            logger.warning("alert_trigger_rolled_back", alert_id=alert.alert_id)

    async def _remediate(self, alert: Alert) -> None:
        """Run auto-remediation; a storage failure is retried next cycle."""
        try:
            await self._incidents.auto_remediate(alert)
        except StorageError:
            logger.exception("remediation_failed", alert_id=alert.alert_id)
            return
        self._unremediated.discard(alert.alert_id)

    async def _resolve(self, live: Alert, now: float) -> None:
        resolved_at = max(now, live.triggered_at)
        await self._store.update_alert(
            live.alert_id,
            {"status": AlertStatus.RESOLVED, "resolved_at": resolved_at},
            triggered_at=live.triggered_at,
        )
        await self._incidents.resolve_incident(live, resolved_at)
        del self._live[live.alert_id]
        self._unremediated.discard(live.alert_id)
        logger.info(
            "alert_resolved",
            alert_id=live.alert_id,
            duration_seconds=round(resolved_at - live.triggered_at, 3),
        )

    # ── Invariant: one live row per alert id ────────────────────

    async def _reconcile_before_insert(self, alert_id: str, now: float) -> None:
        """Resolve persisted live rows that no live-map entry accounts for."""
        rows = await self._store.list_alerts(status=LIVE_STATUSES, alert_id=alert_id)
        if not rows:
            return
        # The row about to be inserted makes every existing live row an extra.
        exc = InvariantViolation(alert_id, len(rows) + 1)
        logger.warning("alert_invariant_violation", alert_id=alert_id, error=str(exc))
        await self._resolve_rows(rows, now)

    async def _resolve_rows(self, rows: Sequence[Alert], now: float) -> None:
        for row in rows:
            resolved_at = max(now, row.triggered_at)
            await self._store.update_alert(
                row.alert_id,
                {"status": AlertStatus.RESOLVED, "resolved_at": resolved_at},
                triggered_at=row.triggered_at,
            )
            await self._incidents.resolve_incident(row, resolved_at)
            logger.info(
                "stale_alert_row_resolved",
                alert_id=row.alert_id,
                triggered_at=row.triggered_at,
            )

    # ── Queries and operator actions ────────────────────────────

    async def get_active_alerts(self) -> list[Alert]:
        """Persisted alerts with status ``active``, newest first."""
        return await self._store.list_alerts(status=AlertStatus.ACTIVE)

    async def get_live_alerts(self) -> list[Alert]:
        """Persisted alerts that are active or acknowledged, newest first."""
        return await self._store.list_alerts(status=LIVE_STATUSES)

    async def acknowledge(self, alert_id: str, now: float | None = None) -> Alert | None:
        """Mark a live alert acknowledged and its incident investigating.

        Returns None when the alert is not currently live.  Acknowledged
        alerts stay live and resolve like active ones.
        """
        now = time.time() if now is None else now
        async with self._lock:
            live = self._live.get(alert_id)
            if live is None:
                return None
            if live.status == AlertStatus.ACKNOWLEDGED:
                return live

            metadata = {**live.metadata, "acknowledged_at": now}
            updated = await self._store.update_alert(
                alert_id,
                {"status": AlertStatus.ACKNOWLEDGED, "metadata": metadata},
                triggered_at=live.triggered_at,
            )
            if updated is None:
                return None
            self._live[alert_id] = updated
            await self._incidents.acknowledge_incident(alert_id)
            logger.info("alert_acknowledged", alert_id=alert_id)
            return updated

    async def restore(self, now: float | None = None) -> list[Alert]:
        """Rebuild the live map from persisted non-resolved rows.

        Called once at startup so a restart does not re-trigger (and
        double-count) alerts that were already firing.  Where several live
        rows share an alert id, the most recently triggered one is kept and
        the rest are resolved.
        """
        now = time.time() if now is None else now
        known = {rule.alert_id for rule in self._rules}
        async with self._lock:
            rows = await self._store.list_alerts(status=LIVE_STATUSES)
            grouped: dict[str, list[Alert]] = {}
            for row in rows:
                grouped.setdefault(row.alert_id, []).append(row)

            for alert_id, group in grouped.items():
                if alert_id not in known:
                    logger.warning("unknown_alert_not_restored", alert_id=alert_id)
                    continue
                try:
                    check_single_live(alert_id, group)
                except InvariantViolation as exc:
                    logger.warning(
                        "alert_invariant_violation", alert_id=alert_id, error=str(exc),
                    )
                    await self._resolve_rows(group[1:], now)
                self._live[alert_id] = group[0]

            logger.info("alerts_restored", count=len(self._live))
            return list(self._live.values())
