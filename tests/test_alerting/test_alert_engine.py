"""Tests for AlertRuleEngine — transitions, incidents, invariant, failure handling."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from tradeops.alerting.engine import AlertRuleEngine, check_single_live
from tradeops.alerting.exceptions import ConfigurationError, InvariantViolation
from tradeops.alerting.rules import build_default_rules
from tradeops.core.types import (
    Alert,
    AlertStatus,
    ConditionType,
    FeedHealth,
    IncidentStatus,
    KPISnapshot,
    RemediationStatus,
    Severity,
)
from tradeops.incidents.manager import IncidentManager
from tradeops.storage.exceptions import TransientStorageError
from tradeops.storage.memory import MemoryStore

T0 = 1_000.0


# ── Helpers ─────────────────────────────────────────────────────


def _engine(delay: float = 60.0) -> tuple[AlertRuleEngine, IncidentManager, MemoryStore]:
    store = MemoryStore()
    incidents = IncidentManager(store, remediation_delay_secs=delay)
    return AlertRuleEngine(store, incidents), incidents, store


def _fresh_feed(now: float = T0) -> list[FeedHealth]:
    return [FeedHealth(feed_name="primary_feed", last_heartbeat=now)]


def _slow() -> KPISnapshot:
    return KPISnapshot(latency_p95=150.0)


def _stored_alert(triggered_at: float, status: AlertStatus = AlertStatus.ACTIVE) -> Alert:
    return Alert(
        alert_id="high_latency",
        name="High Order Latency",
        severity=Severity.WARNING,
        condition_type=ConditionType.THRESHOLD,
        threshold=100.0,
        current_value=150.0,
        status=status,
        triggered_at=triggered_at,
        created_at=triggered_at,
    )


# ── Lifecycle ───────────────────────────────────────────────────


class TestTrigger:
    async def test_nothing_fires_on_healthy_snapshot(self) -> None:
        engine, _, store = _engine()
        assert await engine.check_alerts(KPISnapshot(), _fresh_feed(), now=T0) == []
        assert await store.list_alerts() == []

    async def test_repeat_true_is_single_alert(self) -> None:
        engine, incidents, store = _engine()
        first = await engine.check_alerts(_slow(), _fresh_feed(), now=T0)
        second = await engine.check_alerts(_slow(), _fresh_feed(T0 + 2), now=T0 + 2)

        assert [a.alert_id for a in first] == ["high_latency"]
        assert second == []
        assert len(await store.list_alerts(alert_id="high_latency")) == 1
        assert len(await store.list_incidents()) == 1
        await incidents.close()

    async def test_alert_fields(self) -> None:
        engine, incidents, _ = _engine()
        [alert] = await engine.check_alerts(_slow(), _fresh_feed(), now=T0)
        assert alert.status == AlertStatus.ACTIVE
        assert alert.severity == Severity.WARNING
        assert alert.current_value == 150.0
        assert alert.threshold == 100.0
        assert alert.triggered_at == T0
        assert "150.0" in alert.message
        assert alert.metadata["incident_id"].startswith("INC-")
        assert set(engine.live_alerts) == {"high_latency"}
        await incidents.close()

    async def test_returns_only_new_alerts_in_rule_order(self) -> None:
        engine, incidents, _ = _engine()
        await engine.check_alerts(_slow(), _fresh_feed(), now=T0)
        snap = KPISnapshot(latency_p95=150.0, reject_rate=10.0, position_exposure=2_000_000)
        new = await engine.check_alerts(snap, _fresh_feed(T0 + 1), now=T0 + 1)
        assert [a.alert_id for a in new] == ["high_rejects", "risk_breach"]
        await incidents.close()


class TestResolve:
    async def test_true_then_false_resolves_with_mttr(self) -> None:
        engine, _, store = _engine()
        await engine.check_alerts(_slow(), _fresh_feed(), now=T0)
        await engine.check_alerts(KPISnapshot(latency_p95=20.0), _fresh_feed(T0 + 30), now=T0 + 30)

        [row] = await store.list_alerts(alert_id="high_latency")
        assert row.status == AlertStatus.RESOLVED
        assert row.resolved_at == T0 + 30

        [incident] = await store.list_incidents()
        assert incident.status == IncidentStatus.RESOLVED
        assert incident.mttr_seconds == pytest.approx(30.0)
        assert incident.mttd_seconds == 0.0
        assert engine.live_alerts == {}

    async def test_retrigger_creates_new_occurrence(self) -> None:
        engine, incidents, store = _engine()
        await engine.check_alerts(_slow(), _fresh_feed(), now=T0)
        await engine.check_alerts(KPISnapshot(), _fresh_feed(T0 + 5), now=T0 + 5)
        await engine.check_alerts(_slow(), _fresh_feed(T0 + 10), now=T0 + 10)

        rows = await store.list_alerts(alert_id="high_latency")
        assert [r.status for r in rows] == [AlertStatus.ACTIVE, AlertStatus.RESOLVED]
        assert len(await store.list_incidents()) == 2
        await incidents.close()

    async def test_at_most_one_live_row_per_alert_id(self) -> None:
        engine, incidents, store = _engine()
        for i, p95 in enumerate([150, 150, 20, 150, 20, 150, 150]):
            now = T0 + i
            await engine.check_alerts(KPISnapshot(latency_p95=p95), _fresh_feed(now), now=now)
            live = await store.list_alerts(
                status=(AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED), alert_id="high_latency",
            )
            assert len(live) <= 1
        await incidents.close()


class TestRemediation:
    async def test_stale_feed_reconnects(self) -> None:
        engine, incidents, store = _engine()
        feeds = [FeedHealth(feed_name="primary_feed", last_heartbeat=T0 - 4.0)]
        [alert] = await engine.check_alerts(KPISnapshot(), feeds, now=T0)

        assert alert.alert_id == "stale_feed"
        assert alert.severity == Severity.CRITICAL
        assert alert.current_value == pytest.approx(4000.0)

        [incident] = await store.list_incidents()
        assert incident.remediation_action == "attempt automatic reconnection"
        assert incident.remediation_status == RemediationStatus.IN_PROGRESS
        assert incident.metadata["runbook_id"] == "RB001"
        await incidents.close()

    async def test_stale_feed_follow_up_completes(self) -> None:
        engine, incidents, store = _engine(delay=0.01)
        feeds = [FeedHealth(feed_name="primary_feed", last_heartbeat=T0 - 4.0)]
        await engine.check_alerts(KPISnapshot(), feeds, now=T0)
        await asyncio.sleep(0.05)

        [incident] = await store.list_incidents()
        assert incident.remediation_action == "reconnection successful"
        assert incident.remediation_status == RemediationStatus.COMPLETED
        assert incident.status == IncidentStatus.OPEN

    async def test_follow_up_cancelled_on_resolve(self) -> None:
        engine, incidents, store = _engine(delay=0.05)
        stale = [FeedHealth(feed_name="primary_feed", last_heartbeat=T0 - 4.0)]
        await engine.check_alerts(KPISnapshot(), stale, now=T0)
        assert len(incidents.pending_follow_ups) == 1

        await engine.check_alerts(KPISnapshot(), _fresh_feed(T0 + 1), now=T0 + 1)
        assert incidents.pending_follow_ups == []
        await asyncio.sleep(0.1)

        [incident] = await store.list_incidents()
        assert incident.status == IncidentStatus.RESOLVED
        assert incident.remediation_action == "attempt automatic reconnection"

    async def test_risk_breach_kill_switch(self) -> None:
        engine, _, store = _engine()
        [alert] = await engine.check_alerts(
            KPISnapshot(position_exposure=1_200_000), _fresh_feed(), now=T0,
        )
        assert alert.alert_id == "risk_breach"
        assert alert.severity == Severity.CRITICAL

        [incident] = await store.list_incidents()
        assert "kill-switch" in (incident.remediation_action or "")
        assert incident.remediation_status == RemediationStatus.COMPLETED


# ── Operator actions ────────────────────────────────────────────


class TestAcknowledge:
    async def test_acknowledge_live_alert(self) -> None:
        engine, incidents, store = _engine()
        await engine.check_alerts(_slow(), _fresh_feed(), now=T0)

        acked = await engine.acknowledge("high_latency", now=T0 + 1)
        assert acked is not None
        assert acked.status == AlertStatus.ACKNOWLEDGED
        assert acked.metadata["acknowledged_at"] == T0 + 1
        [incident] = await store.list_incidents()
        assert incident.status == IncidentStatus.INVESTIGATING

        assert await engine.get_active_alerts() == []
        assert [a.status for a in await engine.get_live_alerts()] == [AlertStatus.ACKNOWLEDGED]
        await incidents.close()

    async def test_acknowledged_alert_still_resolves(self) -> None:
        engine, _, store = _engine()
        await engine.check_alerts(_slow(), _fresh_feed(), now=T0)
        await engine.acknowledge("high_latency", now=T0 + 1)
        assert await engine.check_alerts(_slow(), _fresh_feed(T0 + 2), now=T0 + 2) == []

        await engine.check_alerts(KPISnapshot(), _fresh_feed(T0 + 3), now=T0 + 3)
        [row] = await store.list_alerts()
        assert row.status == AlertStatus.RESOLVED
        [incident] = await store.list_incidents()
        assert incident.status == IncidentStatus.RESOLVED

    async def test_acknowledge_unknown(self) -> None:
        engine, _, _ = _engine()
        assert await engine.acknowledge("high_latency") is None


# ── Invariant and restore ───────────────────────────────────────


class TestInvariant:
    def test_check_single_live(self) -> None:
        check_single_live("high_latency", [_stored_alert(1.0)])
        with pytest.raises(InvariantViolation) as exc_info:
            check_single_live("high_latency", [_stored_alert(2.0), _stored_alert(1.0)])
        assert exc_info.value.live_rows == 2

    async def test_orphan_rows_resolved_before_insert(self) -> None:
        engine, incidents, store = _engine()
        await store.insert_alert(_stored_alert(T0 - 100))

        await engine.check_alerts(_slow(), _fresh_feed(), now=T0)
        rows = await store.list_alerts(alert_id="high_latency")
        assert [r.status for r in rows] == [AlertStatus.ACTIVE, AlertStatus.RESOLVED]
        await incidents.close()

    async def test_restore_keeps_newest_live_row(self) -> None:
        engine, _, store = _engine()
        await store.insert_alert(_stored_alert(T0 - 50))
        await store.insert_alert(_stored_alert(T0 - 10, status=AlertStatus.ACKNOWLEDGED))

        restored = await engine.restore(now=T0)
        assert [a.triggered_at for a in restored] == [T0 - 10]
        assert engine.live_alerts["high_latency"].status == AlertStatus.ACKNOWLEDGED

        rows = await store.list_alerts(alert_id="high_latency")
        assert [r.status for r in rows] == [AlertStatus.ACKNOWLEDGED, AlertStatus.RESOLVED]

    async def test_restore_prevents_double_trigger(self) -> None:
        engine, _, store = _engine()
        await store.insert_alert(_stored_alert(T0 - 10))
        await engine.restore(now=T0)
        assert await engine.check_alerts(_slow(), _fresh_feed(), now=T0) == []
        assert len(await store.list_alerts()) == 1


# ── Failure handling ────────────────────────────────────────────


class TestFailures:
    async def test_storage_error_skips_rule_and_retries(self) -> None:
        engine, incidents, store = _engine()
        with patch.object(
            store, "insert_alert", AsyncMock(side_effect=TransientStorageError("locked")),
        ):
            assert await engine.check_alerts(_slow(), _fresh_feed(), now=T0) == []
        assert engine.live_alerts == {}

        [alert] = await engine.check_alerts(_slow(), _fresh_feed(T0 + 2), now=T0 + 2)
        assert alert.triggered_at == T0 + 2
        assert len(await store.list_alerts()) == 1
        await incidents.close()

    async def test_failed_incident_insert_rolls_back_trigger(self) -> None:
        engine, incidents, store = _engine()
        with patch.object(
            store, "insert_incident", AsyncMock(side_effect=TransientStorageError("locked")),
        ):
            assert await engine.check_alerts(_slow(), _fresh_feed(), now=T0) == []
        assert engine.live_alerts == {}
        [rolled_back] = await store.list_alerts()
        assert rolled_back.status == AlertStatus.RESOLVED
        assert await store.list_incidents() == []

        [alert] = await engine.check_alerts(_slow(), _fresh_feed(T0 + 2), now=T0 + 2)
        await engine.check_alerts(_slow(), _fresh_feed(T0 + 4), now=T0 + 4)
        [incident] = await store.list_incidents()
        assert incident.incident_id == alert.metadata["incident_id"]
        assert incident.remediation_action == "switch to backup order gateway"

        await engine.check_alerts(KPISnapshot(), _fresh_feed(T0 + 10), now=T0 + 10)
        [incident] = await store.list_incidents()
        assert incident.status == IncidentStatus.RESOLVED
        assert incident.mttr_seconds == pytest.approx(8.0)
        await incidents.close()

    async def test_failed_remediation_retried_next_cycle(self) -> None:
        engine, incidents, store = _engine()
        with patch.object(
            store, "update_incident", AsyncMock(side_effect=TransientStorageError("locked")),
        ):
            [alert] = await engine.check_alerts(_slow(), _fresh_feed(), now=T0)
        [incident] = await store.list_incidents()
        assert incident.incident_id == alert.metadata["incident_id"]
        assert incident.remediation_action is None

        assert await engine.check_alerts(_slow(), _fresh_feed(T0 + 2), now=T0 + 2) == []
        [incident] = await store.list_incidents()
        assert incident.remediation_action == "switch to backup order gateway"
        await incidents.close()

    async def test_failed_rule_does_not_block_others(self) -> None:
        engine, incidents, store = _engine()
        original = store.insert_alert

        async def _flaky(alert: Alert) -> None:
            if alert.alert_id == "high_latency":
                raise TransientStorageError("locked")
            await original(alert)

        snap = KPISnapshot(latency_p95=150.0, position_exposure=2_000_000)
        with patch.object(store, "insert_alert", _flaky):
            new = await engine.check_alerts(snap, _fresh_feed(), now=T0)
        assert [a.alert_id for a in new] == ["risk_breach"]
        await incidents.close()

    async def test_failed_resolve_retried_next_cycle(self) -> None:
        engine, _, store = _engine()
        await engine.check_alerts(_slow(), _fresh_feed(), now=T0)
        with patch.object(
            store, "update_alert", AsyncMock(side_effect=TransientStorageError("locked")),
        ):
            await engine.check_alerts(KPISnapshot(), _fresh_feed(T0 + 1), now=T0 + 1)
        assert "high_latency" in engine.live_alerts

        await engine.check_alerts(KPISnapshot(), _fresh_feed(T0 + 2), now=T0 + 2)
        assert engine.live_alerts == {}
        [row] = await store.list_alerts()
        assert row.status == AlertStatus.RESOLVED

    async def test_concurrent_checks_trigger_once(self) -> None:
        engine, incidents, store = _engine()
        await asyncio.gather(*(
            engine.check_alerts(_slow(), _fresh_feed(), now=T0) for _ in range(5)
        ))
        assert len(await store.list_alerts()) == 1
        assert len(await store.list_incidents()) == 1
        await incidents.close()


class TestConstruction:
    def test_invalid_rules_fail_at_startup(self) -> None:
        store = MemoryStore()
        rules = build_default_rules()
        with pytest.raises(ConfigurationError):
            AlertRuleEngine(store, IncidentManager(store), rules=[rules[0], rules[0]])

    def test_default_rules(self) -> None:
        store = MemoryStore()
        engine = AlertRuleEngine(store, IncidentManager(store))
        assert len(engine.rules) == 4
