"""Tests for the aiohttp JSON API — routes, error bodies, auth, chaos controls."""

from __future__ import annotations

import base64
from collections.abc import AsyncIterator
from unittest.mock import AsyncMock, patch

import pytest
from aiohttp import test_utils

from tradeops.core.config import Settings
from tradeops.metrics.exceptions import KPIQueryError
from tradeops.monitor.factory import MonitorStack, create_monitor_stack
from tradeops.monitor.web import create_web_app
from tradeops.storage.memory import MemoryStore


# ── Fixtures ────────────────────────────────────────────────────


async def _client_for(stack: MonitorStack) -> test_utils.TestClient:
    client = test_utils.TestClient(test_utils.TestServer(create_web_app(stack)))
    await client.start_server()
    return client


@pytest.fixture
async def stack() -> AsyncIterator[MonitorStack]:
    s = create_monitor_stack(Settings(), store=MemoryStore())
    yield s
    await s.incidents.close()


@pytest.fixture
async def client(stack: MonitorStack) -> AsyncIterator[test_utils.TestClient]:
    c = await _client_for(stack)
    yield c
    await c.close()


async def _breach(stack: MonitorStack) -> None:
    stack.ingestor.record_exposure(1_200_000.0)
    await stack.recorder.flush()


# ── KPIs and metrics ────────────────────────────────────────────


class TestKpis:
    async def test_kpis(self, client: test_utils.TestClient, stack: MonitorStack) -> None:
        await _breach(stack)
        resp = await client.get("/api/kpis?minutes=5")
        assert resp.status == 200
        body = await resp.json()
        assert body["success"] is True
        assert body["window_minutes"] == 5
        assert body["kpis"]["position_exposure"] == 1_200_000.0

    async def test_bad_minutes(self, client: test_utils.TestClient) -> None:
        resp = await client.get("/api/kpis?minutes=abc")
        assert resp.status == 400
        assert (await resp.json())["success"] is False

    async def test_failure_is_500_not_partial(
        self, client: test_utils.TestClient, stack: MonitorStack,
    ) -> None:
        with patch.object(
            stack.aggregator, "calculate_kpis", AsyncMock(side_effect=KPIQueryError("store down")),
        ):
            resp = await client.get("/api/kpis")
        assert resp.status == 500
        body = await resp.json()
        assert body == {"success": False, "error": "store down"}

    async def test_check_failure_is_500(
        self, client: test_utils.TestClient, stack: MonitorStack,
    ) -> None:
        with patch.object(
            stack.aggregator, "calculate_kpis", AsyncMock(side_effect=KPIQueryError("store down")),
        ):
            resp = await client.post("/api/check")
        assert resp.status == 500
        assert await resp.json() == {"success": False, "error": "store down"}

    @pytest.mark.parametrize("minutes", ["nan", "inf", "-inf"])
    async def test_non_finite_minutes(self, client: test_utils.TestClient, minutes: str) -> None:
        resp = await client.get(f"/api/kpis?minutes={minutes}")
        assert resp.status == 400
        assert (await resp.json())["success"] is False

    async def test_metrics_requires_name(self, client: test_utils.TestClient) -> None:
        resp = await client.get("/api/metrics")
        assert resp.status == 400

    async def test_metrics_newest_first(
        self, client: test_utils.TestClient, stack: MonitorStack,
    ) -> None:
        stack.ingestor.record_exposure(1.0)
        stack.ingestor.record_exposure(2.0)
        await stack.recorder.flush()
        resp = await client.get("/api/metrics?metric=position_exposure&minutes=1")
        body = await resp.json()
        assert [row["value"] for row in body["data"]] == [2.0, 1.0]


# ── Alerts and incidents ────────────────────────────────────────


class TestAlerts:
    async def test_check_then_list(self, client: test_utils.TestClient, stack: MonitorStack) -> None:
        await _breach(stack)
        resp = await client.post("/api/check")
        body = await resp.json()
        assert [a["alert_id"] for a in body["triggered"]] == ["risk_breach"]
        assert body["live"] == ["risk_breach"]

        alerts = (await (await client.get("/api/alerts")).json())["alerts"]
        assert [a["alert_id"] for a in alerts] == ["risk_breach"]
        assert alerts[0]["status"] == "active"

        incidents = (await (await client.get("/api/incidents?hours=1")).json())["incidents"]
        assert len(incidents) == 1
        assert incidents[0]["remediation_status"] == "completed"

    async def test_acknowledge(self, client: test_utils.TestClient, stack: MonitorStack) -> None:
        await _breach(stack)
        await client.post("/api/check")
        resp = await client.post("/api/alerts/risk_breach/ack")
        assert resp.status == 200
        assert (await resp.json())["alert"]["status"] == "acknowledged"

        incidents = (await (await client.get("/api/incidents")).json())["incidents"]
        assert incidents[0]["status"] == "investigating"

        alerts = (await (await client.get("/api/alerts")).json())["alerts"]
        assert [a["status"] for a in alerts] == ["acknowledged"]
        active = (await (await client.get("/api/alerts?status=active")).json())["alerts"]
        assert active == []

    async def test_acknowledge_unknown(self, client: test_utils.TestClient) -> None:
        resp = await client.post("/api/alerts/risk_breach/ack")
        assert resp.status == 404
        assert (await resp.json())["success"] is False


class TestFeedsAndRunbooks:
    async def test_feeds_include_staleness(
        self, client: test_utils.TestClient, stack: MonitorStack,
    ) -> None:
        await stack.ingestor.record_feed_error("backup_feed")
        feeds = (await (await client.get("/api/feeds")).json())["feeds"]
        assert feeds[0]["feed_name"] == "backup_feed"
        assert feeds[0]["status"] == "degraded"
        assert feeds[0]["staleness_ms"] >= 0

    async def test_runbooks(self, client: test_utils.TestClient) -> None:
        body = await (await client.get("/api/runbooks")).json()
        assert len(body["runbooks"]) == 5
        one = await (await client.get("/api/runbooks?alert_type=stale_feed")).json()
        assert one["runbook"]["runbook_id"] == "RB001"
        missing = await client.get("/api/runbooks?alert_type=nope")
        assert missing.status == 404


# ── Simulator controls ──────────────────────────────────────────


class TestSimulator:
    async def test_disabled(self, client: test_utils.TestClient) -> None:
        status = await (await client.get("/api/simulator")).json()
        assert status["status"] == {"running": False}
        resp = await client.post("/api/simulator", json={"action": "chaos_stale"})
        assert resp.status == 409

    async def test_chaos_switches(self) -> None:
        stack = create_monitor_stack(Settings(), store=MemoryStore(), simulate=True)
        client = await _client_for(stack)
        try:
            resp = await client.post(
                "/api/simulator",
                json={"action": "chaos_latency", "config": {"enabled": True, "latency_ms": 250}},
            )
            assert (await resp.json())["status"]["chaos"]["latency_spike_ms"] == 250

            resp = await client.post("/api/simulator", json={"action": "chaos_rejects", "config": {"rate": 2}})
            assert resp.status == 400

            resp = await client.post("/api/simulator", json={"action": "explode"})
            assert resp.status == 400
        finally:
            await client.close()


# ── Auth ────────────────────────────────────────────────────────


class TestAuth:
    async def test_basic_auth_enforced(self) -> None:
        settings = Settings(web={"username": "ops", "password": "secret"})
        client = await _client_for(create_monitor_stack(settings, store=MemoryStore()))
        try:
            assert (await client.get("/api/runbooks")).status == 401
            token = base64.b64encode(b"ops:secret").decode()
            resp = await client.get("/api/runbooks", headers={"Authorization": f"Basic {token}"})
            assert resp.status == 200
        finally:
            await client.close()
