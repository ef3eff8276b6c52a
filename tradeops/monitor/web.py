"""JSON query API over the monitoring stack, served with ``aiohttp``.

Exposes:
- ``GET  /api/kpis?minutes=``             → KPI snapshot
- ``GET  /api/metrics?metric=&minutes=``  → recent observations, newest first
- ``GET  /api/alerts[?status=active]``    → live (active and acknowledged) alerts
- ``POST /api/alerts/{alert_id}/ack``     → acknowledge a live alert
- ``GET  /api/incidents?hours=``          → recent incidents
- ``GET  /api/feeds``                     → feed health with staleness
- ``POST /api/check``                     → run one evaluation cycle now
- ``GET  /api/runbooks[?alert_type=]``    → runbooks
- ``GET|POST /api/simulator``             → simulator status and chaos switches

Every failure is a ``{"success": false, "error": ...}`` body; a KPI request
either returns a full snapshot or an error, never partial values.
"""

from __future__ import annotations

import base64
import hmac
import math
import time
from typing import Any

import structlog
from aiohttp import web

from tradeops.incidents.runbooks import get_runbook, list_runbooks
from tradeops.monitor.factory import MonitorStack

logger = structlog.stdlib.get_logger()

STACK_KEY = web.AppKey("stack", MonitorStack)


def _check_basic_auth(request: web.Request, username: str, password: str) -> bool:
    """Validate HTTP Basic Auth credentials."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Basic "):
        return False
    try:
        decoded = base64.b64decode(auth_header[6:]).decode("utf-8")
        req_user, req_pass = decoded.split(":", 1)
    except (ValueError, UnicodeDecodeError):
        return False
    user_ok = hmac.compare_digest(req_user, username)
    pass_ok = hmac.compare_digest(req_pass, password)
    return user_ok and pass_ok


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"success": False, "error": message}, status=status)


@web.middleware
async def _auth_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Require HTTP Basic Auth on all routes when credentials are configured."""
    web_cfg = request.app[STACK_KEY].settings.web
    if web_cfg.username and web_cfg.password:
        if not _check_basic_auth(request, web_cfg.username, web_cfg.password):
            return web.Response(
                status=401,
                text="Unauthorized",
                headers={"WWW-Authenticate": 'Basic realm="tradeops"'},
            )
    return await handler(request)


@web.middleware
async def _error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Render unexpected failures as a JSON error with status 500."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as exc:
        logger.exception("web_request_error", path=request.path)
        return _error(str(exc) or type(exc).__name__, 500)


def _positive_param(request: web.Request, name: str, default: float) -> float:
    raw = request.query.get(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        value = -1.0
    if not math.isfinite(value) or value <= 0:
        raise web.HTTPBadRequest(
            text=f'{{"success": false, "error": "{name} must be a positive number"}}',
            content_type="application/json",
        )
    return value


# ── Handlers ────────────────────────────────────────────────────


async def _handle_kpis(request: web.Request) -> web.Response:
    stack = request.app[STACK_KEY]
    minutes = _positive_param(request, "minutes", stack.settings.kpi.default_window_minutes)
    snapshot = await stack.aggregator.calculate_kpis(minutes)
    return web.json_response({
        "success": True,
        "window_minutes": minutes,
        "kpis": snapshot.model_dump(mode="json"),
    })


async def _handle_metrics(request: web.Request) -> web.Response:
    stack = request.app[STACK_KEY]
    metric = request.query.get("metric")
    if not metric:
        return _error("metric parameter is required", 400)
    minutes = _positive_param(request, "minutes", stack.settings.kpi.default_window_minutes)
    rows = await stack.aggregator.get_recent_metrics(metric, minutes)
    return web.json_response({
        "success": True,
        "metric": metric,
        "data": [o.model_dump(mode="json") for o in rows],
    })


async def _handle_alerts(request: web.Request) -> web.Response:
    stack = request.app[STACK_KEY]
    if request.query.get("status") == "active":
        alerts = await stack.engine.get_active_alerts()
    else:
        alerts = await stack.engine.get_live_alerts()
    return web.json_response({
        "success": True,
        "alerts": [a.model_dump(mode="json") for a in alerts],
    })


async def _handle_ack(request: web.Request) -> web.Response:
    stack = request.app[STACK_KEY]
    alert_id = request.match_info["alert_id"]
    alert = await stack.engine.acknowledge(alert_id)
    if alert is None:
        return _error(f"no live alert {alert_id!r}", 404)
    return web.json_response({"success": True, "alert": alert.model_dump(mode="json")})


async def _handle_incidents(request: web.Request) -> web.Response:
    stack = request.app[STACK_KEY]
    hours = _positive_param(request, "hours", stack.settings.incidents.recent_hours)
    incidents = await stack.incidents.get_recent_incidents(hours)
    return web.json_response({
        "success": True,
        "incidents": [i.model_dump(mode="json") for i in incidents],
    })


async def _handle_feeds(request: web.Request) -> web.Response:
    stack = request.app[STACK_KEY]
    now = time.time()
    feeds = await stack.store.list_feed_health()
    return web.json_response({
        "success": True,
        "feeds": [
            {**f.model_dump(mode="json"), "staleness_ms": round(f.staleness_ms(now), 1)}
            for f in feeds
        ],
    })


async def _handle_check(request: web.Request) -> web.Response:
    stack = request.app[STACK_KEY]
    triggered = await stack.loop.run_cycle(raise_errors=True)
    return web.json_response({
        "success": True,
        "triggered": [a.model_dump(mode="json") for a in triggered],
        "live": sorted(stack.engine.live_alerts),
    })


async def _handle_runbooks(request: web.Request) -> web.Response:
    alert_type = request.query.get("alert_type")
    if alert_type:
        runbook = get_runbook(alert_type)
        if runbook is None:
            return _error(f"no runbook for {alert_type!r}", 404)
        return web.json_response({"success": True, "runbook": runbook.model_dump(mode="json")})
    return web.json_response({
        "success": True,
        "runbooks": [rb.model_dump(mode="json") for rb in list_runbooks()],
    })


async def _handle_simulator_status(request: web.Request) -> web.Response:
    driver = request.app[STACK_KEY].simulation
    if driver is None:
        return web.json_response({"success": True, "status": {"running": False}})
    return web.json_response({"success": True, "status": driver.status()})


async def _handle_simulator_action(request: web.Request) -> web.Response:
    """Apply a chaos switch: ``{"action": "chaos_latency", "config": {...}}``."""
    driver = request.app[STACK_KEY].simulation
    if driver is None:
        return _error("simulation is not enabled", 409)
    try:
        body = await request.json()
    except ValueError:
        return _error("body must be JSON", 400)

    action = body.get("action")
    config = body.get("config") or {}
    enabled = bool(config.get("enabled", True))
    sim = driver.simulator
    try:
        if action == "start":
            await driver.start()
        elif action == "stop":
            await driver.stop()
        elif action == "chaos_latency":
            if enabled:
                sim.enable_latency_spike(float(config.get("latency_ms", 500)))
            else:
                sim.disable_latency_spike()
        elif action == "chaos_stale":
            if enabled:
                sim.enable_stale_data()
            else:
                sim.disable_stale_data()
        elif action == "chaos_rejects":
            if enabled:
                sim.enable_rejects(float(config.get("rate", 0.2)))
            else:
                sim.disable_rejects()
        elif action != "status":
            return _error(f"unknown action {action!r}", 400)
    except (TypeError, ValueError) as exc:
        return _error(str(exc), 400)

    logger.info("simulator_action", action=action, config=config)
    return web.json_response({"success": True, "status": driver.status()})


def create_web_app(stack: MonitorStack) -> web.Application:
    """Create the aiohttp web application."""
    app = web.Application(middlewares=[_auth_middleware, _error_middleware])
    app[STACK_KEY] = stack
    app.router.add_get("/api/kpis", _handle_kpis)
    app.router.add_get("/api/metrics", _handle_metrics)
    app.router.add_get("/api/alerts", _handle_alerts)
    app.router.add_post("/api/alerts/{alert_id}/ack", _handle_ack)
    app.router.add_get("/api/incidents", _handle_incidents)
    app.router.add_get("/api/feeds", _handle_feeds)
    app.router.add_post("/api/check", _handle_check)
    app.router.add_get("/api/runbooks", _handle_runbooks)
    app.router.add_get("/api/simulator", _handle_simulator_status)
    app.router.add_post("/api/simulator", _handle_simulator_action)
    return app


async def start_web_api(
    stack: MonitorStack,
    host: str = "127.0.0.1",
    port: int = 8080,
) -> web.AppRunner:
    """Start the API server. Returns the runner for cleanup."""
    app = create_web_app(stack)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("web_api_started", host=host, port=port)
    return runner
