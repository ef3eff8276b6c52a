#!/usr/bin/env python3
"""Monitor entrypoint — wires the stack and runs until interrupted.

Usage::

    # Run with default config
    python scripts/run.py

    # Custom config file
    python scripts/run.py --config config/settings.yaml

    # Drive synthetic traffic and serve the JSON API
    python scripts/run.py --simulate --web --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from tradeops.core.config import load_settings
from tradeops.core.logging import setup_logging
from tradeops.monitor.factory import create_monitor_stack
from tradeops.monitor.web import start_web_api

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    """Start all components and run until interrupted."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level)

    stack = create_monitor_stack(settings, simulate=True if args.simulate else None)
    await stack.start()

    runner = None
    if args.web or settings.web.enabled:
        runner = await start_web_api(stack, host=settings.web.host, port=settings.web.port)

    logger.info(
        "monitor_running",
        storage=settings.storage.backend,
        simulation="active" if stack.simulation else "disabled",
        web="active" if runner else "disabled",
        rules=[r.alert_id for r in stack.engine.rules],
    )

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    logger.info("monitor_shutting_down")

    if runner is not None:
        try:
            await runner.cleanup()
        except Exception:
            logger.exception("web_api_stop_error")

    live = sorted(stack.engine.live_alerts)
    await stack.stop()

    logger.info(
        "monitor_stopped",
        cycles=stack.loop.cycles,
        failed_cycles=stack.loop.failed_cycles,
        observations_flushed=stack.recorder.flushed_total,
        live_alerts=live,
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the trading operations monitor.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Feed synthetic market data and orders (overrides simulator.enabled)",
    )
    parser.add_argument(
        "--web",
        action="store_true",
        help="Serve the JSON API (overrides web.enabled)",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
