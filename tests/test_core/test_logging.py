"""Tests for setup_logging — JSON rendering and bound context."""

from __future__ import annotations

import io
import json
import logging

import structlog

from tradeops.core.logging import setup_logging


def _last_record(stream: io.StringIO) -> dict[str, object]:
    lines = [line for line in stream.getvalue().splitlines() if line.strip()]
    return json.loads(lines[-1])


class TestSetupLogging:
    def test_json_record_carries_service_and_event(self) -> None:
        stream = io.StringIO()
        setup_logging(level="INFO", fmt="json", stream=stream)
        structlog.stdlib.get_logger("tradeops.test").info("alert_triggered", alert_id="stale_feed")

        record = _last_record(stream)
        assert record["event"] == "alert_triggered"
        assert record["alert_id"] == "stale_feed"
        assert record["service"] == "tradeops"
        assert record["level"] == "info"
        assert "timestamp" in record

    def test_bound_context_is_merged(self) -> None:
        stream = io.StringIO()
        setup_logging(level="INFO", fmt="json", stream=stream)
        with structlog.contextvars.bound_contextvars(cycle=7):
            structlog.stdlib.get_logger("tradeops.test").warning("monitor_cycle_error")
        assert _last_record(stream)["cycle"] == 7

    def test_stdlib_records_rendered(self) -> None:
        stream = io.StringIO()
        setup_logging(level="INFO", fmt="json", stream=stream)
        logging.getLogger("some.library").warning("plain message")
        record = _last_record(stream)
        assert record["event"] == "plain message"

    def test_level_filters(self) -> None:
        stream = io.StringIO()
        setup_logging(level="WARNING", fmt="json", stream=stream)
        structlog.stdlib.get_logger("tradeops.test").info("metrics_flushed")
        assert stream.getvalue() == ""
