"""Tests for tradeops/core/config.py — YAML loading, defaults, validation."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from tradeops.core.config import (
    AlertsConfig,
    KPIConfig,
    LoggingConfig,
    RecorderConfig,
    Settings,
    get_settings,
    load_settings,
    reset_settings,
)


@pytest.fixture(autouse=True)
def _clean_settings() -> None:
    """Reset the global settings cache before each test."""
    reset_settings()


class TestDefaults:
    """Settings should have sensible defaults when no YAML is provided."""

    def test_default_recorder_config(self) -> None:
        cfg = RecorderConfig()
        assert cfg.buffer_size == 1000
        assert cfg.flush_interval_secs == 5.0

    def test_default_kpi_windows(self) -> None:
        cfg = KPIConfig()
        assert cfg.default_window_minutes == 60
        assert cfg.alert_window_minutes == 5

    def test_default_alert_thresholds(self) -> None:
        cfg = AlertsConfig()
        assert cfg.check_interval_secs == 2.0
        assert cfg.stale_feed_ms == 3000
        assert cfg.high_latency_p95_ms == 100
        assert cfg.high_reject_rate_pct == 5
        assert cfg.max_position_exposure_usd == 1_000_000

    def test_default_logging_config(self) -> None:
        cfg = LoggingConfig()
        assert cfg.level == "INFO"
        assert cfg.format == "json"

    def test_default_settings(self) -> None:
        s = Settings()
        assert s.storage.backend == "memory"
        assert s.incidents.remediation_delay_secs == 5.0
        assert s.simulator.enabled is False
        assert s.web.enabled is False


class TestYamlLoading:
    """Settings should load correctly from YAML files."""

    def test_load_from_yaml(self, tmp_path: Path) -> None:
        config_data = {
            "alerts": {"stale_feed_ms": 1500, "high_latency_p95_ms": 50},
            "storage": {"backend": "sqlite", "path": str(tmp_path / "ops.db")},
            "logging": {"level": "DEBUG", "format": "console"},
        }
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump(config_data))

        s = load_settings(config_file)
        assert s.alerts.stale_feed_ms == 1500
        assert s.alerts.high_latency_p95_ms == 50
        assert s.alerts.high_reject_rate_pct == 5
        assert s.storage.backend == "sqlite"
        assert s.logging.format == "console"

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        s = load_settings(tmp_path / "nope.yaml")
        assert s == Settings()

    def test_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("")
        s = load_settings(config_file)
        assert s.recorder.buffer_size == 1000

    def test_get_settings_caches(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump({"recorder": {"buffer_size": 10}}))
        loaded = load_settings(config_file)
        assert get_settings() is loaded
        assert get_settings().recorder.buffer_size == 10

    def test_reset_clears_cache(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump({"recorder": {"buffer_size": 10}}))
        load_settings(config_file)
        reset_settings()
        assert get_settings() is not None


class TestValidation:
    def test_unknown_backend_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(**{"storage": {"backend": "postgres"}})

    def test_zero_buffer_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RecorderConfig(buffer_size=0)

    def test_non_positive_window_rejected(self) -> None:
        with pytest.raises(ValidationError):
            KPIConfig(alert_window_minutes=0)
