"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class RecorderConfig(BaseModel):
    """Metrics recorder buffering."""

    buffer_size: int = Field(default=1000, gt=0)
    flush_interval_secs: float = Field(default=5.0, gt=0)


class KPIConfig(BaseModel):
    """Trailing windows used for KPI computation."""

    default_window_minutes: float = Field(default=60.0, gt=0)
    alert_window_minutes: float = Field(default=5.0, gt=0)


class AlertsConfig(BaseModel):
    """Alert rule thresholds and evaluation cadence."""

    check_interval_secs: float = Field(default=2.0, gt=0)
    stale_feed_ms: float = 3000.0
    high_latency_p95_ms: float = 100.0
    high_reject_rate_pct: float = 5.0
    max_position_exposure_usd: float = 1_000_000.0


class IncidentConfig(BaseModel):
    """Incident manager behaviour."""

    remediation_delay_secs: float = Field(default=5.0, ge=0)
    recent_hours: float = 24.0


class StorageConfig(BaseModel):
    """Backing store for metrics, alerts, incidents and feed health."""

    backend: Literal["memory", "sqlite"] = "memory"
    path: str = "data/tradeops.db"


class SimulatorConfig(BaseModel):
    """Synthetic event source used for load and chaos drills."""

    enabled: bool = False
    interval_secs: float = Field(default=0.05, gt=0)
    seed: int | None = None
    feed_name: str = "primary_feed"
    order_probability: float = Field(default=0.3, ge=0, le=1)
    max_exposure_usd: float = 1_200_000.0


class WebConfig(BaseModel):
    """JSON query API."""

    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8080
    username: str | None = None
    password: str | None = None


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"


class Settings(BaseModel):
    """Root settings container."""

    recorder: RecorderConfig = RecorderConfig()
    kpi: KPIConfig = KPIConfig()
    alerts: AlertsConfig = AlertsConfig()
    incidents: IncidentConfig = IncidentConfig()
    storage: StorageConfig = StorageConfig()
    simulator: SimulatorConfig = SimulatorConfig()
    web: WebConfig = WebConfig()
    logging: LoggingConfig = LoggingConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
