"""
Gateway Configuration

Two layers:
- Settings: process settings from environment / .env (pydantic-settings)
- GatewayConfig: analysis and write-queue tunables (dataclasses),
  optionally overridden from a YAML file

Tunables are process-wide, not per group.
"""

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigError


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Create a .env file with:
    - TRUSTGATE_API_KEY=shared-secret-sent-by-devices
    - TRUSTGATE_LEDGER_URL=https://ledger-relay.example.org
    - TRUSTGATE_LEDGER_API_KEY=relay-key
    """
    model_config = SettingsConfigDict(
        env_prefix="TRUSTGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Shared secret expected in the x-api-key header. Empty rejects everything.
    api_key: str = ""
    default_threshold: int = 60

    # Persisted state
    data_dir: str = "./data"
    events_db: str = "events.db"
    thresholds_file: str = "thresholds.json"

    # Ledger relay (empty URL = ledger disabled)
    ledger_url: str = ""
    ledger_api_key: str = ""
    ledger_timeout_s: float = 15.0

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 3000
    allowed_origins: str = "*"

    # Optional YAML tunables file
    config_file: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json | text

    @property
    def events_db_path(self) -> Path:
        """Absolute path of the SQLite event log."""
        return Path(self.data_dir) / self.events_db

    @property
    def thresholds_path(self) -> Path:
        """Absolute path of the threshold map file."""
        return Path(self.data_dir) / self.thresholds_file

    @property
    def origins(self) -> list[str]:
        """CORS origins as a list."""
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings."""
    return Settings()


@dataclass
class AnalysisSettings:
    """Trend analysis constants"""
    window_events: int = 20
    drop_delta: float = 10
    instability_delta: float = 8
    drop_count_threshold: int = 3
    min_samples_for_confirm: int = 6
    instability_fraction: float = 0.4
    slope_threshold: float = -2.0
    threshold_step: int = 5
    threshold_floor: int = 10
    history_lookback_s: int = 7 * 24 * 3600
    history_timeout_s: float = 10.0


@dataclass
class QueueSettings:
    """Durable write queue policy"""
    max_attempts: int = 4
    backoff_base_ms: int = 1000
    post_success_delay_ms: int = 500
    max_pending: int = 1000


@dataclass
class GatewayConfig:
    """Complete tunables set"""
    analysis: AnalysisSettings = field(default_factory=AnalysisSettings)
    queue: QueueSettings = field(default_factory=QueueSettings)


def load_gateway_config(data: dict) -> GatewayConfig:
    """Load GatewayConfig from dictionary (e.g., from a YAML file)"""
    analysis_data = data.get("analysis", {}) or {}
    defaults = AnalysisSettings()
    analysis = AnalysisSettings(
        window_events=int(analysis_data.get("window_events", defaults.window_events)),
        drop_delta=float(analysis_data.get("drop_delta", defaults.drop_delta)),
        instability_delta=float(analysis_data.get("instability_delta", defaults.instability_delta)),
        drop_count_threshold=int(analysis_data.get("drop_count_threshold", defaults.drop_count_threshold)),
        min_samples_for_confirm=int(
            analysis_data.get("min_samples_for_confirm", defaults.min_samples_for_confirm)
        ),
        instability_fraction=float(
            analysis_data.get("instability_fraction", defaults.instability_fraction)
        ),
        slope_threshold=float(analysis_data.get("slope_threshold", defaults.slope_threshold)),
        threshold_step=int(analysis_data.get("threshold_step", defaults.threshold_step)),
        threshold_floor=int(analysis_data.get("threshold_floor", defaults.threshold_floor)),
        history_lookback_s=int(analysis_data.get("history_lookback_s", defaults.history_lookback_s)),
        history_timeout_s=float(analysis_data.get("history_timeout_s", defaults.history_timeout_s)),
    )

    queue_data = data.get("queue", {}) or {}
    queue_defaults = QueueSettings()
    queue = QueueSettings(
        max_attempts=int(queue_data.get("max_attempts", queue_defaults.max_attempts)),
        backoff_base_ms=int(queue_data.get("backoff_base_ms", queue_defaults.backoff_base_ms)),
        post_success_delay_ms=int(
            queue_data.get("post_success_delay_ms", queue_defaults.post_success_delay_ms)
        ),
        max_pending=int(queue_data.get("max_pending", queue_defaults.max_pending)),
    )

    if analysis.window_events < 2:
        raise ConfigError("analysis.window_events must be at least 2")
    if queue.max_attempts < 1:
        raise ConfigError("queue.max_attempts must be at least 1")

    return GatewayConfig(analysis=analysis, queue=queue)


def load_gateway_config_file(path: str | Path | None) -> GatewayConfig:
    """
    Load tunables from a YAML file.

    Missing path or file falls back to defaults.

    Raises:
        ConfigError: If the file exists but cannot be parsed
    """
    if not path:
        return GatewayConfig()

    path = Path(path)
    if not path.exists():
        return GatewayConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data: Any = yaml.safe_load(f) or {}
    except (yaml.YAMLError, OSError) as e:
        raise ConfigError(f"cannot read {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")

    return load_gateway_config(data)
