from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - Python <3.11
    import tomli as tomllib

CONFIG_ENV_VAR = "DRAWDOWN_JOURNAL_CONFIG"
DEFAULT_CONFIG_PATH = Path("config/app.toml")


@dataclass(frozen=True)
class AppSettings:
    db_path: Path
    host: str
    port: int
    reload: bool


@dataclass(frozen=True)
class PricingSettings:
    base_url: str
    timeout_seconds: float
    retry_attempts: int
    retry_backoff_seconds: float
    batch_size: int
    pause_between_batches_ms: int
    utc_offset_minutes: int
    timeframe: str
    pad_seconds: int
    use_local_cache: bool


@dataclass(frozen=True)
class AnalysisSettings:
    timeout_seconds: float | None
    debug: bool


@dataclass(frozen=True)
class LoggingSettings:
    level: str
    logs_dir: Path | None


@dataclass(frozen=True)
class AppConfig:
    app: AppSettings
    pricing: PricingSettings
    analysis: AnalysisSettings
    logging: LoggingSettings


def load_app_config(path: Path | None = None) -> AppConfig:
    config_path = path or _default_config_path()
    raw: Mapping[str, Any] = {}
    if config_path.exists():
        raw = tomllib.loads(config_path.read_text(encoding="utf-8"))

    app_raw = _section(raw, "app")
    pricing_raw = _section(raw, "pricing")
    analysis_raw = _section(raw, "analysis")
    logging_raw = _section(raw, "logging")

    app = AppSettings(
        db_path=Path(app_raw.get("db_path", "data/drawdown_journal.sqlite")),
        host=str(app_raw.get("host", "127.0.0.1")),
        port=int(app_raw.get("port", 8000)),
        reload=bool(app_raw.get("reload", False)),
    )

    pricing = PricingSettings(
        base_url=str(pricing_raw.get("base_url", "https://datafeed.dukascopy.com/datafeed")),
        timeout_seconds=float(pricing_raw.get("timeout_seconds", 30.0)),
        retry_attempts=int(pricing_raw.get("retry_attempts", 3)),
        retry_backoff_seconds=float(pricing_raw.get("retry_backoff_seconds", 0.75)),
        batch_size=int(pricing_raw.get("batch_size", 10)),
        pause_between_batches_ms=int(pricing_raw.get("pause_between_batches_ms", 1000)),
        utc_offset_minutes=int(pricing_raw.get("utc_offset_minutes", 0)),
        timeframe=str(pricing_raw.get("timeframe", "1m")),
        pad_seconds=int(pricing_raw.get("pad_seconds", 60)),
        use_local_cache=bool(pricing_raw.get("use_local_cache", False)),
    )

    analysis = AnalysisSettings(
        timeout_seconds=_float_or_none(analysis_raw.get("timeout_seconds", 120.0)),
        debug=bool(analysis_raw.get("debug", False)),
    )

    logging_settings = LoggingSettings(
        level=str(logging_raw.get("level", "INFO")).strip().upper() or "INFO",
        logs_dir=_path_or_none(logging_raw.get("logs_dir")),
    )

    return AppConfig(app=app, pricing=pricing, analysis=analysis, logging=logging_settings)


def _default_config_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR, "").strip()
    return Path(override) if override else DEFAULT_CONFIG_PATH


def _section(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key)
    if isinstance(value, Mapping):
        return value
    return {}


def _float_or_none(value: Any) -> float | None:
    if value in (None, "", 0):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _path_or_none(value: Any) -> Path | None:
    if value in (None, ""):
        return None
    return Path(str(value))
