from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - Python <3.11
    import tomli as tomllib

CONFIG_PATH_ENV = "STOCK_JOURNAL_CONFIG"
DB_PATH_ENV = "STOCK_JOURNAL_DB_PATH"


@dataclass(frozen=True)
class AppSettings:
    db_path: Path
    host: str
    port: int
    reload: bool
    log_level: str


@dataclass(frozen=True)
class CapitalSettings:
    timezone: str
    default_starting_cash: float


@dataclass(frozen=True)
class MarketDataSettings:
    relay_url: str
    script_url: str
    timeout_seconds: float


@dataclass(frozen=True)
class CacheSettings:
    ohlcv_max_entries: int
    ohlcv_ttl_seconds: float
    trade_details_max_entries: int
    trade_details_ttl_seconds: float
    quote_max_entries: int
    quote_ttl_seconds: float


@dataclass(frozen=True)
class AppConfig:
    app: AppSettings
    capital: CapitalSettings
    market_data: MarketDataSettings
    cache: CacheSettings


def load_app_config(path: Path | None = None, env: Mapping[str, str] | None = None) -> AppConfig:
    env = os.environ if env is None else env
    config_path = path or Path(env.get(CONFIG_PATH_ENV) or "config/app.toml")
    raw: Mapping[str, Any] = {}
    if config_path.exists():
        raw = tomllib.loads(config_path.read_text(encoding="utf-8"))

    app_raw = _section(raw, "app")
    capital_raw = _section(raw, "capital")
    market_raw = _section(raw, "market_data")
    cache_raw = _section(raw, "cache")

    db_path = env.get(DB_PATH_ENV) or app_raw.get("db_path", "data/stock_journal.sqlite")
    app = AppSettings(
        db_path=Path(db_path),
        host=str(app_raw.get("host", "127.0.0.1")),
        port=int(app_raw.get("port", 8000)),
        reload=bool(app_raw.get("reload", False)),
        log_level=str(app_raw.get("log_level", "INFO")).strip().upper() or "INFO",
    )

    capital = CapitalSettings(
        timezone=str(capital_raw.get("timezone", "America/New_York")).strip() or "America/New_York",
        default_starting_cash=float(capital_raw.get("default_starting_cash", 0.0)),
    )

    market_data = MarketDataSettings(
        relay_url=str(market_raw.get("relay_url", "http://localhost:3001/api/market-data")).strip(),
        script_url=str(market_raw.get("script_url", "")).strip(),
        timeout_seconds=float(market_raw.get("timeout_seconds", 30.0)),
    )

    cache = CacheSettings(
        ohlcv_max_entries=_positive_int(cache_raw.get("ohlcv_max_entries"), 50),
        ohlcv_ttl_seconds=float(cache_raw.get("ohlcv_ttl_seconds", 24 * 60 * 60)),
        trade_details_max_entries=_positive_int(cache_raw.get("trade_details_max_entries"), 100),
        trade_details_ttl_seconds=float(cache_raw.get("trade_details_ttl_seconds", 5 * 60)),
        quote_max_entries=_positive_int(cache_raw.get("quote_max_entries"), 200),
        quote_ttl_seconds=float(cache_raw.get("quote_ttl_seconds", 5 * 60)),
    )

    return AppConfig(app=app, capital=capital, market_data=market_data, cache=cache)


def _section(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key)
    if isinstance(value, Mapping):
        return value
    return {}


def _positive_int(value: Any, default: int) -> int:
    if value in (None, ""):
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default
