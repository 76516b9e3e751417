from __future__ import annotations

import logging
from pathlib import Path

import pytest

from stock_journal.config.app_config import load_app_config
from stock_journal.logging_config import configure_logging
from stock_journal.models import (
    EndOfDaySnapshot,
    ManualUpdate,
    TradeMark,
    metadata_from_dict,
    metadata_from_json,
    metadata_to_json,
)


def test_defaults_when_file_missing(tmp_path: Path):
    config = load_app_config(tmp_path / "absent.toml", env={})
    assert config.app.port == 8000
    assert config.capital.timezone == "America/New_York"
    assert config.cache.ohlcv_max_entries == 50
    assert config.cache.trade_details_ttl_seconds == 300


def test_sections_and_env_overrides(tmp_path: Path):
    path = tmp_path / "app.toml"
    path.write_text(
        """
[app]
port = 9001
log_level = "debug"

[capital]
default_starting_cash = 25000

[cache]
quote_max_entries = -3
""",
        encoding="utf-8",
    )
    config = load_app_config(path, env={"STOCK_JOURNAL_DB_PATH": str(tmp_path / "journal.sqlite")})
    assert config.app.port == 9001
    assert config.app.log_level == "DEBUG"
    assert config.app.db_path == tmp_path / "journal.sqlite"
    assert config.capital.default_starting_cash == 25000.0
    assert config.cache.quote_max_entries == 200


def test_config_path_from_env(tmp_path: Path):
    path = tmp_path / "other.toml"
    path.write_text("[app]\nhost = \"0.0.0.0\"\n", encoding="utf-8")
    config = load_app_config(env={"STOCK_JOURNAL_CONFIG": str(path)})
    assert config.app.host == "0.0.0.0"


def test_configure_logging_installs_one_handler():
    configure_logging("DEBUG")
    configure_logging("INFO")
    logger = logging.getLogger("stock_journal")
    assert sum(1 for handler in logger.handlers if getattr(handler, "_stock_journal", False)) == 1
    assert logger.level == logging.INFO


def test_metadata_json_keeps_variant():
    snapshot = EndOfDaySnapshot(
        realized_pnl=120.0,
        unrealized_pnl=-20.0,
        trade_count=2,
        trade_details=(TradeMark("AAPL", -20.0),),
    )
    restored = metadata_from_json(metadata_to_json(snapshot))
    assert restored == snapshot

    manual = ManualUpdate(note="deposit", previous_capital=1000.0)
    assert metadata_from_json(metadata_to_json(manual)) == manual
    assert metadata_from_json(None) is None


def test_unknown_metadata_type_is_rejected():
    with pytest.raises(ValueError):
        metadata_from_dict({"type": "mystery"})
