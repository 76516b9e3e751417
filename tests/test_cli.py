from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from stock_journal.cli import main
from stock_journal.config.app_config import load_app_config
from stock_journal.models import Direction, EndOfDaySnapshot
from stock_journal.reconstruct.positions import close_position, open_position
from stock_journal.storage.sqlite_store import JournalStore


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    monkeypatch.delenv("STOCK_JOURNAL_DB_PATH", raising=False)
    db_path = tmp_path / "journal.sqlite"
    path = tmp_path / "app.toml"
    path.write_text(f'[app]\ndb_path = "{db_path.as_posix()}"\n\n[capital]\ndefault_starting_cash = 1000\n')
    store = JournalStore.open(db_path)
    user = store.ensure_user("cli-user", created_at=datetime(2024, 2, 1, tzinfo=timezone.utc))
    trade = open_position(user.user_id, "AAPL", Direction.LONG, 10.0, 10, datetime(2024, 1, 2, 15, tzinfo=timezone.utc))
    store.insert_trade(close_position(trade, 12.0, datetime(2024, 1, 3, 15, tzinfo=timezone.utc)))
    store.upsert_capital(user.user_id, date(2024, 2, 1), 1020.0)
    store.upsert_capital(user.user_id, date(2024, 2, 2), 900.0)
    store.close()
    return path


def test_backfill_command(config_path, capsys):
    assert main(["--config", str(config_path), "backfill", "--user", "cli-user"]) == 0
    assert "Recorded 1 capital snapshots" in capsys.readouterr().out


def test_drawdown_command(config_path, capsys):
    assert main(["--config", str(config_path), "drawdown", "--user", "cli-user"]) == 0
    out = capsys.readouterr().out
    assert "Max drawdown:" in out
    assert "recovery open" in out


def test_equity_command_prints_both_phases(config_path, capsys):
    assert main(["--config", str(config_path), "equity", "--user", "cli-user"]) == 0
    out = capsys.readouterr().out
    assert "historical" in out
    assert "snapshot" in out


def test_unknown_user_fails(config_path, capsys):
    assert main(["--config", str(config_path), "drawdown", "--user", "ghost"]) == 1
    assert "Unknown user" in capsys.readouterr().err


def test_snapshot_command_records_end_of_day_capital(config_path, capsys):
    assert main(["--config", str(config_path), "snapshot", "--user", "cli-user"]) == 0
    assert "Recorded capital 1020.00 for cli-user" in capsys.readouterr().out

    store = JournalStore.open(load_app_config(config_path, env={}).app.db_path)
    try:
        latest = store.latest_capital("cli-user")
    finally:
        store.close()
    assert latest.capital_amount == 1020.0
    assert isinstance(latest.metadata, EndOfDaySnapshot)
    assert latest.metadata.realized_pnl == 20.0
