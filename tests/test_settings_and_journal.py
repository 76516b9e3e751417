from __future__ import annotations

from datetime import date

import pytest

from stock_journal.errors import AuthenticationError, NotFoundError, ValidationError
from stock_journal.services.journal import JournalService


@pytest.fixture
def journal(store):
    return JournalService(store)


def test_settings_created_lazily_with_default_cash(user, settings_service):
    settings = settings_service.get_settings(user)
    assert settings.starting_cash == 100000.0
    assert settings.email == "trader@example.com"


def test_update_settings_validates_fields(user, settings_service):
    updated = settings_service.update_settings(user, {"starting_cash": 50000.0, "name": "Sam"})
    assert updated.starting_cash == 50000.0
    assert updated.name == "Sam"
    with pytest.raises(ValidationError):
        settings_service.update_settings(user, {"user_id": "someone-else"})
    with pytest.raises(ValidationError):
        settings_service.update_settings(user, {"starting_cash": -1.0})


def test_update_settings_rejects_null_for_required_fields(user, settings_service):
    for field in ("starting_cash", "performance_alerts", "automated_trade_logging"):
        with pytest.raises(ValidationError):
            settings_service.update_settings(user, {field: None})
    cleared = settings_service.update_settings(user, {"bio": None})
    assert cleared.bio is None
    assert cleared.starting_cash == 100000.0


def test_settings_need_user(settings_service):
    with pytest.raises(AuthenticationError):
        settings_service.get_settings(None)


def test_journal_entry_upsert(user, journal):
    with pytest.raises(NotFoundError):
        journal.get_entry(user, date(2024, 3, 15))
    journal.save_entry(user, date(2024, 3, 15), reflection="patient entries")
    journal.save_entry(user, date(2024, 3, 15), reflection="patient entries", lessons_learned="cut faster")
    entry = journal.get_entry(user, date(2024, 3, 15))
    assert entry.reflection == "patient entries"
    assert entry.lessons_learned == "cut faster"


def test_missed_trades(user, journal):
    missed = journal.add_missed_trade(user, date(2024, 3, 14), " nvda ", reason="hesitated", potential_profit=800.0)
    assert missed.missed_id
    assert missed.ticker == "NVDA"
    assert [item.ticker for item in journal.list_missed_trades(user)] == ["NVDA"]
    with pytest.raises(ValidationError):
        journal.add_missed_trade(user, date(2024, 3, 14), "")


def test_watchlist(user, journal):
    journal.watch(user, "aapl", "earnings gap")
    journal.watch(user, "AAPL", "tightening")
    items = journal.watchlist(user)
    assert [(item.ticker, item.notes) for item in items] == [("AAPL", "tightening")]
    journal.unwatch(user, "aapl")
    assert journal.watchlist(user) == []
    with pytest.raises(NotFoundError):
        journal.unwatch(user, "AAPL")
