"""Shared fixtures: in-memory stores, a fixed clock and a scripted quote provider."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from stock_journal.config.app_config import load_app_config
from stock_journal.errors import MarketDataError
from stock_journal.pricing.market_data import Quote
from stock_journal.services.capital import CapitalService
from stock_journal.services.container import build_services
from stock_journal.services.settings import SettingsService
from stock_journal.services.trades import TradeService
from stock_journal.storage.sqlite_store import JournalStore

FIXED_NOW = datetime(2024, 3, 15, 18, 0, tzinfo=timezone.utc)


class FakeQuotes:
    """Quote provider returning fixed prices, or failing when ``fail`` is set."""

    def __init__(self, prices: dict[str, float] | None = None, fail: bool = False) -> None:
        self.prices = dict(prices or {})
        self.fail = fail
        self.calls: list[list[str]] = []

    def get_batch_quotes(self, user_id, tickers):
        tickers = [ticker.upper() for ticker in tickers]
        self.calls.append(tickers)
        if self.fail:
            raise MarketDataError("quote endpoint unavailable")
        return {
            ticker: Quote(price=self.prices[ticker], timestamp=FIXED_NOW)
            for ticker in tickers
            if ticker in self.prices
        }


@pytest.fixture
def app_config(tmp_path: Path):
    return load_app_config(tmp_path / "missing.toml", env={})


@pytest.fixture
def store():
    store = JournalStore.open(":memory:")
    yield store
    store.close()


@pytest.fixture
def user(store):
    return store.ensure_user("user-1", "trader@example.com", datetime(2024, 1, 2, 15, 0, tzinfo=timezone.utc))


@pytest.fixture
def quotes():
    return FakeQuotes()


@pytest.fixture
def settings_service(store):
    return SettingsService(store, default_starting_cash=100000.0)


@pytest.fixture
def capital_service(store, settings_service, quotes):
    return CapitalService(store, settings_service, quotes, clock=lambda: FIXED_NOW)


@pytest.fixture
def trade_service(store, capital_service):
    return TradeService(store, capital_service, clock=lambda: FIXED_NOW)


@pytest.fixture
def services(app_config, store, quotes):
    return build_services(app_config, store=store, quotes=quotes)
