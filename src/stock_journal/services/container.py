from __future__ import annotations

from dataclasses import dataclass

from stock_journal.config.app_config import AppConfig
from stock_journal.pricing.cache import ExpiringLRUCache
from stock_journal.pricing.market_data import MarketDataClient
from stock_journal.services.capital import CapitalService, QuoteProvider
from stock_journal.services.journal import JournalService
from stock_journal.services.settings import SettingsService
from stock_journal.services.trades import TradeService
from stock_journal.storage.sqlite_store import JournalStore


@dataclass
class JournalServices:
    store: JournalStore
    settings: SettingsService
    capital: CapitalService
    trades: TradeService
    journal: JournalService
    market_data: MarketDataClient | None


def build_services(
    config: AppConfig,
    store: JournalStore | None = None,
    market_data: MarketDataClient | None = None,
    quotes: QuoteProvider | None = None,
) -> JournalServices:
    """Wire one set of services around a single store for the process lifetime."""
    store = store or JournalStore.open(config.app.db_path)
    if market_data is None:
        market_data = MarketDataClient(config.market_data, config.cache)
    settings = SettingsService(store, config.capital.default_starting_cash)
    capital = CapitalService(
        store,
        settings,
        quotes or market_data,
        timezone_name=config.capital.timezone,
    )
    trades = TradeService(
        store,
        capital,
        market_data,
        details_cache=ExpiringLRUCache(
            config.cache.trade_details_max_entries,
            config.cache.trade_details_ttl_seconds,
        ),
    )
    return JournalServices(
        store=store,
        settings=settings,
        capital=capital,
        trades=trades,
        journal=JournalService(store),
        market_data=market_data,
    )
