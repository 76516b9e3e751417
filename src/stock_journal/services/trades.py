from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, Sequence

from stock_journal.errors import MarketDataError, NotFoundError
from stock_journal.metrics.excursions import apply_excursions
from stock_journal.models import AssetType, Direction, Trade, TradeAction, TradeStatus, UserContext
from stock_journal.pricing.cache import ExpiringLRUCache
from stock_journal.pricing.market_data import MarketDataClient
from stock_journal.reconstruct import positions
from stock_journal.services.capital import CapitalService
from stock_journal.services.settings import require_user
from stock_journal.storage.sqlite_store import JournalStore

logger = logging.getLogger(__name__)


class TradeService:
    def __init__(
        self,
        store: JournalStore,
        capital: CapitalService,
        market_data: MarketDataClient | None = None,
        *,
        details_cache: ExpiringLRUCache[Trade] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._capital = capital
        self._market_data = market_data
        self._details = details_cache if details_cache is not None else ExpiringLRUCache(100, 5 * 60)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def list_trades(self, user: UserContext | None, status: TradeStatus | None = None) -> list[Trade]:
        user = require_user(user)
        return self._store.list_trades(user.user_id, status)

    def get_trade(self, user: UserContext | None, trade_id: str) -> Trade:
        user = require_user(user)
        key = (user.user_id, trade_id)
        cached = self._details.get(key)
        if cached is not None:
            return cached
        trade = self._store.get_trade(user.user_id, trade_id)
        if trade is None:
            raise NotFoundError(f"Trade {trade_id} not found.")
        self._details.set(key, trade)
        return trade

    def create_trade(
        self,
        user: UserContext | None,
        ticker: str,
        direction: Direction,
        entry_price: float,
        shares: float,
        *,
        at: datetime | None = None,
        stop_loss_price: float | None = None,
        tiered: bool = True,
        asset_type: AssetType = AssetType.STOCK,
        strategy: str | None = None,
        setups: Iterable[str] = (),
        notes: str | None = None,
        position_risk_pct: float | None = None,
    ) -> Trade:
        user = require_user(user)
        trade = positions.open_position(
            user.user_id,
            ticker,
            direction,
            entry_price,
            shares,
            at or self._clock(),
            stop_loss_price=stop_loss_price,
            tiered=tiered,
            asset_type=asset_type,
            strategy=strategy,
            setups=setups,
            notes=notes,
            position_risk_pct=position_risk_pct,
        )
        stored = self._store.insert_trade(trade)
        logger.info("Opened %s %s x%g @ %.2f for %s", direction.value, stored.ticker, shares, entry_price, user.user_id)
        return stored

    def import_trade(
        self,
        user: UserContext | None,
        ticker: str,
        direction: Direction,
        actions: Sequence[TradeAction],
        *,
        stop_loss_price: float | None = None,
        asset_type: AssetType = AssetType.STOCK,
        strategy: str | None = None,
        setups: Iterable[str] = (),
        notes: str | None = None,
    ) -> Trade:
        user = require_user(user)
        trade = positions.replay_actions(
            user.user_id,
            ticker,
            direction,
            actions,
            stop_loss_price=stop_loss_price,
            asset_type=asset_type,
            strategy=strategy,
            setups=setups,
            notes=notes,
        )
        return self._store.insert_trade(trade)

    def add_to_trade(
        self,
        user: UserContext | None,
        trade_id: str,
        price: float,
        shares: float,
        at: datetime | None = None,
    ) -> Trade:
        trade = self._load(user, trade_id)
        updated = positions.add_to_position(trade, price, shares, at or self._clock())
        return self._save(updated)

    def trim_trade(
        self,
        user: UserContext | None,
        trade_id: str,
        price: float,
        shares: float,
        at: datetime | None = None,
    ) -> Trade:
        trade = self._load(user, trade_id)
        updated = positions.sell_from_position(trade, price, shares, at or self._clock())
        saved = self._save(updated)
        self._capital.track_capital_change(user)
        return saved

    def close_trade(
        self,
        user: UserContext | None,
        trade_id: str,
        price: float,
        at: datetime | None = None,
    ) -> Trade:
        trade = self._load(user, trade_id)
        updated = positions.close_position(trade, price, at or self._clock())
        saved = self._save(updated)
        logger.info("Closed %s for %s, realized %.2f", saved.ticker, saved.user_id, saved.realized_pnl)
        self._capital.track_capital_change(user)
        return saved

    def update_notes(
        self,
        user: UserContext | None,
        trade_id: str,
        notes: str | None = None,
        mistakes: str | None = None,
    ) -> Trade:
        trade = self._load(user, trade_id)
        return self._save(positions.update_trade_notes(trade, notes, mistakes))

    def delete_trade(self, user: UserContext | None, trade_id: str) -> None:
        user = require_user(user)
        if not self._store.delete_trade(user.user_id, trade_id):
            raise NotFoundError(f"Trade {trade_id} not found.")
        self._details.invalidate((user.user_id, trade_id))

    def compute_trade_excursions(self, user: UserContext | None, trade_id: str) -> Trade:
        trade = self._load(user, trade_id)
        if self._market_data is None:
            raise MarketDataError("Market data client is not configured.")
        end = trade.exit_datetime or self._clock()
        low, high = self._market_data.fetch_high_low(trade.ticker, trade.entry_datetime, end)
        return self._save(apply_excursions(trade, low, high))

    def refresh_market_prices(self, user: UserContext | None) -> list[Trade]:
        """Mark open trades to the latest quotes and persist their unrealized P&L."""
        user = require_user(user)
        if self._market_data is None:
            raise MarketDataError("Market data client is not configured.")
        open_trades = self._store.list_trades(user.user_id, TradeStatus.OPEN)
        if not open_trades:
            return []
        quotes = self._market_data.get_batch_quotes(user.user_id, [trade.ticker for trade in open_trades])
        refreshed: list[Trade] = []
        for trade in open_trades:
            quote = quotes.get(trade.ticker.upper())
            if quote is None:
                logger.warning("No quote for %s; keeping last mark.", trade.ticker)
                refreshed.append(trade)
                continue
            refreshed.append(self._save(positions.mark_to_market(trade, quote.price)))
        return refreshed

    def _load(self, user: UserContext | None, trade_id: str) -> Trade:
        user = require_user(user)
        trade = self._store.get_trade(user.user_id, trade_id)
        if trade is None:
            raise NotFoundError(f"Trade {trade_id} not found.")
        return trade

    def _save(self, trade: Trade) -> Trade:
        stored = self._store.update_trade(trade)
        self._details.invalidate((stored.user_id, stored.trade_id))
        return stored
