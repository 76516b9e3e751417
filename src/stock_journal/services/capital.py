from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterable, Mapping, Protocol
from zoneinfo import ZoneInfo

from stock_journal.errors import MarketDataError, NoCapitalDataError
from stock_journal.metrics.drawdown import compute_drawdown_metrics
from stock_journal.metrics.equity import (
    bucket_equity_curve,
    build_detailed_equity_curve,
    capital_breakdown,
    historical_capital_series,
    local_date,
    reduce_daily_stats,
)
from stock_journal.models import (
    CapitalBreakdown,
    CapitalSnapshot,
    DailyCapitalStats,
    DrawdownMetrics,
    EndOfDaySnapshot,
    EquityPoint,
    InterimSnapshot,
    ManualUpdate,
    SnapshotMetadata,
    Trade,
    TradeMark,
    TradeStatus,
    UserContext,
)
from stock_journal.pricing.market_data import Quote
from stock_journal.services.settings import SettingsService, require_user
from stock_journal.storage.sqlite_store import JournalStore

logger = logging.getLogger(__name__)


class QuoteProvider(Protocol):
    def get_batch_quotes(self, user_id: str, tickers: Iterable[str]) -> Mapping[str, Quote]: ...


class CapitalService:
    def __init__(
        self,
        store: JournalStore,
        settings: SettingsService,
        quotes: QuoteProvider | None = None,
        *,
        timezone_name: str = "America/New_York",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._quotes = quotes
        self._tz = ZoneInfo(timezone_name)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def tz(self) -> ZoneInfo:
        return self._tz

    def today(self) -> date:
        return local_date(self._clock(), self._tz)

    def record_capital_change(
        self,
        user: UserContext | None,
        amount: float,
        metadata: SnapshotMetadata | None = None,
        on: date | None = None,
    ) -> CapitalSnapshot:
        user = require_user(user)
        day = on or self.today()
        try:
            snapshot = self._store.upsert_capital(user.user_id, day, amount, metadata, recorded_at=self._clock())
        except sqlite3.Error:
            logger.exception("Failed to record capital %.2f for %s on %s", amount, user.user_id, day)
            raise
        logger.debug(
            "Recorded capital %.2f for %s on %s (high %.2f, low %.2f)",
            amount,
            user.user_id,
            day,
            snapshot.day_high,
            snapshot.day_low,
        )
        return snapshot

    def capital_breakdown(
        self,
        user: UserContext | None,
        quotes: Mapping[str, Quote | float] | None = None,
    ) -> CapitalBreakdown:
        user = require_user(user)
        trades = self._store.list_trades(user.user_id)
        return self._breakdown(user, trades, self._resolve_prices(user, trades, quotes))

    def portfolio(self, user: UserContext | None) -> tuple[CapitalBreakdown, dict[str, float]]:
        """Capital breakdown and the quotes behind it, fetched in a single batch.

        The price map is empty when quotes are unavailable.
        """
        user = require_user(user)
        trades = self._store.list_trades(user.user_id)
        prices = self._resolve_prices(user, trades, None)
        return self._breakdown(user, trades, prices), prices or {}

    def calculate_current_capital(
        self,
        user: UserContext | None,
        quotes: Mapping[str, Quote | float] | None = None,
    ) -> float:
        return self.capital_breakdown(user, quotes).total

    def calculate_drawdown_metrics(self, user: UserContext | None) -> DrawdownMetrics:
        user = require_user(user)
        return compute_drawdown_metrics(self._store.list_capital(user.user_id))

    def calculate_detailed_equity_curve(self, user: UserContext | None) -> list[EquityPoint]:
        user = require_user(user)
        settings = self._settings.get_settings(user)
        trades = self._store.list_trades(user.user_id, TradeStatus.CLOSED)
        snapshots = self._store.list_capital(user.user_id)
        return build_detailed_equity_curve(
            trades,
            snapshots,
            settings.starting_cash,
            self._account_created(user),
            self._tz,
        )

    def get_daily_capital_stats(self, user: UserContext | None, day: date) -> DailyCapitalStats:
        user = require_user(user)
        stats = reduce_daily_stats(day, self._store.list_capital(user.user_id, day, day))
        if stats is None:
            raise NoCapitalDataError(user.user_id, day)
        return stats

    def process_historical_trades(self, user: UserContext | None) -> list[CapitalSnapshot]:
        user = require_user(user)
        settings = self._settings.get_settings(user)
        trades = self._store.list_trades(user.user_id, TradeStatus.CLOSED)
        recorded: list[CapitalSnapshot] = []
        for day, realized, count, capital in historical_capital_series(trades, settings.starting_cash, self._tz):
            metadata = EndOfDaySnapshot(realized_pnl=realized, trade_count=count)
            recorded.append(self.record_capital_change(user, capital, metadata, on=day))
        logger.info("Backfilled %d capital snapshots for %s", len(recorded), user.user_id)
        return recorded

    def get_current_capital(self, user: UserContext | None) -> float:
        user = require_user(user)
        latest = self._store.latest_capital(user.user_id)
        if latest is not None:
            return latest.capital_amount
        return self._settings.get_settings(user).starting_cash

    def track_capital_change(self, user: UserContext | None, trades: list[Trade] | None = None) -> float:
        """Record an interim snapshot from the persisted P&L of the given trades."""
        user = require_user(user)
        if trades is None:
            trades = self._store.list_trades(user.user_id)
        settings = self._settings.get_settings(user)
        unrealized = sum(trade.unrealized_pnl or 0.0 for trade in trades)
        realized = sum(trade.realized_pnl or 0.0 for trade in trades)
        capital = settings.starting_cash + unrealized + realized
        metadata = InterimSnapshot(
            realized_pnl=realized,
            unrealized_pnl=unrealized,
            trade_count=len(trades),
            trade_details=tuple(TradeMark(trade.ticker, trade.unrealized_pnl or 0.0) for trade in trades),
        )
        self.record_capital_change(user, capital, metadata)
        return capital

    def record_daily_capital(
        self,
        user: UserContext | None,
        capital: float,
        *,
        end_of_day: bool = True,
    ) -> CapitalSnapshot:
        user = require_user(user)
        trades = self._store.list_trades(user.user_id)
        open_trades = [trade for trade in trades if trade.is_open]
        kind = EndOfDaySnapshot if end_of_day else InterimSnapshot
        metadata = kind(
            realized_pnl=sum(trade.realized_pnl for trade in trades),
            unrealized_pnl=sum(trade.unrealized_pnl for trade in open_trades),
            trade_count=len(open_trades),
            trade_details=tuple(TradeMark(trade.ticker, trade.unrealized_pnl) for trade in open_trades),
        )
        return self.record_capital_change(user, capital, metadata)

    def update_current_capital(
        self,
        user: UserContext | None,
        amount: float,
        note: str | None = None,
    ) -> CapitalSnapshot:
        user = require_user(user)
        previous = self.get_current_capital(user)
        self._settings.update_settings(user, {"current_capital": amount})
        return self.record_capital_change(user, amount, ManualUpdate(note=note, previous_capital=previous))

    def record_cash_flow(self, user: UserContext | None, delta: float, note: str | None = None) -> CapitalSnapshot:
        """Apply a deposit (positive) or withdrawal (negative) and snapshot the new capital."""
        user = require_user(user)
        previous = self.calculate_current_capital(user)
        self._settings.adjust_starting_cash(user, delta)
        label = note or ("Deposit" if delta >= 0 else "Withdrawal")
        return self.record_capital_change(
            user,
            previous + delta,
            ManualUpdate(note=label, previous_capital=previous),
        )

    def calculate_equity_curve(
        self,
        user: UserContext | None,
        start: date | None = None,
        end: date | None = None,
        interval: str = "daily",
    ) -> list[dict[str, object]]:
        user = require_user(user)
        end = end or self.today()
        start = start or end - timedelta(days=30)
        return bucket_equity_curve(self._store.list_capital(user.user_id, start, end), interval)

    def _breakdown(
        self,
        user: UserContext,
        trades: list[Trade],
        prices: dict[str, float] | None,
    ) -> CapitalBreakdown:
        settings = self._settings.get_settings(user)
        breakdown = capital_breakdown(settings.starting_cash, trades, prices)
        if breakdown.stale_tickers:
            logger.warning(
                "Using persisted unrealized P&L for %s: %s",
                user.user_id,
                ", ".join(breakdown.stale_tickers),
            )
        return breakdown

    def _account_created(self, user: UserContext) -> date:
        created = user.created_at
        if created is None:
            stored = self._store.get_user(user.user_id)
            created = stored.created_at if stored is not None else None
        if created is None:
            return self.today()
        return local_date(created, self._tz)

    def _resolve_prices(
        self,
        user: UserContext,
        trades: list[Trade],
        quotes: Mapping[str, Quote | float] | None,
    ) -> dict[str, float] | None:
        if quotes is not None:
            return {ticker.upper(): _price(value) for ticker, value in quotes.items()}
        tickers = sorted({trade.ticker for trade in trades if trade.is_open})
        if not tickers:
            return {}
        if self._quotes is None:
            logger.warning("No quote provider configured; using persisted unrealized P&L.")
            return None
        try:
            fetched = self._quotes.get_batch_quotes(user.user_id, tickers)
        except MarketDataError:
            logger.warning("Quote fetch failed for %s; using persisted unrealized P&L.", user.user_id, exc_info=True)
            return None
        return {ticker.upper(): _price(value) for ticker, value in fetched.items()}


def _price(value: Quote | float) -> float:
    if isinstance(value, Quote):
        return value.price
    return float(value)
