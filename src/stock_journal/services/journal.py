from __future__ import annotations

from datetime import date

from stock_journal.errors import NotFoundError, ValidationError
from stock_journal.models import JournalEntry, MissedTrade, UserContext, WatchlistItem
from stock_journal.services.settings import require_user
from stock_journal.storage.sqlite_store import JournalStore


class JournalService:
    """Daily reflections, missed trades and the watchlist."""

    def __init__(self, store: JournalStore) -> None:
        self._store = store

    def get_entry(self, user: UserContext | None, day: date) -> JournalEntry:
        user = require_user(user)
        entry = self._store.get_journal_entry(user.user_id, day)
        if entry is None:
            raise NotFoundError(f"No journal entry for {day}.")
        return entry

    def save_entry(
        self,
        user: UserContext | None,
        day: date,
        reflection: str | None = None,
        market_notes: str | None = None,
        lessons_learned: str | None = None,
    ) -> JournalEntry:
        user = require_user(user)
        return self._store.upsert_journal_entry(
            JournalEntry(
                user_id=user.user_id,
                date=day,
                reflection=reflection,
                market_notes=market_notes,
                lessons_learned=lessons_learned,
            )
        )

    def add_missed_trade(
        self,
        user: UserContext | None,
        day: date,
        ticker: str,
        reason: str | None = None,
        notes: str | None = None,
        potential_profit: float | None = None,
    ) -> MissedTrade:
        user = require_user(user)
        ticker = _ticker(ticker)
        return self._store.insert_missed_trade(
            MissedTrade(
                missed_id=None,
                user_id=user.user_id,
                date=day,
                ticker=ticker,
                reason=reason,
                notes=notes,
                potential_profit=potential_profit,
            )
        )

    def list_missed_trades(self, user: UserContext | None) -> list[MissedTrade]:
        user = require_user(user)
        return self._store.list_missed_trades(user.user_id)

    def watch(self, user: UserContext | None, ticker: str, notes: str | None = None) -> WatchlistItem:
        user = require_user(user)
        return self._store.upsert_watchlist_item(WatchlistItem(user_id=user.user_id, ticker=_ticker(ticker), notes=notes))

    def watchlist(self, user: UserContext | None) -> list[WatchlistItem]:
        user = require_user(user)
        return self._store.list_watchlist(user.user_id)

    def unwatch(self, user: UserContext | None, ticker: str) -> None:
        user = require_user(user)
        if not self._store.delete_watchlist_item(user.user_id, _ticker(ticker)):
            raise NotFoundError(f"{ticker} is not on the watchlist.")


def _ticker(value: str) -> str:
    ticker = (value or "").strip().upper()
    if not ticker:
        raise ValidationError("Ticker is required.")
    return ticker
