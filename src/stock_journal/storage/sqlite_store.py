from __future__ import annotations

import functools
import json
import sqlite3
import threading
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

from stock_journal.models import (
    ActionType,
    AssetType,
    CapitalSnapshot,
    Direction,
    JournalEntry,
    MissedTrade,
    SnapshotMetadata,
    Trade,
    TradeAction,
    TradeStatus,
    UserContext,
    UserSettings,
    WatchlistItem,
    metadata_from_json,
    metadata_to_json,
)

MEMORY = ":memory:"


def connect(db_path: Path | str) -> sqlite3.Connection:
    if str(db_path) != MEMORY:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    # FastAPI runs sync endpoints on a worker pool.
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            user_id TEXT PRIMARY KEY,
            email TEXT,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS user_settings (
            user_id TEXT PRIMARY KEY REFERENCES users(user_id) ON DELETE CASCADE,
            starting_cash REAL NOT NULL DEFAULT 0,
            current_capital REAL,
            name TEXT,
            email TEXT,
            trading_experience TEXT,
            preferred_trading_style TEXT,
            bio TEXT,
            automated_trade_logging INTEGER NOT NULL DEFAULT 0,
            performance_alerts INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS trades (
            trade_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
            ticker TEXT NOT NULL,
            direction TEXT NOT NULL,
            asset_type TEXT NOT NULL,
            status TEXT NOT NULL,
            entry_datetime TEXT NOT NULL,
            entry_price REAL NOT NULL,
            total_shares REAL NOT NULL,
            remaining_shares REAL NOT NULL,
            total_cost REAL NOT NULL,
            exit_price REAL,
            exit_datetime TEXT,
            stop_loss_price REAL,
            stop_loss_33_percent REAL,
            stop_loss_66_percent REAL,
            r_target_2 REAL,
            r_target_3 REAL,
            open_risk REAL,
            risk_amount REAL,
            initial_position_risk REAL,
            risk_reward_ratio REAL,
            realized_pnl REAL NOT NULL DEFAULT 0,
            realized_pnl_percentage REAL NOT NULL DEFAULT 0,
            unrealized_pnl REAL NOT NULL DEFAULT 0,
            unrealized_pnl_percentage REAL NOT NULL DEFAULT 0,
            last_price REAL,
            market_value REAL NOT NULL DEFAULT 0,
            trimmed_percentage REAL NOT NULL DEFAULT 0,
            mae REAL,
            mfe REAL,
            mae_dollars REAL,
            mfe_dollars REAL,
            mae_r REAL,
            mfe_r REAL,
            holding_period_days INTEGER,
            strategy TEXT,
            setups TEXT NOT NULL DEFAULT '[]',
            notes TEXT,
            mistakes TEXT,
            action_types TEXT NOT NULL DEFAULT '[]',
            action_datetimes TEXT NOT NULL DEFAULT '[]',
            action_prices TEXT NOT NULL DEFAULT '[]',
            action_shares TEXT NOT NULL DEFAULT '[]',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_trades_user_status ON trades(user_id, status)")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS capital_changes (
            user_id TEXT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
            date TEXT NOT NULL,
            capital_amount REAL NOT NULL,
            day_open REAL NOT NULL,
            day_high REAL NOT NULL,
            day_low REAL NOT NULL,
            metadata_json TEXT,
            recorded_at TEXT NOT NULL,
            UNIQUE (user_id, date)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS journal_entries (
            user_id TEXT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
            date TEXT NOT NULL,
            reflection TEXT,
            market_notes TEXT,
            lessons_learned TEXT,
            updated_at TEXT NOT NULL,
            UNIQUE (user_id, date)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS missed_trades (
            missed_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
            date TEXT NOT NULL,
            ticker TEXT NOT NULL,
            reason TEXT,
            notes TEXT,
            potential_profit REAL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS watchlist (
            user_id TEXT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
            ticker TEXT NOT NULL,
            notes TEXT,
            added_at TEXT NOT NULL,
            PRIMARY KEY (user_id, ticker)
        )
        """
    )
    conn.commit()


def _synchronized(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


class JournalStore:
    """Row access for one database; every query is scoped to an explicit user id."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        # One connection is shared by the worker threads; a write and its
        # read-back run under the lock so transactions never interleave.
        self._lock = threading.RLock()

    @classmethod
    def open(cls, db_path: Path | str) -> "JournalStore":
        conn = connect(db_path)
        init_db(conn)
        return cls(conn)

    @_synchronized
    def close(self) -> None:
        self._conn.close()

    # users

    @_synchronized
    def ensure_user(self, user_id: str, email: str | None = None, created_at: datetime | None = None) -> UserContext:
        created = created_at or _utcnow()
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO users (user_id, email, created_at) VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET email = COALESCE(excluded.email, users.email)
                """,
                (user_id, email, _ts(created)),
            )
        user = self.get_user(user_id)
        assert user is not None
        return user

    @_synchronized
    def get_user(self, user_id: str) -> UserContext | None:
        row = self._conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return UserContext(user_id=row["user_id"], email=row["email"], created_at=_parse_ts(row["created_at"]))

    # settings

    @_synchronized
    def get_settings(self, user_id: str) -> UserSettings | None:
        row = self._conn.execute("SELECT * FROM user_settings WHERE user_id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return UserSettings(
            user_id=row["user_id"],
            starting_cash=row["starting_cash"],
            current_capital=row["current_capital"],
            name=row["name"],
            email=row["email"],
            trading_experience=row["trading_experience"],
            preferred_trading_style=row["preferred_trading_style"],
            bio=row["bio"],
            automated_trade_logging=bool(row["automated_trade_logging"]),
            performance_alerts=bool(row["performance_alerts"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @_synchronized
    def upsert_settings(self, settings: UserSettings) -> UserSettings:
        now = _utcnow()
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO user_settings (
                    user_id, starting_cash, current_capital, name, email, trading_experience,
                    preferred_trading_style, bio, automated_trade_logging, performance_alerts,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    starting_cash = excluded.starting_cash,
                    current_capital = excluded.current_capital,
                    name = excluded.name,
                    email = excluded.email,
                    trading_experience = excluded.trading_experience,
                    preferred_trading_style = excluded.preferred_trading_style,
                    bio = excluded.bio,
                    automated_trade_logging = excluded.automated_trade_logging,
                    performance_alerts = excluded.performance_alerts,
                    updated_at = excluded.updated_at
                """,
                (
                    settings.user_id,
                    settings.starting_cash,
                    settings.current_capital,
                    settings.name,
                    settings.email,
                    settings.trading_experience,
                    settings.preferred_trading_style,
                    settings.bio,
                    int(settings.automated_trade_logging),
                    int(settings.performance_alerts),
                    _ts(settings.created_at or now),
                    _ts(now),
                ),
            )
        stored = self.get_settings(settings.user_id)
        assert stored is not None
        return stored

    # trades

    @_synchronized
    def insert_trade(self, trade: Trade) -> Trade:
        trade_id = trade.trade_id or uuid4().hex
        row = _trade_row(trade, trade_id)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        with self._conn:
            self._conn.execute(f"INSERT INTO trades ({columns}) VALUES ({placeholders})", tuple(row.values()))
        stored = self.get_trade(trade.user_id, trade_id)
        assert stored is not None
        return stored

    @_synchronized
    def update_trade(self, trade: Trade) -> Trade:
        if trade.trade_id is None:
            raise ValueError("Cannot update a trade without an id.")
        row = _trade_row(trade, trade.trade_id)
        row.pop("trade_id")
        row.pop("user_id")
        row.pop("created_at")
        assignments = ", ".join(f"{column} = ?" for column in row)
        with self._conn:
            self._conn.execute(
                f"UPDATE trades SET {assignments} WHERE trade_id = ? AND user_id = ?",
                (*row.values(), trade.trade_id, trade.user_id),
            )
        stored = self.get_trade(trade.user_id, trade.trade_id)
        assert stored is not None
        return stored

    @_synchronized
    def get_trade(self, user_id: str, trade_id: str) -> Trade | None:
        row = self._conn.execute(
            "SELECT * FROM trades WHERE user_id = ? AND trade_id = ?",
            (user_id, trade_id),
        ).fetchone()
        return _trade_from_row(row) if row is not None else None

    @_synchronized
    def list_trades(self, user_id: str, status: TradeStatus | None = None) -> list[Trade]:
        sql = "SELECT * FROM trades WHERE user_id = ?"
        params: list[Any] = [user_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        sql += " ORDER BY entry_datetime ASC, trade_id ASC"
        return [_trade_from_row(row) for row in self._conn.execute(sql, params).fetchall()]

    @_synchronized
    def delete_trade(self, user_id: str, trade_id: str) -> bool:
        with self._conn:
            cursor = self._conn.execute(
                "DELETE FROM trades WHERE user_id = ? AND trade_id = ?",
                (user_id, trade_id),
            )
        return cursor.rowcount > 0

    # capital

    def upsert_capital(
        self,
        user_id: str,
        day: date,
        amount: float,
        metadata: SnapshotMetadata | None = None,
        recorded_at: datetime | None = None,
    ) -> CapitalSnapshot:
        # High/low are merged in the statement itself, so concurrent writers
        # cannot drop an extremum.
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO capital_changes (
                    user_id, date, capital_amount, day_open, day_high, day_low, metadata_json, recorded_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, date) DO UPDATE SET
                    capital_amount = excluded.capital_amount,
                    day_high = MAX(capital_changes.day_high, excluded.capital_amount),
                    day_low = MIN(capital_changes.day_low, excluded.capital_amount),
                    metadata_json = COALESCE(excluded.metadata_json, capital_changes.metadata_json),
                    recorded_at = excluded.recorded_at
                """,
                (
                    user_id,
                    day.isoformat(),
                    amount,
                    amount,
                    amount,
                    amount,
                    metadata_to_json(metadata),
                    _ts(recorded_at or _utcnow()),
                ),
            )
        snapshot = self.get_capital(user_id, day)
        assert snapshot is not None
        return snapshot

    @_synchronized
    def get_capital(self, user_id: str, day: date) -> CapitalSnapshot | None:
        row = self._conn.execute(
            "SELECT * FROM capital_changes WHERE user_id = ? AND date = ?",
            (user_id, day.isoformat()),
        ).fetchone()
        return _snapshot_from_row(row) if row is not None else None

    @_synchronized
    def list_capital(self, user_id: str, start: date | None = None, end: date | None = None) -> list[CapitalSnapshot]:
        sql = "SELECT * FROM capital_changes WHERE user_id = ?"
        params: list[Any] = [user_id]
        if start is not None:
            sql += " AND date >= ?"
            params.append(start.isoformat())
        if end is not None:
            sql += " AND date <= ?"
            params.append(end.isoformat())
        sql += " ORDER BY date ASC"
        return [_snapshot_from_row(row) for row in self._conn.execute(sql, params).fetchall()]

    @_synchronized
    def latest_capital(self, user_id: str) -> CapitalSnapshot | None:
        row = self._conn.execute(
            "SELECT * FROM capital_changes WHERE user_id = ? ORDER BY date DESC, recorded_at DESC LIMIT 1",
            (user_id,),
        ).fetchone()
        return _snapshot_from_row(row) if row is not None else None

    # journal, missed trades, watchlist

    @_synchronized
    def upsert_journal_entry(self, entry: JournalEntry) -> JournalEntry:
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO journal_entries (user_id, date, reflection, market_notes, lessons_learned, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, date) DO UPDATE SET
                    reflection = excluded.reflection,
                    market_notes = excluded.market_notes,
                    lessons_learned = excluded.lessons_learned,
                    updated_at = excluded.updated_at
                """,
                (
                    entry.user_id,
                    entry.date.isoformat(),
                    entry.reflection,
                    entry.market_notes,
                    entry.lessons_learned,
                    _ts(_utcnow()),
                ),
            )
        stored = self.get_journal_entry(entry.user_id, entry.date)
        assert stored is not None
        return stored

    @_synchronized
    def get_journal_entry(self, user_id: str, day: date) -> JournalEntry | None:
        row = self._conn.execute(
            "SELECT * FROM journal_entries WHERE user_id = ? AND date = ?",
            (user_id, day.isoformat()),
        ).fetchone()
        if row is None:
            return None
        return JournalEntry(
            user_id=row["user_id"],
            date=date.fromisoformat(row["date"]),
            reflection=row["reflection"],
            market_notes=row["market_notes"],
            lessons_learned=row["lessons_learned"],
            updated_at=_parse_ts(row["updated_at"]),
        )

    @_synchronized
    def insert_missed_trade(self, missed: MissedTrade) -> MissedTrade:
        missed_id = missed.missed_id or uuid4().hex
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO missed_trades (missed_id, user_id, date, ticker, reason, notes, potential_profit)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    missed_id,
                    missed.user_id,
                    missed.date.isoformat(),
                    missed.ticker,
                    missed.reason,
                    missed.notes,
                    missed.potential_profit,
                ),
            )
        return MissedTrade(
            missed_id=missed_id,
            user_id=missed.user_id,
            date=missed.date,
            ticker=missed.ticker,
            reason=missed.reason,
            notes=missed.notes,
            potential_profit=missed.potential_profit,
        )

    @_synchronized
    def list_missed_trades(self, user_id: str) -> list[MissedTrade]:
        rows = self._conn.execute(
            "SELECT * FROM missed_trades WHERE user_id = ? ORDER BY date DESC, missed_id ASC",
            (user_id,),
        ).fetchall()
        return [
            MissedTrade(
                missed_id=row["missed_id"],
                user_id=row["user_id"],
                date=date.fromisoformat(row["date"]),
                ticker=row["ticker"],
                reason=row["reason"],
                notes=row["notes"],
                potential_profit=row["potential_profit"],
            )
            for row in rows
        ]

    @_synchronized
    def upsert_watchlist_item(self, item: WatchlistItem) -> WatchlistItem:
        added_at = item.added_at or _utcnow()
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO watchlist (user_id, ticker, notes, added_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, ticker) DO UPDATE SET notes = excluded.notes
                """,
                (item.user_id, item.ticker, item.notes, _ts(added_at)),
            )
        return next(entry for entry in self.list_watchlist(item.user_id) if entry.ticker == item.ticker)

    @_synchronized
    def list_watchlist(self, user_id: str) -> list[WatchlistItem]:
        rows = self._conn.execute(
            "SELECT * FROM watchlist WHERE user_id = ? ORDER BY ticker ASC",
            (user_id,),
        ).fetchall()
        return [
            WatchlistItem(
                user_id=row["user_id"],
                ticker=row["ticker"],
                notes=row["notes"],
                added_at=_parse_ts(row["added_at"]),
            )
            for row in rows
        ]

    @_synchronized
    def delete_watchlist_item(self, user_id: str, ticker: str) -> bool:
        with self._conn:
            cursor = self._conn.execute(
                "DELETE FROM watchlist WHERE user_id = ? AND ticker = ?",
                (user_id, ticker),
            )
        return cursor.rowcount > 0


def _trade_row(trade: Trade, trade_id: str) -> dict[str, Any]:
    now = _utcnow()
    return {
        "trade_id": trade_id,
        "user_id": trade.user_id,
        "ticker": trade.ticker,
        "direction": trade.direction.value,
        "asset_type": trade.asset_type.value,
        "status": trade.status.value,
        "entry_datetime": _ts(trade.entry_datetime),
        "entry_price": trade.entry_price,
        "total_shares": trade.total_shares,
        "remaining_shares": trade.remaining_shares,
        "total_cost": trade.total_cost,
        "exit_price": trade.exit_price,
        "exit_datetime": _ts(trade.exit_datetime) if trade.exit_datetime else None,
        "stop_loss_price": trade.stop_loss_price,
        "stop_loss_33_percent": trade.stop_loss_33_percent,
        "stop_loss_66_percent": trade.stop_loss_66_percent,
        "r_target_2": trade.r_target_2,
        "r_target_3": trade.r_target_3,
        "open_risk": trade.open_risk,
        "risk_amount": trade.risk_amount,
        "initial_position_risk": trade.initial_position_risk,
        "risk_reward_ratio": trade.risk_reward_ratio,
        "realized_pnl": trade.realized_pnl,
        "realized_pnl_percentage": trade.realized_pnl_percentage,
        "unrealized_pnl": trade.unrealized_pnl,
        "unrealized_pnl_percentage": trade.unrealized_pnl_percentage,
        "last_price": trade.last_price,
        "market_value": trade.market_value,
        "trimmed_percentage": trade.trimmed_percentage,
        "mae": trade.mae,
        "mfe": trade.mfe,
        "mae_dollars": trade.mae_dollars,
        "mfe_dollars": trade.mfe_dollars,
        "mae_r": trade.mae_r,
        "mfe_r": trade.mfe_r,
        "holding_period_days": trade.holding_period_days,
        "strategy": trade.strategy,
        "setups": json.dumps(list(trade.setups)),
        "notes": trade.notes,
        "mistakes": trade.mistakes,
        "action_types": json.dumps([action.action_type.value for action in trade.actions]),
        "action_datetimes": json.dumps([_ts(action.timestamp) for action in trade.actions]),
        "action_prices": json.dumps([action.price for action in trade.actions]),
        "action_shares": json.dumps([action.shares for action in trade.actions]),
        "created_at": _ts(trade.created_at or now),
        "updated_at": _ts(trade.updated_at or now),
    }


def _trade_from_row(row: sqlite3.Row) -> Trade:
    actions = [
        TradeAction(ActionType(kind), _parse_ts(stamp), float(price), float(shares))
        for kind, stamp, price, shares in zip(
            json.loads(row["action_types"]),
            json.loads(row["action_datetimes"]),
            json.loads(row["action_prices"]),
            json.loads(row["action_shares"]),
        )
    ]
    return Trade(
        trade_id=row["trade_id"],
        user_id=row["user_id"],
        ticker=row["ticker"],
        direction=Direction(row["direction"]),
        asset_type=AssetType(row["asset_type"]),
        status=TradeStatus(row["status"]),
        entry_datetime=_parse_ts(row["entry_datetime"]),
        entry_price=row["entry_price"],
        total_shares=row["total_shares"],
        remaining_shares=row["remaining_shares"],
        total_cost=row["total_cost"],
        exit_price=row["exit_price"],
        exit_datetime=_parse_ts(row["exit_datetime"]) if row["exit_datetime"] else None,
        stop_loss_price=row["stop_loss_price"],
        stop_loss_33_percent=row["stop_loss_33_percent"],
        stop_loss_66_percent=row["stop_loss_66_percent"],
        r_target_2=row["r_target_2"],
        r_target_3=row["r_target_3"],
        open_risk=row["open_risk"],
        risk_amount=row["risk_amount"],
        initial_position_risk=row["initial_position_risk"],
        risk_reward_ratio=row["risk_reward_ratio"],
        realized_pnl=row["realized_pnl"],
        realized_pnl_percentage=row["realized_pnl_percentage"],
        unrealized_pnl=row["unrealized_pnl"],
        unrealized_pnl_percentage=row["unrealized_pnl_percentage"],
        last_price=row["last_price"],
        market_value=row["market_value"],
        trimmed_percentage=row["trimmed_percentage"],
        mae=row["mae"],
        mfe=row["mfe"],
        mae_dollars=row["mae_dollars"],
        mfe_dollars=row["mfe_dollars"],
        mae_r=row["mae_r"],
        mfe_r=row["mfe_r"],
        holding_period_days=row["holding_period_days"],
        strategy=row["strategy"],
        setups=list(json.loads(row["setups"] or "[]")),
        notes=row["notes"],
        mistakes=row["mistakes"],
        actions=actions,
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def _snapshot_from_row(row: sqlite3.Row) -> CapitalSnapshot:
    return CapitalSnapshot(
        user_id=row["user_id"],
        date=date.fromisoformat(row["date"]),
        capital_amount=row["capital_amount"],
        day_open=row["day_open"],
        day_high=row["day_high"],
        day_low=row["day_low"],
        metadata=metadata_from_json(row["metadata_json"]),
        recorded_at=_parse_ts(row["recorded_at"]),
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _parse_ts(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

