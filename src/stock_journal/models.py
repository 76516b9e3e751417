from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping, Union


class TradeStatus(str, Enum):
    OPEN = "Open"
    CLOSED = "Closed"


class AssetType(str, Enum):
    STOCK = "Stock"
    ETF = "ETF"
    OPTION = "Option"


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> float:
        return 1.0 if self is Direction.LONG else -1.0


class ActionType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


STRATEGIES = ("EP", "MB", "PBB")

SETUPS = (
    "EP",
    "VCP",
    "Inside Day",
    "Inside Week",
    "HTF",
    "Flat Base",
    "Bull Flag",
    "PB",
    "IPO Base",
    "Triangle",
    "Falling Wedge",
    "Double Inside Week",
    "Double Inside Day",
    "HVE",
    "HVY",
    "HVQ",
)


@dataclass(frozen=True)
class UserContext:
    user_id: str
    email: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class TradeAction:
    action_type: ActionType
    timestamp: datetime
    price: float
    shares: float


@dataclass
class Trade:
    trade_id: str | None
    user_id: str
    ticker: str
    direction: Direction
    asset_type: AssetType
    status: TradeStatus
    entry_datetime: datetime
    entry_price: float
    total_shares: float
    remaining_shares: float
    total_cost: float
    exit_price: float | None = None
    exit_datetime: datetime | None = None
    stop_loss_price: float | None = None
    stop_loss_33_percent: float | None = None
    stop_loss_66_percent: float | None = None
    r_target_2: float | None = None
    r_target_3: float | None = None
    open_risk: float | None = None
    risk_amount: float | None = None
    initial_position_risk: float | None = None
    risk_reward_ratio: float | None = None
    realized_pnl: float = 0.0
    realized_pnl_percentage: float = 0.0
    unrealized_pnl: float = 0.0
    unrealized_pnl_percentage: float = 0.0
    last_price: float | None = None
    market_value: float = 0.0
    trimmed_percentage: float = 0.0
    mae: float | None = None
    mfe: float | None = None
    mae_dollars: float | None = None
    mfe_dollars: float | None = None
    mae_r: float | None = None
    mfe_r: float | None = None
    holding_period_days: int | None = None
    strategy: str | None = None
    setups: list[str] = field(default_factory=list)
    notes: str | None = None
    mistakes: str | None = None
    actions: list[TradeAction] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status is TradeStatus.OPEN

    @property
    def realized_r(self) -> float | None:
        if not self.risk_amount:
            return None
        return self.realized_pnl / self.risk_amount

    @property
    def sold_shares(self) -> float:
        return sum(action.shares for action in self.actions if action.action_type is ActionType.SELL)


@dataclass(frozen=True)
class TradeMark:
    ticker: str
    unrealized_pnl: float


@dataclass(frozen=True)
class EndOfDaySnapshot:
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    trade_count: int = 0
    trade_details: tuple[TradeMark, ...] = ()

    type = "end_of_day_snapshot"


@dataclass(frozen=True)
class InterimSnapshot:
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    trade_count: int = 0
    trade_details: tuple[TradeMark, ...] = ()

    type = "interim_snapshot"


@dataclass(frozen=True)
class ManualUpdate:
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    trade_count: int = 0
    note: str | None = None
    previous_capital: float | None = None

    type = "manual_update"


SnapshotMetadata = Union[EndOfDaySnapshot, InterimSnapshot, ManualUpdate]

_METADATA_TYPES: dict[str, type] = {
    EndOfDaySnapshot.type: EndOfDaySnapshot,
    InterimSnapshot.type: InterimSnapshot,
    ManualUpdate.type: ManualUpdate,
}


def metadata_to_dict(metadata: SnapshotMetadata) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": metadata.type,
        "realized_pnl": metadata.realized_pnl,
        "unrealized_pnl": metadata.unrealized_pnl,
        "trade_count": metadata.trade_count,
    }
    if isinstance(metadata, ManualUpdate):
        payload["note"] = metadata.note
        payload["previous_capital"] = metadata.previous_capital
    else:
        payload["trade_details"] = [
            {"ticker": mark.ticker, "unrealized_pnl": mark.unrealized_pnl} for mark in metadata.trade_details
        ]
    return payload


def metadata_from_dict(raw: Mapping[str, Any]) -> SnapshotMetadata:
    kind = raw.get("type")
    cls = _METADATA_TYPES.get(str(kind))
    if cls is None:
        raise ValueError(f"Unknown capital metadata type: {kind!r}")
    common = {
        "realized_pnl": float(raw.get("realized_pnl") or 0.0),
        "unrealized_pnl": float(raw.get("unrealized_pnl") or 0.0),
        "trade_count": int(raw.get("trade_count") or 0),
    }
    if cls is ManualUpdate:
        previous = raw.get("previous_capital")
        return ManualUpdate(
            **common,
            note=raw.get("note"),
            previous_capital=float(previous) if previous is not None else None,
        )
    marks = tuple(
        TradeMark(ticker=str(item["ticker"]), unrealized_pnl=float(item.get("unrealized_pnl") or 0.0))
        for item in raw.get("trade_details") or []
    )
    return cls(**common, trade_details=marks)


def metadata_to_json(metadata: SnapshotMetadata | None) -> str | None:
    if metadata is None:
        return None
    return json.dumps(metadata_to_dict(metadata))


def metadata_from_json(value: str | None) -> SnapshotMetadata | None:
    if not value:
        return None
    return metadata_from_dict(json.loads(value))


@dataclass(frozen=True)
class CapitalSnapshot:
    user_id: str
    date: date
    capital_amount: float
    day_open: float
    day_high: float
    day_low: float
    metadata: SnapshotMetadata | None = None
    recorded_at: datetime | None = None


@dataclass
class UserSettings:
    user_id: str
    starting_cash: float = 0.0
    current_capital: float | None = None
    name: str | None = None
    email: str | None = None
    trading_experience: str | None = None
    preferred_trading_style: str | None = None
    bio: str | None = None
    automated_trade_logging: bool = False
    performance_alerts: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class DrawdownPeriod:
    start_date: date
    start_capital: float
    lowest_capital: float
    drawdown_percentage: float
    recovery_date: date | None = None
    recovery_capital: float | None = None

    @property
    def recovered(self) -> bool:
        return self.recovery_date is not None


@dataclass(frozen=True)
class DrawdownMetrics:
    current_drawdown: float
    max_drawdown: float
    drawdown_periods: list[DrawdownPeriod]


@dataclass(frozen=True)
class EquityPoint:
    date: date
    capital: float
    drawdown: float
    runup: float
    realized_pnl: float
    unrealized_pnl: float
    source: str


@dataclass(frozen=True)
class DailyCapitalStats:
    date: date
    open: float
    high: float
    low: float
    close: float
    realized_pnl: float
    unrealized_pnl: float
    trade_count: int


@dataclass(frozen=True)
class CapitalBreakdown:
    starting_cash: float
    realized_pnl: float
    unrealized_pnl: float
    total: float
    marks: dict[str, float] = field(default_factory=dict)
    stale_tickers: list[str] = field(default_factory=list)


@dataclass
class JournalEntry:
    user_id: str
    date: date
    reflection: str | None = None
    market_notes: str | None = None
    lessons_learned: str | None = None
    updated_at: datetime | None = None


@dataclass
class MissedTrade:
    missed_id: str | None
    user_id: str
    date: date
    ticker: str
    reason: str | None = None
    notes: str | None = None
    potential_profit: float | None = None


@dataclass
class WatchlistItem:
    user_id: str
    ticker: str
    notes: str | None = None
    added_at: datetime | None = None
