from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field

from stock_journal.models import ActionType, AssetType, Direction


class UserCreate(BaseModel):
    user_id: str
    email: str | None = None
    created_at: datetime | None = None


class SettingsUpdate(BaseModel):
    starting_cash: float | None = None
    name: str | None = None
    email: str | None = None
    trading_experience: str | None = None
    preferred_trading_style: str | None = None
    bio: str | None = None
    automated_trade_logging: bool | None = None
    performance_alerts: bool | None = None


class TradeCreate(BaseModel):
    ticker: str
    direction: Direction = Direction.LONG
    asset_type: AssetType = AssetType.STOCK
    entry_price: float
    shares: float
    entry_datetime: datetime | None = None
    stop_loss_price: float | None = None
    tiered: bool = True
    strategy: str | None = None
    setups: list[str] = Field(default_factory=list)
    notes: str | None = None
    position_risk_pct: float | None = None


class ActionIn(BaseModel):
    action_type: ActionType
    timestamp: datetime
    price: float
    shares: float


class TradeImport(BaseModel):
    ticker: str
    direction: Direction = Direction.LONG
    asset_type: AssetType = AssetType.STOCK
    stop_loss_price: float | None = None
    strategy: str | None = None
    setups: list[str] = Field(default_factory=list)
    notes: str | None = None
    actions: list[ActionIn]


class PositionChange(BaseModel):
    price: float
    shares: float
    at: datetime | None = None


class ClosePosition(BaseModel):
    price: float
    at: datetime | None = None


class NotesUpdate(BaseModel):
    notes: str | None = None
    mistakes: str | None = None


class CapitalRecord(BaseModel):
    amount: float
    day: date | None = None
    note: str | None = None


class CashFlow(BaseModel):
    amount: float
    note: str | None = None


class PositionPlanRequest(BaseModel):
    entry_price: float
    atr: float
    low_of_day: float
    position_risk_pct: float = 0.5
    capital: float | None = None


class JournalEntryIn(BaseModel):
    reflection: str | None = None
    market_notes: str | None = None
    lessons_learned: str | None = None


class MissedTradeIn(BaseModel):
    day: date
    ticker: str
    reason: str | None = None
    notes: str | None = None
    potential_profit: float | None = None


class WatchlistIn(BaseModel):
    ticker: str
    notes: str | None = None
