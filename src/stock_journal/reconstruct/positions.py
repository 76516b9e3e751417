"""Position arithmetic for trade entries, add-ons, trims and closes.

Every function returns a new ``Trade`` and leaves its input untouched, so a
rejected action never leaves a partially updated position behind. ``BUY``
actions add to a position and ``SELL`` actions reduce it, whatever the
direction of the trade.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Iterable, Sequence

from stock_journal.errors import ValidationError
from stock_journal.metrics.risk import stop_risk_amount, tiered_stops
from stock_journal.models import ActionType, AssetType, Direction, Trade, TradeAction, TradeStatus

EPSILON = 1e-9


def open_position(
    user_id: str,
    ticker: str,
    direction: Direction,
    entry_price: float,
    shares: float,
    at: datetime,
    *,
    stop_loss_price: float | None = None,
    tiered: bool = True,
    asset_type: AssetType = AssetType.STOCK,
    strategy: str | None = None,
    setups: Iterable[str] = (),
    notes: str | None = None,
    current_price: float | None = None,
    risk_amount: float | None = None,
    position_risk_pct: float | None = None,
    trade_id: str | None = None,
) -> Trade:
    _require_positive(entry_price, "Entry price")
    _require_positive(shares, "Shares")
    ticker = ticker.strip().upper()
    if not ticker:
        raise ValidationError("Ticker is required.")

    stop_33 = stop_66 = target_2r = target_3r = open_risk = None
    if stop_loss_price is not None:
        stops = tiered_stops(entry_price, stop_loss_price, direction)
        open_risk = stops.open_risk if tiered else stops.full_stop_pct
        if tiered:
            stop_33 = stops.stop_33
            stop_66 = stops.stop_66
            target_2r = stops.target_2r
            target_3r = stops.target_3r
        else:
            target_2r = entry_price * (1 + direction.sign * 2 * open_risk / 100)
            target_3r = entry_price * (1 + direction.sign * 3 * open_risk / 100)

    trade = Trade(
        trade_id=trade_id,
        user_id=user_id,
        ticker=ticker,
        direction=direction,
        asset_type=asset_type,
        status=TradeStatus.OPEN,
        entry_datetime=at,
        entry_price=entry_price,
        total_shares=shares,
        remaining_shares=shares,
        total_cost=entry_price * shares,
        stop_loss_price=stop_loss_price,
        stop_loss_33_percent=stop_33,
        stop_loss_66_percent=stop_66,
        r_target_2=target_2r,
        r_target_3=target_3r,
        open_risk=open_risk,
        risk_amount=risk_amount if risk_amount is not None else stop_risk_amount(entry_price, stop_loss_price, shares),
        initial_position_risk=position_risk_pct,
        strategy=strategy,
        setups=list(setups),
        notes=notes,
        actions=[TradeAction(ActionType.BUY, at, entry_price, shares)],
        created_at=at,
        updated_at=at,
    )
    return _with_market(trade, current_price if current_price is not None else entry_price)


def add_to_position(
    trade: Trade,
    price: float,
    shares: float,
    at: datetime,
    current_price: float | None = None,
) -> Trade:
    _require_open(trade)
    _require_positive(price, "Price")
    _require_positive(shares, "Shares")

    held = trade.remaining_shares
    avg_cost = (trade.entry_price * held + price * shares) / (held + shares)
    total_shares = trade.total_shares + shares
    remaining = held + shares
    risk_amount = trade.risk_amount
    if trade.stop_loss_price is not None:
        risk_amount = stop_risk_amount(avg_cost, trade.stop_loss_price, remaining)

    updated = replace(
        trade,
        entry_price=avg_cost,
        total_shares=total_shares,
        remaining_shares=remaining,
        total_cost=avg_cost * remaining,
        risk_amount=risk_amount,
        actions=[*trade.actions, TradeAction(ActionType.BUY, at, price, shares)],
        updated_at=at,
    )
    return _with_market(updated, current_price if current_price is not None else price)


def sell_from_position(
    trade: Trade,
    price: float,
    shares: float,
    at: datetime,
    current_price: float | None = None,
) -> Trade:
    _require_open(trade)
    _require_positive(price, "Price")
    _require_positive(shares, "Shares")
    if shares > trade.remaining_shares + EPSILON:
        raise ValidationError(
            f"Cannot sell {shares:g} shares of {trade.ticker}; only {trade.remaining_shares:g} remain."
        )

    lot_pnl = (price - trade.entry_price) * shares * trade.direction.sign
    realized = trade.realized_pnl + lot_pnl
    remaining = trade.remaining_shares - shares
    if remaining < EPSILON:
        remaining = 0.0

    updated = replace(
        trade,
        remaining_shares=remaining,
        total_cost=trade.entry_price * remaining,
        realized_pnl=realized,
        realized_pnl_percentage=_pct(realized, trade.entry_price * trade.total_shares),
        trimmed_percentage=_pct(trade.total_shares - remaining, trade.total_shares),
        actions=[*trade.actions, TradeAction(ActionType.SELL, at, price, shares)],
        updated_at=at,
    )
    if remaining > 0:
        return _with_market(updated, current_price if current_price is not None else price)

    holding_days = (at.date() - trade.entry_datetime.date()).days
    return replace(
        updated,
        status=TradeStatus.CLOSED,
        exit_price=price,
        exit_datetime=at,
        holding_period_days=holding_days,
        last_price=price,
        market_value=0.0,
        unrealized_pnl=0.0,
        unrealized_pnl_percentage=0.0,
        trimmed_percentage=100.0,
        risk_reward_ratio=updated.realized_r,
    )


def close_position(trade: Trade, price: float, at: datetime) -> Trade:
    _require_open(trade)
    return sell_from_position(trade, price, trade.remaining_shares, at)


def replay_actions(
    user_id: str,
    ticker: str,
    direction: Direction,
    actions: Sequence[TradeAction],
    *,
    stop_loss_price: float | None = None,
    asset_type: AssetType = AssetType.STOCK,
    strategy: str | None = None,
    setups: Iterable[str] = (),
    notes: str | None = None,
    current_price: float | None = None,
    trade_id: str | None = None,
) -> Trade:
    """Rebuild a position from its complete action log, oldest action first."""
    ordered = sorted(actions, key=lambda action: action.timestamp)
    if not ordered:
        raise ValidationError("At least one action is required.")
    first = ordered[0]
    if first.action_type is not ActionType.BUY:
        raise ValidationError("The first action of a trade must be a BUY.")

    trade = open_position(
        user_id,
        ticker,
        direction,
        first.price,
        first.shares,
        first.timestamp,
        stop_loss_price=stop_loss_price,
        asset_type=asset_type,
        strategy=strategy,
        setups=setups,
        notes=notes,
        trade_id=trade_id,
    )
    for action in ordered[1:]:
        if action.action_type is ActionType.BUY:
            trade = add_to_position(trade, action.price, action.shares, action.timestamp)
        else:
            trade = sell_from_position(trade, action.price, action.shares, action.timestamp)
    if trade.is_open and current_price is not None:
        trade = mark_to_market(trade, current_price)
    return trade


def mark_to_market(trade: Trade, price: float) -> Trade:
    _require_open(trade)
    _require_positive(price, "Price")
    return _with_market(trade, price)


def update_trade_notes(trade: Trade, notes: str | None = None, mistakes: str | None = None) -> Trade:
    return replace(
        trade,
        notes=trade.notes if notes is None else notes,
        mistakes=trade.mistakes if mistakes is None else mistakes,
    )


def _with_market(trade: Trade, price: float) -> Trade:
    market_value = price * trade.remaining_shares
    cost_basis = trade.entry_price * trade.remaining_shares
    unrealized = (market_value - cost_basis) * trade.direction.sign
    rrr = None
    if trade.risk_amount:
        rrr = (unrealized + trade.realized_pnl) / trade.risk_amount
    return replace(
        trade,
        last_price=price,
        market_value=market_value,
        unrealized_pnl=unrealized,
        unrealized_pnl_percentage=_pct(unrealized, cost_basis),
        risk_reward_ratio=rrr,
    )


def _pct(value: float, base: float) -> float:
    if not base:
        return 0.0
    return value / base * 100


def _require_open(trade: Trade) -> None:
    if not trade.is_open:
        raise ValidationError(f"Trade {trade.trade_id or trade.ticker} is closed.")


def _require_positive(value: float, label: str) -> None:
    if value is None or value <= 0:
        raise ValidationError(f"{label} must be positive.")
