from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Iterable, Mapping

from stock_journal.metrics.equity import local_date
from stock_journal.metrics.risk import current_risk_amount
from stock_journal.models import Trade, TradeStatus


@dataclass(frozen=True)
class StreakMetrics:
    current_streak: int
    current_streak_type: str | None
    longest_win_streak: int
    longest_loss_streak: int


@dataclass(frozen=True)
class PerformanceMetrics:
    total_trades: int
    profitable_trades: int
    losing_trades: int
    breakeven_trades: int
    win_rate: float
    avg_win: float
    avg_loss: float
    profit_factor: float
    expectancy: float
    payoff_ratio: float
    total_profits: float
    total_losses: float
    largest_win: float
    largest_loss: float
    avg_win_r: float
    avg_loss_r: float
    avg_rrr: float
    avg_gain_pct: float
    avg_loss_pct: float
    current_streak: int
    longest_win_streak: int
    longest_loss_streak: int


@dataclass(frozen=True)
class ExposureMetrics:
    der: float
    dep: float
    delta_de: float
    ner: float
    nep: float
    delta_ne: float
    oer: float
    oep: float
    delta_oe: float


@dataclass(frozen=True)
class TradeMarketMetrics:
    last_price: float
    market_value: float
    unrealized_pnl: float
    unrealized_pnl_pct: float
    realized_pnl: float
    realized_pnl_pct: float
    trimmed_pct: float
    portfolio_weight: float
    portfolio_impact: float
    current_risk_amount: float
    initial_position_risk: float
    current_var: float
    risk_reward_ratio: float


def closed_trades(trades: Iterable[Trade]) -> list[Trade]:
    return [trade for trade in trades if trade.status is TradeStatus.CLOSED]


def compute_streaks(trades: Iterable[Trade]) -> StreakMetrics:
    ordered = sorted(closed_trades(trades), key=_exit_key)
    current = 0
    current_type: str | None = None
    longest_win = 0
    longest_loss = 0
    for trade in ordered:
        outcome = "win" if trade.realized_pnl > 0 else "loss"
        if outcome == current_type:
            current += 1
        else:
            current_type = outcome
            current = 1
        if outcome == "win":
            longest_win = max(longest_win, current)
        else:
            longest_loss = max(longest_loss, current)
    return StreakMetrics(
        current_streak=current,
        current_streak_type=current_type,
        longest_win_streak=longest_win,
        longest_loss_streak=longest_loss,
    )


def compute_performance_metrics(trades: Iterable[Trade]) -> PerformanceMetrics:
    trade_list = list(trades)
    closed = closed_trades(trade_list)
    wins = [trade for trade in closed if trade.realized_pnl > 0]
    losses = [trade for trade in closed if trade.realized_pnl < 0]
    breakevens = [trade for trade in closed if trade.realized_pnl == 0]

    total_profits = sum(trade.realized_pnl for trade in wins)
    total_losses = sum(trade.realized_pnl for trade in losses)
    total = len(closed)
    win_rate = len(wins) / total * 100 if total else 0.0
    avg_win = total_profits / len(wins) if wins else 0.0
    avg_loss = abs(total_losses / len(losses)) if losses else 0.0

    if total_losses:
        profit_factor = total_profits / abs(total_losses)
    else:
        profit_factor = math.inf if total_profits > 0 else 0.0
    if avg_loss:
        payoff_ratio = avg_win / avg_loss
    else:
        payoff_ratio = math.inf if avg_win > 0 else 0.0
    expectancy = (win_rate / 100) * avg_win - (1 - win_rate / 100) * avg_loss

    streaks = compute_streaks(closed)
    return PerformanceMetrics(
        total_trades=total,
        profitable_trades=len(wins),
        losing_trades=len(losses),
        breakeven_trades=len(breakevens),
        win_rate=win_rate,
        avg_win=avg_win,
        avg_loss=avg_loss,
        profit_factor=profit_factor,
        expectancy=expectancy,
        payoff_ratio=payoff_ratio,
        total_profits=total_profits,
        total_losses=total_losses,
        largest_win=max((trade.realized_pnl for trade in wins), default=0.0),
        largest_loss=abs(min((trade.realized_pnl for trade in losses), default=0.0)),
        avg_win_r=_mean([trade.realized_r for trade in wins if trade.realized_r is not None]),
        avg_loss_r=abs(_mean([trade.realized_r for trade in losses if trade.realized_r is not None])),
        avg_rrr=_mean([trade.risk_reward_ratio or 0.0 for trade in closed]),
        avg_gain_pct=_mean([trade.realized_pnl_percentage for trade in wins]),
        avg_loss_pct=_mean([trade.realized_pnl_percentage for trade in losses]),
        current_streak=streaks.current_streak,
        longest_win_streak=streaks.longest_win_streak,
        longest_loss_streak=streaks.longest_loss_streak,
    )


def compute_exposure_metrics(
    trades: Iterable[Trade],
    current_capital: float,
    *,
    now: datetime | None = None,
    tz: tzinfo = timezone.utc,
) -> ExposureMetrics:
    """Risk and profit exposure, in percent of capital, for open trades.

    Daily covers trades entered today, new covers the past seven days and open
    covers every open trade.
    """
    now = now or datetime.now(timezone.utc)
    today = local_date(now, tz)
    week_ago = now - timedelta(days=7)
    active = [trade for trade in trades if trade.is_open]
    todays = [trade for trade in active if local_date(trade.entry_datetime, tz) == today]
    recent = [trade for trade in active if _aware(trade.entry_datetime) > week_ago]

    der = sum(_position_risk(trade, current_capital) for trade in todays)
    dep = sum(_pct_of(trade.unrealized_pnl, current_capital) for trade in todays)
    ner = sum(_position_risk(trade, current_capital) for trade in recent)
    nep = sum(_pct_of(trade.unrealized_pnl, current_capital) for trade in recent)
    oer = sum(_position_risk(trade, current_capital) for trade in active)
    oep = sum(_pct_of(trade.unrealized_pnl + trade.realized_pnl, current_capital) for trade in active)
    return ExposureMetrics(
        der=der,
        dep=dep,
        delta_de=dep - der,
        ner=ner,
        nep=nep,
        delta_ne=nep - ner,
        oer=oer,
        oep=oep,
        delta_oe=oep - oer,
    )


def compute_trade_market_metrics(
    trade: Trade,
    prices: Mapping[str, float],
    starting_capital: float,
    current_capital: float,
) -> TradeMarketMetrics:
    invested = trade.entry_price * trade.total_shares
    realized_pct = _pct_of(trade.realized_pnl, invested)
    if not trade.is_open:
        return TradeMarketMetrics(
            last_price=trade.exit_price or 0.0,
            market_value=0.0,
            unrealized_pnl=0.0,
            unrealized_pnl_pct=0.0,
            realized_pnl=trade.realized_pnl,
            realized_pnl_pct=realized_pct,
            trimmed_pct=100.0,
            portfolio_weight=0.0,
            portfolio_impact=0.0,
            current_risk_amount=0.0,
            initial_position_risk=0.0,
            current_var=0.0,
            risk_reward_ratio=trade.realized_r or 0.0,
        )

    price = prices.get(trade.ticker.upper())
    quoted = price is not None
    if price is None:
        price = trade.entry_price
    market_value = trade.remaining_shares * price
    unrealized = (price - trade.entry_price) * trade.remaining_shares * trade.direction.sign
    risk_now = current_risk_amount(trade, price)
    if quoted and trade.risk_amount:
        rrr = (unrealized + trade.realized_pnl) / trade.risk_amount
    else:
        rrr = (trade.unrealized_pnl + trade.realized_pnl) / (risk_now or 1)
    pnl_for_impact = unrealized + trade.realized_pnl if quoted else trade.realized_pnl
    return TradeMarketMetrics(
        last_price=price,
        market_value=market_value,
        unrealized_pnl=unrealized,
        unrealized_pnl_pct=_pct_of(unrealized, trade.entry_price * trade.remaining_shares),
        realized_pnl=trade.realized_pnl,
        realized_pnl_pct=realized_pct,
        trimmed_pct=_pct_of(trade.total_shares - trade.remaining_shares, trade.total_shares),
        portfolio_weight=_pct_of(market_value, current_capital),
        portfolio_impact=_pct_of(pnl_for_impact, starting_capital),
        current_risk_amount=risk_now,
        initial_position_risk=_pct_of(trade.risk_amount or 0.0, current_capital),
        current_var=_pct_of(risk_now, current_capital),
        risk_reward_ratio=rrr,
    )


def _position_risk(trade: Trade, capital: float) -> float:
    if trade.initial_position_risk is not None:
        return trade.initial_position_risk
    return _pct_of(trade.risk_amount or 0.0, capital)


def _pct_of(value: float, base: float) -> float:
    if not base:
        return 0.0
    return value / base * 100


def _mean(values: list[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _exit_key(trade: Trade) -> datetime:
    return _aware(trade.exit_datetime or trade.entry_datetime)
