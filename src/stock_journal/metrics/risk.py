from __future__ import annotations

import math
from dataclasses import dataclass, replace

from stock_journal.errors import ValidationError
from stock_journal.models import Direction, Trade

FULL_STOP_WEIGHT = 0.5
STOP_33_WEIGHT = 0.33
STOP_66_WEIGHT = 0.17
PERCENT_STOP_FACTOR = 0.93


@dataclass(frozen=True)
class TieredStops:
    full_stop: float
    stop_33: float
    stop_66: float
    full_stop_pct: float
    stop_33_pct: float
    stop_66_pct: float
    open_risk: float
    target_2r: float
    target_3r: float


@dataclass(frozen=True)
class SizingPlan:
    stop_price: float
    open_risk: float
    initial_risk_amount: float
    position_size: int
    dollar_exposure: float
    portfolio_weight: float | None
    target_2r: float
    target_3r: float
    stop_33: float | None = None
    stop_66: float | None = None


@dataclass(frozen=True)
class PositionPlan:
    stop_method: str
    tiered: SizingPlan
    single: SizingPlan
    fomo_ratio: int


def tiered_stops(entry_price: float, stop_price: float, direction: Direction = Direction.LONG) -> TieredStops:
    if entry_price <= 0:
        raise ValidationError("Entry price must be positive.")
    sign = direction.sign
    distance = (entry_price - stop_price) * sign
    if distance < 0:
        raise ValidationError("Stop loss must be on the losing side of the entry price.")

    stop_33 = entry_price - sign * distance * 0.33
    stop_66 = entry_price - sign * distance * 0.66
    full_pct = distance / entry_price * 100
    pct_33 = abs(entry_price - stop_33) / entry_price * 100
    pct_66 = abs(entry_price - stop_66) / entry_price * 100
    open_risk = blended_open_risk(full_pct, pct_33, pct_66)
    return TieredStops(
        full_stop=stop_price,
        stop_33=stop_33,
        stop_66=stop_66,
        full_stop_pct=full_pct,
        stop_33_pct=pct_33,
        stop_66_pct=pct_66,
        open_risk=open_risk,
        target_2r=r_target(entry_price, open_risk, 2, direction),
        target_3r=r_target(entry_price, open_risk, 3, direction),
    )


def blended_open_risk(full_pct: float, pct_33: float, pct_66: float) -> float:
    return full_pct * FULL_STOP_WEIGHT + pct_33 * STOP_33_WEIGHT + pct_66 * STOP_66_WEIGHT


def r_target(entry_price: float, open_risk: float, multiple: float, direction: Direction = Direction.LONG) -> float:
    return entry_price * (1 + direction.sign * multiple * (open_risk / 100))


def full_stop_price(entry_price: float, atr: float, low_of_day: float) -> tuple[float, str]:
    """Return the tightest of the ATR, 7% and low-of-day stops and the method that produced it."""
    atr_stop = entry_price - atr
    percent_stop = entry_price * PERCENT_STOP_FACTOR
    stop = max(atr_stop, percent_stop, low_of_day)
    if stop == atr_stop:
        return stop, "ATR stop"
    if stop == percent_stop:
        return stop, "7% stop"
    return stop, "LoD stop"


def fomo_ratio(entry_price: float, low_of_day: float, atr: float) -> int:
    if not entry_price or not low_of_day or not atr:
        return 0
    return round((entry_price - low_of_day) / atr * 100)


def plan_position(
    entry_price: float,
    atr: float,
    low_of_day: float,
    position_risk_pct: float,
    capital: float,
) -> PositionPlan:
    if entry_price <= 0 or atr <= 0:
        raise ValidationError("Entry price and ATR must be positive.")
    if position_risk_pct <= 0:
        raise ValidationError("Position risk must be positive.")
    if capital <= 0:
        raise ValidationError("Capital must be positive to size a position.")

    stop, method = full_stop_price(entry_price, atr, low_of_day)
    if stop >= entry_price:
        raise ValidationError("Low of day must be below the entry price.")
    stops = tiered_stops(entry_price, stop)
    initial_risk = capital * position_risk_pct / 100

    tiered = _sizing(entry_price, stop, stops.open_risk, initial_risk, capital)
    tiered = replace(tiered, stop_33=stops.stop_33, stop_66=stops.stop_66)
    single = _sizing(entry_price, stop, stops.full_stop_pct, initial_risk, capital)
    return PositionPlan(
        stop_method=method,
        tiered=tiered,
        single=single,
        fomo_ratio=fomo_ratio(entry_price, low_of_day, atr),
    )


def _sizing(entry_price: float, stop: float, open_risk: float, initial_risk: float, capital: float) -> SizingPlan:
    risk_per_share = entry_price * (open_risk / 100)
    size = max(1, math.floor(initial_risk / risk_per_share)) if risk_per_share > 0 else 1
    exposure = size * entry_price
    return SizingPlan(
        stop_price=stop,
        open_risk=open_risk,
        initial_risk_amount=initial_risk,
        position_size=size,
        dollar_exposure=exposure,
        portfolio_weight=exposure / capital if capital else None,
        target_2r=r_target(entry_price, open_risk, 2),
        target_3r=r_target(entry_price, open_risk, 3),
    )


def open_risk_stop(trade: Trade) -> float | None:
    if trade.open_risk is None:
        return None
    return trade.entry_price * (1 - trade.direction.sign * trade.open_risk / 100)


def current_risk_amount(trade: Trade, current_price: float) -> float:
    """Dollars at risk on the remaining shares against the open-risk stop."""
    if not trade.is_open:
        return 0.0
    stop = open_risk_stop(trade)
    if stop is None:
        stop = trade.stop_loss_price
    if stop is None:
        return 0.0
    return (current_price - stop) * trade.direction.sign * trade.remaining_shares


def stop_risk_amount(entry_price: float, stop_price: float | None, shares: float) -> float | None:
    if stop_price is None:
        return None
    risk_per_share = abs(entry_price - stop_price)
    if risk_per_share == 0:
        return None
    return risk_per_share * shares
