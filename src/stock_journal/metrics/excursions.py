from __future__ import annotations

from dataclasses import dataclass, replace

from stock_journal.errors import ValidationError
from stock_journal.models import Direction, Trade


@dataclass(frozen=True)
class ExcursionMetrics:
    mae_dollars: float
    mae_pct: float
    mae_r: float | None
    mfe_dollars: float
    mfe_pct: float
    mfe_r: float | None


def compute_excursions(
    direction: Direction,
    entry_price: float,
    stop_price: float | None,
    low: float,
    high: float,
    shares: float,
) -> ExcursionMetrics:
    if entry_price <= 0:
        raise ValidationError("Entry price must be positive.")
    if low > high:
        raise ValidationError("Historical low is above the historical high.")

    if direction is Direction.LONG:
        adverse_move = max(0.0, entry_price - low)
        favorable_move = max(0.0, high - entry_price)
    else:
        adverse_move = max(0.0, high - entry_price)
        favorable_move = max(0.0, entry_price - low)

    stop_distance = None
    if stop_price is not None:
        stop_distance = (entry_price - stop_price) * direction.sign

    return ExcursionMetrics(
        mae_dollars=adverse_move * shares,
        mae_pct=adverse_move / entry_price * 100,
        mae_r=_r_multiple(adverse_move, stop_distance),
        mfe_dollars=favorable_move * shares,
        mfe_pct=favorable_move / entry_price * 100,
        mfe_r=_r_multiple(favorable_move, stop_distance),
    )


def apply_excursions(trade: Trade, low: float, high: float) -> Trade:
    metrics = compute_excursions(
        trade.direction,
        trade.entry_price,
        trade.stop_loss_price,
        low,
        high,
        trade.total_shares,
    )
    return replace(
        trade,
        mae=metrics.mae_pct,
        mfe=metrics.mfe_pct,
        mae_dollars=metrics.mae_dollars,
        mfe_dollars=metrics.mfe_dollars,
        mae_r=metrics.mae_r,
        mfe_r=metrics.mfe_r,
    )


def _r_multiple(move: float, stop_distance: float | None) -> float | None:
    if not stop_distance or stop_distance <= 0:
        return None
    return move / stop_distance
