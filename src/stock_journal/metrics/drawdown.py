from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from stock_journal.models import CapitalSnapshot, DrawdownMetrics, DrawdownPeriod


def compute_drawdown_metrics(snapshots: Iterable[CapitalSnapshot]) -> DrawdownMetrics:
    ordered = sorted(snapshots, key=lambda snap: snap.date)
    if not ordered:
        return DrawdownMetrics(current_drawdown=0.0, max_drawdown=0.0, drawdown_periods=[])

    watermark = ordered[0].capital_amount
    current = 0.0
    maximum = 0.0
    periods: list[DrawdownPeriod] = []
    active: DrawdownPeriod | None = None

    for snap in ordered:
        capital = snap.capital_amount
        if capital > watermark:
            watermark = capital
            current = 0.0
            if active is not None:
                periods.append(replace(active, recovery_date=snap.date, recovery_capital=capital))
                active = None
            continue
        if capital == watermark:
            current = 0.0
            continue

        current = drawdown_pct(watermark, capital)
        maximum = max(maximum, current)
        if active is None:
            active = DrawdownPeriod(
                start_date=snap.date,
                start_capital=watermark,
                lowest_capital=capital,
                drawdown_percentage=current,
            )
        elif capital < active.lowest_capital:
            active = replace(active, lowest_capital=capital, drawdown_percentage=current)

    if active is not None:
        periods.append(active)
    return DrawdownMetrics(current_drawdown=current, max_drawdown=maximum, drawdown_periods=periods)


def drawdown_pct(watermark: float, capital: float) -> float:
    if watermark <= 0 or capital >= watermark:
        return 0.0
    return (watermark - capital) / watermark * 100


def runup_pct(low_watermark: float, capital: float) -> float:
    if low_watermark <= 0 or capital <= low_watermark:
        return 0.0
    return (capital - low_watermark) / low_watermark * 100
