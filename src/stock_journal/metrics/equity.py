from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Iterable, Mapping

from stock_journal.metrics.drawdown import drawdown_pct, runup_pct
from stock_journal.models import (
    CapitalBreakdown,
    CapitalSnapshot,
    DailyCapitalStats,
    EquityPoint,
    Trade,
    TradeStatus,
)

SOURCE_HISTORICAL = "historical"
SOURCE_SNAPSHOT = "snapshot"

INTERVALS = ("daily", "weekly", "monthly")


def local_date(value: datetime, tz: tzinfo) -> date:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(tz).date()


def realized_by_exit_date(trades: Iterable[Trade], tz: tzinfo) -> dict[date, float]:
    totals: dict[date, float] = defaultdict(float)
    for trade in trades:
        if trade.status is not TradeStatus.CLOSED or trade.exit_datetime is None:
            continue
        totals[local_date(trade.exit_datetime, tz)] += trade.realized_pnl
    return dict(totals)


def capital_breakdown(
    starting_cash: float,
    trades: Iterable[Trade],
    prices: Mapping[str, float] | None,
) -> CapitalBreakdown:
    """Live capital from starting cash, realized P&L and marked open positions.

    Realized P&L counts every trade, so partial trims on open positions are
    included the same way interim snapshots include them.

    ``prices`` of ``None`` means the quote fetch failed, so every open trade
    keeps its persisted unrealized P&L. A ticker missing from ``prices`` falls
    back the same way for that trade only.
    """
    realized = 0.0
    unrealized = 0.0
    marks: dict[str, float] = {}
    stale: list[str] = []
    for trade in trades:
        realized += trade.realized_pnl or 0.0
        if trade.status is TradeStatus.CLOSED:
            continue
        price = None if prices is None else prices.get(trade.ticker.upper())
        if price is None:
            value = trade.unrealized_pnl or 0.0
            stale.append(trade.ticker)
        else:
            value = (price - trade.entry_price) * trade.remaining_shares * trade.direction.sign
        unrealized += value
        marks[trade.ticker] = marks.get(trade.ticker, 0.0) + value
    return CapitalBreakdown(
        starting_cash=starting_cash,
        realized_pnl=realized,
        unrealized_pnl=unrealized,
        total=starting_cash + realized + unrealized,
        marks=marks,
        stale_tickers=stale,
    )


def historical_capital_series(
    trades: Iterable[Trade],
    starting_cash: float,
    tz: tzinfo,
) -> list[tuple[date, float, int, float]]:
    """Running capital per exit date as ``(day, day_realized, trades_closed, capital)`` rows."""
    trade_list = list(trades)
    counts: dict[date, int] = defaultdict(int)
    for trade in trade_list:
        if trade.status is TradeStatus.CLOSED and trade.exit_datetime is not None:
            counts[local_date(trade.exit_datetime, tz)] += 1
    rows: list[tuple[date, float, int, float]] = []
    running = starting_cash
    for day, realized in sorted(realized_by_exit_date(trade_list, tz).items()):
        running += realized
        rows.append((day, realized, counts[day], running))
    return rows


def build_detailed_equity_curve(
    trades: Iterable[Trade],
    snapshots: Iterable[CapitalSnapshot],
    starting_cash: float,
    account_created: date,
    tz: tzinfo,
) -> list[EquityPoint]:
    pre_account = {
        day: total
        for day, total in realized_by_exit_date(trades, tz).items()
        if day < account_created
    }
    live = sorted(
        (snap for snap in snapshots if snap.date >= account_created),
        key=lambda snap: (snap.date, snap.recorded_at or datetime.min.replace(tzinfo=timezone.utc)),
    )

    points: list[EquityPoint] = []
    high_watermark: float | None = None
    low_watermark: float | None = None
    capital = starting_cash
    if pre_account:
        high_watermark = low_watermark = starting_cash
        day = min(pre_account)
        while day < account_created:
            realized = pre_account.get(day, 0.0)
            capital += realized
            high_watermark = max(high_watermark, capital)
            low_watermark = min(low_watermark, capital)
            points.append(
                EquityPoint(
                    date=day,
                    capital=capital,
                    drawdown=drawdown_pct(high_watermark, capital),
                    runup=runup_pct(low_watermark, capital),
                    realized_pnl=realized,
                    unrealized_pnl=0.0,
                    source=SOURCE_HISTORICAL,
                )
            )
            day += timedelta(days=1)

    for snap in live:
        capital = snap.capital_amount
        if high_watermark is None or low_watermark is None:
            high_watermark = low_watermark = capital
        high_watermark = max(high_watermark, capital)
        low_watermark = min(low_watermark, capital)
        metadata = snap.metadata
        points.append(
            EquityPoint(
                date=snap.date,
                capital=capital,
                drawdown=drawdown_pct(high_watermark, capital),
                runup=runup_pct(low_watermark, capital),
                realized_pnl=metadata.realized_pnl if metadata else 0.0,
                unrealized_pnl=metadata.unrealized_pnl if metadata else 0.0,
                source=SOURCE_SNAPSHOT,
            )
        )
    return points


def reduce_daily_stats(day: date, snapshots: Iterable[CapitalSnapshot]) -> DailyCapitalStats | None:
    rows = sorted(
        (snap for snap in snapshots if snap.date == day),
        key=lambda snap: snap.recorded_at or datetime.min.replace(tzinfo=timezone.utc),
    )
    if not rows:
        return None
    first = rows[0]
    last = rows[-1]
    realized = sum(snap.metadata.realized_pnl for snap in rows if snap.metadata is not None)
    latest_meta = next((snap.metadata for snap in reversed(rows) if snap.metadata is not None), None)
    return DailyCapitalStats(
        date=day,
        open=first.day_open,
        high=max(max(snap.day_high, snap.capital_amount) for snap in rows),
        low=min(min(snap.day_low, snap.capital_amount) for snap in rows),
        close=last.capital_amount,
        realized_pnl=realized,
        unrealized_pnl=latest_meta.unrealized_pnl if latest_meta else 0.0,
        trade_count=latest_meta.trade_count if latest_meta else 0,
    )


def bucket_equity_curve(snapshots: Iterable[CapitalSnapshot], interval: str = "daily") -> list[dict[str, object]]:
    if interval not in INTERVALS:
        raise ValueError(f"Unsupported interval: {interval}")
    output: list[dict[str, object]] = []
    seen: set[str] = set()
    for snap in sorted(snapshots, key=lambda item: item.date):
        key = _bucket_key(snap.date, interval)
        if key in seen:
            continue
        seen.add(key)
        output.append(
            {
                "date": key,
                "capital_amount": snap.capital_amount,
                "is_end_of_day": snap.metadata is not None and snap.metadata.type == "end_of_day_snapshot",
            }
        )
    return output


def _bucket_key(day: date, interval: str) -> str:
    if interval == "daily":
        return day.isoformat()
    if interval == "weekly":
        year, week, _ = day.isocalendar()
        return f"{year}-W{week:02d}"
    return f"{day.year}-{day.month:02d}"
