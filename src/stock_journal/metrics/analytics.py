from __future__ import annotations

import math
from collections import defaultdict
from datetime import timezone, tzinfo
from typing import Any, Callable, Iterable

from stock_journal.metrics.summary import closed_trades
from stock_journal.models import Trade

WEEKDAY_LABELS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
MAE_BUCKET_R = 0.5

Row = dict[str, Any]


def compute_time_performance(trades: Iterable[Trade], tz: tzinfo = timezone.utc) -> dict[str, list[Row]]:
    closed = closed_trades(trades)
    hourly = _group(closed, lambda trade: _local(trade.entry_datetime, tz).hour)
    weekday = _group(closed, lambda trade: _local(trade.entry_datetime, tz).weekday())
    monthly = _group(
        [trade for trade in closed if trade.exit_datetime is not None],
        lambda trade: _local(trade.exit_datetime, tz).strftime("%Y-%m"),
    )

    hourly_rows = [{"hour": hour, **_r_summary(items)} for hour, items in sorted(hourly.items())]
    weekday_rows = [
        {"weekday": WEEKDAY_LABELS[day], **_r_summary(items)} for day, items in sorted(weekday.items())
    ]
    monthly_rows = [
        {"month": month, "total_r": sum(_r(trade) for trade in items), **_r_summary(items)}
        for month, items in sorted(monthly.items())
    ]
    return {"hourly": hourly_rows, "weekday": weekday_rows, "monthly": monthly_rows}


def compute_strategy_performance(trades: Iterable[Trade]) -> list[Row]:
    groups = _group(closed_trades(trades), lambda trade: trade.strategy or "None")
    return [
        {"strategy": name, **_r_summary(items), "profit_factor": _r_profit_factor(items)}
        for name, items in sorted(groups.items())
    ]


def compute_setup_performance(trades: Iterable[Trade]) -> list[Row]:
    groups: dict[str, list[Trade]] = defaultdict(list)
    for trade in closed_trades(trades):
        for setup in trade.setups or ["None"]:
            groups[setup].append(trade)
    rows: list[Row] = []
    for setup, items in sorted(groups.items()):
        wins = sum(1 for trade in items if trade.realized_pnl > 0)
        losses = sum(1 for trade in items if trade.realized_pnl < 0)
        rows.append(
            {
                "setup": setup,
                **_r_summary(items),
                "wins": wins,
                "losses": losses,
                "total_pnl": sum(trade.realized_pnl for trade in items),
                "profit_factor": _r_profit_factor(items),
            }
        )
    return rows


def compute_post_result_performance(trades: Iterable[Trade]) -> dict[str, Row]:
    ordered = sorted(
        closed_trades(trades),
        key=lambda trade: _local(trade.exit_datetime or trade.entry_datetime, timezone.utc),
    )
    after_win: list[Trade] = []
    after_loss: list[Trade] = []
    for previous, current in zip(ordered, ordered[1:]):
        if _r(previous) > 0:
            after_win.append(current)
        else:
            after_loss.append(current)
    return {"after_win": _r_summary(after_win), "after_loss": _r_summary(after_loss)}


def compute_frequency_impact(trades: Iterable[Trade], tz: tzinfo = timezone.utc) -> list[Row]:
    days = _group(closed_trades(trades), lambda trade: _local(trade.entry_datetime, tz).date())
    by_count: dict[int, list[Row]] = defaultdict(list)
    for items in days.values():
        by_count[len(items)].append(_r_summary(items))
    rows: list[Row] = []
    for count, summaries in sorted(by_count.items()):
        rows.append(
            {
                "trades_per_day": count,
                "days": len(summaries),
                "avg_r": sum(item["avg_r"] for item in summaries) / len(summaries),
                "win_rate": sum(item["win_rate"] for item in summaries) / len(summaries),
            }
        )
    return rows


def compute_mae_scatter(trades: Iterable[Trade]) -> list[Row]:
    return [
        {
            "trade_id": trade.trade_id,
            "ticker": trade.ticker,
            "mae_r": trade.mae_r or 0.0,
            "mfe_r": trade.mfe_r or 0.0,
            "realized_r": _r(trade),
        }
        for trade in closed_trades(trades)
    ]


def compute_mae_mfe_heatmap(trades: Iterable[Trade]) -> list[Row]:
    cells: dict[tuple[float, float], list[float]] = defaultdict(list)
    for point in compute_mae_scatter(trades):
        mae_key = math.floor(point["mae_r"] / MAE_BUCKET_R) * MAE_BUCKET_R
        mfe_key = math.floor(point["mfe_r"] / MAE_BUCKET_R) * MAE_BUCKET_R
        cells[(mae_key, mfe_key)].append(point["realized_r"])
    return [
        {"mae_r": mae, "mfe_r": mfe, "count": len(values), "avg_r": sum(values) / len(values)}
        for (mae, mfe), values in sorted(cells.items())
    ]


def _r(trade: Trade) -> float:
    return trade.realized_r or 0.0


def _r_summary(items: list[Trade]) -> Row:
    count = len(items)
    if not count:
        return {"count": 0, "win_rate": 0.0, "avg_r": 0.0}
    wins = sum(1 for trade in items if _r(trade) > 0)
    return {
        "count": count,
        "win_rate": wins / count * 100,
        "avg_r": sum(_r(trade) for trade in items) / count,
    }


def _r_profit_factor(items: list[Trade]) -> float | None:
    gains = sum(max(0.0, _r(trade)) for trade in items)
    losses = abs(sum(min(0.0, _r(trade)) for trade in items))
    if not losses:
        return None
    return gains / losses


def _group(items: Iterable[Trade], key: Callable[[Trade], Any]) -> dict[Any, list[Trade]]:
    groups: dict[Any, list[Trade]] = defaultdict(list)
    for item in items:
        groups[key(item)].append(item)
    return groups


def _local(value, tz: tzinfo):
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(tz)
