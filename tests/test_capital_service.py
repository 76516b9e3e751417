from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from stock_journal.errors import AuthenticationError, NoCapitalDataError, NotFoundError
from stock_journal.models import Direction, EndOfDaySnapshot, InterimSnapshot, ManualUpdate
from stock_journal.reconstruct.positions import close_position, open_position

OPENED = datetime(2023, 12, 1, 15, 0, tzinfo=timezone.utc)


def _insert_closed(store, user, entry, exit_price, shares, closed_at):
    trade = open_position(user.user_id, "AAPL", Direction.LONG, entry, shares, OPENED)
    return store.insert_trade(close_position(trade, exit_price, closed_at))


def test_current_capital_from_closed_trade(store, user, capital_service):
    _insert_closed(store, user, 100.0, 115.0, 100, datetime(2024, 3, 1, 15, tzinfo=timezone.utc))
    assert capital_service.calculate_current_capital(user) == pytest.approx(101500.0)


def test_current_capital_marks_open_trade(store, user, capital_service, quotes):
    quotes.prices["MSFT"] = 155.0
    store.insert_trade(open_position(user.user_id, "MSFT", Direction.LONG, 150.0, 100, OPENED))
    breakdown = capital_service.capital_breakdown(user)
    assert breakdown.unrealized_pnl == pytest.approx(500.0)
    assert breakdown.total == pytest.approx(100500.0)
    assert quotes.calls == [["MSFT"]]


def test_quote_failure_falls_back_to_persisted_pnl(store, user, capital_service, quotes):
    quotes.fail = True
    store.insert_trade(open_position(user.user_id, "MSFT", Direction.LONG, 150.0, 100, OPENED, current_price=148.0))
    breakdown = capital_service.capital_breakdown(user)
    assert breakdown.total == pytest.approx(99800.0)
    assert breakdown.stale_tickers == ["MSFT"]


def test_operations_require_a_user(capital_service):
    with pytest.raises(AuthenticationError):
        capital_service.calculate_current_capital(None)


def test_record_capital_tracks_day_high_and_low(user, capital_service):
    capital_service.record_capital_change(user, 100000.0)
    capital_service.record_capital_change(user, 103000.0)
    snapshot = capital_service.record_capital_change(user, 99000.0)
    assert snapshot.date == date(2024, 3, 15)
    assert snapshot.day_open == 100000.0
    assert snapshot.day_high == 103000.0
    assert snapshot.day_low == 99000.0
    assert snapshot.capital_amount == 99000.0


def test_record_capital_keeps_metadata_variant(user, capital_service):
    capital_service.record_capital_change(user, 100.0, EndOfDaySnapshot(realized_pnl=5.0, trade_count=1))
    snapshot = capital_service.record_capital_change(user, 110.0)
    assert isinstance(snapshot.metadata, EndOfDaySnapshot)
    assert snapshot.metadata.realized_pnl == 5.0


def test_daily_stats_missing_day_is_reported(user, capital_service):
    with pytest.raises(NoCapitalDataError) as excinfo:
        capital_service.get_daily_capital_stats(user, date(2024, 3, 14))
    assert isinstance(excinfo.value, NotFoundError)
    assert excinfo.value.day == date(2024, 3, 14)


def test_daily_stats_reduce_day(user, capital_service):
    capital_service.record_capital_change(user, 100.0, on=date(2024, 3, 14))
    capital_service.record_capital_change(user, 90.0, on=date(2024, 3, 14))
    stats = capital_service.get_daily_capital_stats(user, date(2024, 3, 14))
    assert (stats.open, stats.high, stats.low, stats.close) == (100.0, 100.0, 90.0, 90.0)


def test_drawdown_from_stored_snapshots(user, capital_service):
    for day, amount in ((1, 100000.0), (2, 95000.0), (3, 98000.0)):
        capital_service.record_capital_change(user, amount, on=date(2024, 3, day))
    metrics = capital_service.calculate_drawdown_metrics(user)
    assert metrics.max_drawdown == pytest.approx(5.0)
    assert metrics.drawdown_periods[0].lowest_capital == 95000.0


def test_backfill_records_end_of_day_snapshots(store, user, capital_service):
    _insert_closed(store, user, 100.0, 110.0, 10, datetime(2023, 12, 4, 15, tzinfo=timezone.utc))
    _insert_closed(store, user, 100.0, 95.0, 10, datetime(2023, 12, 6, 15, tzinfo=timezone.utc))
    recorded = capital_service.process_historical_trades(user)
    assert [snap.date for snap in recorded] == [date(2023, 12, 4), date(2023, 12, 6)]
    assert [snap.capital_amount for snap in recorded] == [100100.0, 100050.0]
    assert all(isinstance(snap.metadata, EndOfDaySnapshot) for snap in recorded)


def test_detailed_equity_curve_has_no_gaps(store, user, capital_service):
    _insert_closed(store, user, 100.0, 110.0, 10, datetime(2023, 12, 27, 15, tzinfo=timezone.utc))
    capital_service.record_capital_change(user, 100100.0, on=date(2024, 1, 3))
    points = capital_service.calculate_detailed_equity_curve(user)
    days = [point.date for point in points if point.source == "historical"]
    assert days[0] == date(2023, 12, 27)
    assert days[-1] == date(2024, 1, 1)
    assert len(days) == (days[-1] - days[0]).days + 1
    assert points[-1].date == date(2024, 1, 3)


def test_current_capital_prefers_latest_snapshot(user, capital_service):
    assert capital_service.get_current_capital(user) == 100000.0
    capital_service.record_capital_change(user, 104000.0, on=date(2024, 3, 1))
    assert capital_service.get_current_capital(user) == 104000.0


def test_track_capital_change_records_interim_snapshot(store, user, capital_service):
    store.insert_trade(open_position(user.user_id, "MSFT", Direction.LONG, 150.0, 10, OPENED, current_price=160.0))
    capital = capital_service.track_capital_change(user)
    assert capital == pytest.approx(100100.0)
    snapshot = store.latest_capital(user.user_id)
    assert isinstance(snapshot.metadata, InterimSnapshot)
    assert snapshot.metadata.trade_details[0].ticker == "MSFT"


def test_update_current_capital_records_manual_update(user, capital_service, settings_service):
    snapshot = capital_service.update_current_capital(user, 120000.0, "broker sync")
    assert isinstance(snapshot.metadata, ManualUpdate)
    assert snapshot.metadata.previous_capital == 100000.0
    assert settings_service.get_settings(user).current_capital == 120000.0
    assert settings_service.get_settings(user).starting_cash == 100000.0


def test_cash_flow_adjusts_starting_cash(user, capital_service, settings_service):
    snapshot = capital_service.record_cash_flow(user, -5000.0)
    assert snapshot.capital_amount == pytest.approx(95000.0)
    assert snapshot.metadata.note == "Withdrawal"
    assert settings_service.get_settings(user).starting_cash == pytest.approx(95000.0)


def test_equity_curve_defaults_to_last_thirty_days(user, capital_service):
    capital_service.record_capital_change(user, 1.0, on=date(2024, 1, 1))
    capital_service.record_capital_change(user, 2.0, on=date(2024, 3, 1))
    rows = capital_service.calculate_equity_curve(user)
    assert [row["date"] for row in rows] == ["2024-03-01"]
