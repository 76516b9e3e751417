from __future__ import annotations

from datetime import datetime, timezone

import pytest

from stock_journal.errors import ValidationError
from stock_journal.metrics.excursions import apply_excursions, compute_excursions
from stock_journal.metrics.risk import (
    current_risk_amount,
    fomo_ratio,
    full_stop_price,
    plan_position,
    stop_risk_amount,
    tiered_stops,
)
from stock_journal.models import Direction
from stock_journal.reconstruct.positions import open_position

OPENED = datetime(2024, 3, 1, 15, 0, tzinfo=timezone.utc)


def test_tiered_stops_blend_open_risk():
    stops = tiered_stops(100.0, 90.0)
    assert stops.stop_33 == pytest.approx(96.7)
    assert stops.stop_66 == pytest.approx(93.4)
    assert stops.full_stop_pct == pytest.approx(10.0)
    assert stops.open_risk == pytest.approx(10 * 0.5 + 3.3 * 0.33 + 6.6 * 0.17)
    assert stops.target_2r == pytest.approx(100 * (1 + 2 * stops.open_risk / 100))
    assert stops.target_3r == pytest.approx(100 * (1 + 3 * stops.open_risk / 100))


def test_tiered_stops_for_short_sit_above_entry():
    stops = tiered_stops(100.0, 110.0, Direction.SHORT)
    assert stops.stop_33 == pytest.approx(103.3)
    assert stops.target_2r < 100.0


def test_tiered_stops_reject_stop_on_wrong_side():
    with pytest.raises(ValidationError):
        tiered_stops(100.0, 105.0)


def test_full_stop_picks_tightest_method():
    assert full_stop_price(100.0, 3.0, 96.0) == (97.0, "ATR stop")
    assert full_stop_price(100.0, 10.0, 90.0) == (pytest.approx(93.0), "7% stop")
    assert full_stop_price(100.0, 10.0, 98.0) == (98.0, "LoD stop")


def test_plan_position_sizes_both_plans():
    plan = plan_position(100.0, 3.0, 96.0, 0.5, 100000.0)
    assert plan.stop_method == "ATR stop"
    assert plan.fomo_ratio == 133
    assert plan.tiered.initial_risk_amount == pytest.approx(500.0)
    assert plan.tiered.position_size == 231
    assert plan.single.position_size == 166
    assert plan.tiered.stop_33 == pytest.approx(99.01)
    assert plan.single.stop_33 is None
    assert plan.single.dollar_exposure == pytest.approx(16600.0)


def test_plan_position_requires_capital():
    with pytest.raises(ValidationError):
        plan_position(100.0, 3.0, 96.0, 0.5, 0.0)


def test_fomo_ratio_zero_inputs():
    assert fomo_ratio(0, 96.0, 3.0) == 0


def test_stop_risk_amount():
    assert stop_risk_amount(100.0, 90.0, 10) == pytest.approx(100.0)
    assert stop_risk_amount(100.0, None, 10) is None
    assert stop_risk_amount(100.0, 100.0, 10) is None


def test_current_risk_amount_uses_open_risk_stop():
    trade = open_position("u1", "AAPL", Direction.LONG, 100.0, 10, OPENED, stop_loss_price=90.0)
    stop = 100.0 * (1 - trade.open_risk / 100)
    assert current_risk_amount(trade, 110.0) == pytest.approx((110.0 - stop) * 10)


def test_long_excursions():
    metrics = compute_excursions(Direction.LONG, 100.0, 90.0, 85.0, 120.0, 10)
    assert metrics.mae_dollars == pytest.approx(150.0)
    assert metrics.mae_pct == pytest.approx(15.0)
    assert metrics.mae_r == pytest.approx(1.5)
    assert metrics.mfe_dollars == pytest.approx(200.0)
    assert metrics.mfe_pct == pytest.approx(20.0)
    assert metrics.mfe_r == pytest.approx(2.0)


def test_short_excursions_mirror_long():
    metrics = compute_excursions(Direction.SHORT, 100.0, 110.0, 80.0, 105.0, 10)
    assert metrics.mae_dollars == pytest.approx(50.0)
    assert metrics.mfe_dollars == pytest.approx(200.0)
    assert metrics.mae_r == pytest.approx(0.5)
    assert metrics.mfe_r == pytest.approx(2.0)


def test_excursions_without_stop_have_no_r_multiple():
    metrics = compute_excursions(Direction.LONG, 100.0, None, 95.0, 130.0, 10)
    assert metrics.mae_r is None
    assert metrics.mfe_r is None


def test_excursions_clamp_moves_at_zero():
    metrics = compute_excursions(Direction.LONG, 100.0, 90.0, 101.0, 120.0, 10)
    assert metrics.mae_dollars == 0.0


def test_apply_excursions_copies_metrics_to_trade():
    trade = open_position("u1", "AAPL", Direction.LONG, 100.0, 10, OPENED, stop_loss_price=90.0)
    updated = apply_excursions(trade, 85.0, 120.0)
    assert updated.mae == pytest.approx(15.0)
    assert updated.mfe_dollars == pytest.approx(200.0)
    assert updated.mae_r == pytest.approx(1.5)
    assert trade.mae is None
