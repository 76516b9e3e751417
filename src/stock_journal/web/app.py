from __future__ import annotations

import logging
import math
import threading
from dataclasses import asdict, is_dataclass
from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from stock_journal.config.app_config import AppConfig, load_app_config
from stock_journal.errors import AuthenticationError, MarketDataError, NotFoundError, ValidationError
from stock_journal.logging_config import configure_logging
from stock_journal.metrics.analytics import (
    compute_frequency_impact,
    compute_mae_mfe_heatmap,
    compute_mae_scatter,
    compute_post_result_performance,
    compute_setup_performance,
    compute_strategy_performance,
    compute_time_performance,
)
from stock_journal.metrics.risk import plan_position
from stock_journal.metrics.summary import (
    compute_exposure_metrics,
    compute_performance_metrics,
    compute_streaks,
    compute_trade_market_metrics,
)
from stock_journal.models import CapitalSnapshot, TradeAction, TradeStatus, UserContext, metadata_to_dict
from stock_journal.services.container import JournalServices, build_services
from stock_journal.web import schemas

logger = logging.getLogger(__name__)

_ERROR_STATUS: tuple[tuple[type[Exception], int], ...] = (
    (AuthenticationError, 401),
    (NotFoundError, 404),
    (ValidationError, 400),
    (MarketDataError, 502),
)
_SERVICES_LOCK = threading.Lock()

router = APIRouter(prefix="/api")


def create_app(services: JournalServices | None = None, config: AppConfig | None = None) -> FastAPI:
    config = config or load_app_config()
    configure_logging(config.app.log_level)
    app = FastAPI(title="Stock Journal")
    app.state.config = config
    app.state.services = services
    for exc_type, status in _ERROR_STATUS:
        app.add_exception_handler(exc_type, _error_handler(status))
    app.include_router(router)
    return app


def _error_handler(status: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        if status >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    return handler


def get_services(request: Request) -> JournalServices:
    state = request.app.state
    if state.services is None:
        with _SERVICES_LOCK:
            if state.services is None:
                state.services = build_services(state.config)
    return state.services


def current_user(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    services: JournalServices = Depends(get_services),
) -> UserContext:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise AuthenticationError("Missing X-User-Id header.")
    user = services.store.get_user(user_id)
    if user is None:
        raise AuthenticationError(f"Unknown user: {user_id}")
    return user


# users and settings


@router.post("/users")
def register_user(body: schemas.UserCreate, services: JournalServices = Depends(get_services)) -> dict[str, Any]:
    user = services.store.ensure_user(body.user_id, body.email, body.created_at)
    services.settings.get_settings(user)
    return _payload(user)


@router.get("/settings")
def settings_api(
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    return _payload(services.settings.get_settings(user))


@router.patch("/settings")
def update_settings_api(
    body: schemas.SettingsUpdate,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    changes = body.model_dump(exclude_unset=True)
    return _payload(services.settings.update_settings(user, changes))


# trades


@router.get("/trades")
def trades_api(
    status: TradeStatus | None = None,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> list[dict[str, Any]]:
    return [_trade_payload(trade) for trade in services.trades.list_trades(user, status)]


@router.post("/trades", status_code=201)
def create_trade_api(
    body: schemas.TradeCreate,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    trade = services.trades.create_trade(
        user,
        body.ticker,
        body.direction,
        body.entry_price,
        body.shares,
        at=body.entry_datetime,
        stop_loss_price=body.stop_loss_price,
        tiered=body.tiered,
        asset_type=body.asset_type,
        strategy=body.strategy,
        setups=body.setups,
        notes=body.notes,
        position_risk_pct=body.position_risk_pct,
    )
    return _trade_payload(trade)


@router.post("/trades/import", status_code=201)
def import_trade_api(
    body: schemas.TradeImport,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    actions = [TradeAction(item.action_type, item.timestamp, item.price, item.shares) for item in body.actions]
    trade = services.trades.import_trade(
        user,
        body.ticker,
        body.direction,
        actions,
        stop_loss_price=body.stop_loss_price,
        asset_type=body.asset_type,
        strategy=body.strategy,
        setups=body.setups,
        notes=body.notes,
    )
    return _trade_payload(trade)


@router.get("/trades/{trade_id}")
def trade_detail_api(
    trade_id: str,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    return _trade_payload(services.trades.get_trade(user, trade_id))


@router.delete("/trades/{trade_id}", status_code=204)
def delete_trade_api(
    trade_id: str,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> None:
    services.trades.delete_trade(user, trade_id)


@router.post("/trades/{trade_id}/add")
def add_to_trade_api(
    trade_id: str,
    body: schemas.PositionChange,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    return _trade_payload(services.trades.add_to_trade(user, trade_id, body.price, body.shares, body.at))


@router.post("/trades/{trade_id}/trim")
def trim_trade_api(
    trade_id: str,
    body: schemas.PositionChange,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    return _trade_payload(services.trades.trim_trade(user, trade_id, body.price, body.shares, body.at))


@router.post("/trades/{trade_id}/close")
def close_trade_api(
    trade_id: str,
    body: schemas.ClosePosition,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    return _trade_payload(services.trades.close_trade(user, trade_id, body.price, body.at))


@router.patch("/trades/{trade_id}/notes")
def trade_notes_api(
    trade_id: str,
    body: schemas.NotesUpdate,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    return _trade_payload(services.trades.update_notes(user, trade_id, body.notes, body.mistakes))


@router.post("/trades/{trade_id}/excursions")
def trade_excursions_api(
    trade_id: str,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    return _trade_payload(services.trades.compute_trade_excursions(user, trade_id))


@router.post("/trades/refresh-prices")
def refresh_prices_api(
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> list[dict[str, Any]]:
    return [_trade_payload(trade) for trade in services.trades.refresh_market_prices(user)]


@router.get("/portfolio")
def portfolio_api(
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    settings = services.settings.get_settings(user)
    breakdown, prices = services.capital.portfolio(user)
    positions = []
    for trade in services.trades.list_trades(user, TradeStatus.OPEN):
        metrics = compute_trade_market_metrics(trade, prices, settings.starting_cash, breakdown.total)
        positions.append({"trade_id": trade.trade_id, "ticker": trade.ticker, **_payload(metrics)})
    return {"capital": _payload(breakdown), "positions": positions}


# capital


@router.get("/capital/current")
def current_capital_api(
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    return _payload(services.capital.capital_breakdown(user))


@router.post("/capital")
def record_capital_api(
    body: schemas.CapitalRecord,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    if body.note is not None:
        return _snapshot_payload(services.capital.update_current_capital(user, body.amount, body.note))
    return _snapshot_payload(services.capital.record_capital_change(user, body.amount, on=body.day))


@router.post("/capital/cash-flow")
def cash_flow_api(
    body: schemas.CashFlow,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    return _snapshot_payload(services.capital.record_cash_flow(user, body.amount, body.note))


@router.get("/capital/drawdown")
def drawdown_api(
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    return _payload(services.capital.calculate_drawdown_metrics(user))


@router.get("/capital/equity-curve")
def equity_curve_api(
    start: date | None = None,
    end: date | None = None,
    interval: str = "daily",
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> list[dict[str, Any]]:
    try:
        return _payload(services.capital.calculate_equity_curve(user, start, end, interval))
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


@router.get("/capital/detailed-equity-curve")
def detailed_equity_curve_api(
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> list[dict[str, Any]]:
    return [_payload(point) for point in services.capital.calculate_detailed_equity_curve(user)]


@router.get("/capital/daily/{day}")
def daily_capital_api(
    day: date,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    return _payload(services.capital.get_daily_capital_stats(user, day))


@router.post("/capital/backfill")
def backfill_api(
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    snapshots = services.capital.process_historical_trades(user)
    return {"recorded": len(snapshots), "snapshots": [_snapshot_payload(snap) for snap in snapshots]}


# analytics


@router.get("/analytics/summary")
def summary_api(
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    trades = services.trades.list_trades(user)
    capital = services.capital.get_current_capital(user)
    return {
        "performance": _payload(compute_performance_metrics(trades)),
        "exposure": _payload(compute_exposure_metrics(trades, capital, tz=services.capital.tz)),
        "current_capital": capital,
    }


@router.get("/analytics/time")
def time_analysis_api(
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    return _payload(compute_time_performance(services.trades.list_trades(user), services.capital.tz))


@router.get("/analytics/strategy")
def strategy_analysis_api(
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    trades = services.trades.list_trades(user)
    return _payload(
        {
            "strategies": compute_strategy_performance(trades),
            "setups": compute_setup_performance(trades),
        }
    )


@router.get("/analytics/psychology")
def psychology_analysis_api(
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    trades = services.trades.list_trades(user)
    return {
        "post_result": compute_post_result_performance(trades),
        "frequency": compute_frequency_impact(trades, services.capital.tz),
        "streaks": _payload(compute_streaks(trades)),
    }


@router.get("/analytics/risk")
def risk_analysis_api(
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    trades = services.trades.list_trades(user)
    return {"mae_scatter": compute_mae_scatter(trades), "mae_mfe_heatmap": compute_mae_mfe_heatmap(trades)}


@router.post("/risk/plan")
def position_plan_api(
    body: schemas.PositionPlanRequest,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    capital = body.capital if body.capital is not None else services.capital.get_current_capital(user)
    plan = plan_position(body.entry_price, body.atr, body.low_of_day, body.position_risk_pct, capital)
    return _payload(plan)


# journal


@router.get("/journal/{day}")
def journal_entry_api(
    day: date,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    return _payload(services.journal.get_entry(user, day))


@router.put("/journal/{day}")
def save_journal_entry_api(
    day: date,
    body: schemas.JournalEntryIn,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    entry = services.journal.save_entry(user, day, body.reflection, body.market_notes, body.lessons_learned)
    return _payload(entry)


@router.get("/missed-trades")
def missed_trades_api(
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> list[dict[str, Any]]:
    return [_payload(item) for item in services.journal.list_missed_trades(user)]


@router.post("/missed-trades", status_code=201)
def add_missed_trade_api(
    body: schemas.MissedTradeIn,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    missed = services.journal.add_missed_trade(
        user, body.day, body.ticker, body.reason, body.notes, body.potential_profit
    )
    return _payload(missed)


@router.get("/watchlist")
def watchlist_api(
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> list[dict[str, Any]]:
    return [_payload(item) for item in services.journal.watchlist(user)]


@router.post("/watchlist", status_code=201)
def watch_api(
    body: schemas.WatchlistIn,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> dict[str, Any]:
    return _payload(services.journal.watch(user, body.ticker, body.notes))


@router.delete("/watchlist/{ticker}", status_code=204)
def unwatch_api(
    ticker: str,
    user: UserContext = Depends(current_user),
    services: JournalServices = Depends(get_services),
) -> None:
    services.journal.unwatch(user, ticker)


def _trade_payload(trade) -> dict[str, Any]:
    payload = _payload(trade)
    payload["realized_r"] = _finite(trade.realized_r)
    return payload


def _snapshot_payload(snapshot: CapitalSnapshot) -> dict[str, Any]:
    payload = _payload(snapshot)
    payload["metadata"] = metadata_to_dict(snapshot.metadata) if snapshot.metadata is not None else None
    return payload


def _payload(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        value = asdict(value)
    return _finite(jsonable_encoder(value))


def _finite(value: Any) -> Any:
    # JSON has no representation for inf/nan.
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {key: _finite(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_finite(item) for item in value]
    return value


def main() -> None:
    import uvicorn

    app_config = load_app_config()
    uvicorn.run(
        "stock_journal.web.app:create_app",
        factory=True,
        host=app_config.app.host,
        port=app_config.app.port,
        reload=app_config.app.reload,
    )


if __name__ == "__main__":
    main()
