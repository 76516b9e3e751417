from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path

from stock_journal.config.app_config import load_app_config
from stock_journal.errors import JournalError
from stock_journal.logging_config import configure_logging
from stock_journal.services.container import JournalServices, build_services


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Stock trading journal tools.")
    parser.add_argument("--config", type=Path, default=None, help="Path to app.toml.")
    parser.add_argument("--log-level", type=str, default=None, help="Override the configured log level.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Run the HTTP API with uvicorn.")

    backfill = sub.add_parser("backfill", help="Record end-of-day capital from closed trade history.")
    backfill.add_argument("--user", required=True, help="User id.")

    snapshot = sub.add_parser("snapshot", help="Record today's capital from live positions.")
    snapshot.add_argument("--user", required=True, help="User id.")
    snapshot.add_argument("--interim", action="store_true", help="Tag the snapshot as interim instead of end of day.")

    equity = sub.add_parser("equity", help="Print the detailed equity curve.")
    equity.add_argument("--user", required=True, help="User id.")
    equity.add_argument("--json", action="store_true", help="Print JSON output.")

    drawdown = sub.add_parser("drawdown", help="Print drawdown metrics.")
    drawdown.add_argument("--user", required=True, help="User id.")
    drawdown.add_argument("--json", action="store_true", help="Print JSON output.")

    args = parser.parse_args(argv)

    app_config = load_app_config(args.config)
    configure_logging(args.log_level or app_config.app.log_level)

    if args.command == "serve":
        import uvicorn

        uvicorn.run(
            "stock_journal.web.app:create_app",
            factory=True,
            host=app_config.app.host,
            port=app_config.app.port,
            reload=app_config.app.reload,
        )
        return 0

    services = build_services(app_config)
    try:
        user = services.store.get_user(args.user)
        if user is None:
            print(f"Unknown user: {args.user}", file=sys.stderr)
            return 1
        if args.command == "backfill":
            snapshots = services.capital.process_historical_trades(user)
            print(f"Recorded {len(snapshots)} capital snapshots for {user.user_id}.")
            return 0
        if args.command == "snapshot":
            capital = services.capital.calculate_current_capital(user)
            recorded = services.capital.record_daily_capital(user, capital, end_of_day=not args.interim)
            print(f"Recorded capital {recorded.capital_amount:.2f} for {user.user_id} on {recorded.date.isoformat()}.")
            return 0
        if args.command == "equity":
            return _print_equity(services, user, args.json)
        return _print_drawdown(services, user, args.json)
    except JournalError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        services.store.close()


def _print_equity(services: JournalServices, user, as_json: bool) -> int:
    points = services.capital.calculate_detailed_equity_curve(user)
    if as_json:
        print(json.dumps([asdict(point) for point in points], default=str, indent=2))
        return 0
    if not points:
        print("No equity history.")
        return 0
    print("date capital drawdown runup realized unrealized source")
    for point in points:
        print(
            f"{point.date.isoformat()} {point.capital:.2f} {point.drawdown:.2f} {point.runup:.2f} "
            f"{point.realized_pnl:.2f} {point.unrealized_pnl:.2f} {point.source}"
        )
    return 0


def _print_drawdown(services: JournalServices, user, as_json: bool) -> int:
    metrics = services.capital.calculate_drawdown_metrics(user)
    if as_json:
        print(json.dumps(asdict(metrics), default=str, indent=2))
        return 0
    print(f"Max drawdown: {metrics.max_drawdown:.2f}%")
    print(f"Current drawdown: {metrics.current_drawdown:.2f}%")
    for period in metrics.drawdown_periods:
        recovery = period.recovery_date.isoformat() if period.recovery_date else "open"
        print(
            f"{period.start_date.isoformat()} start {period.start_capital:.2f} "
            f"low {period.lowest_capital:.2f} ({period.drawdown_percentage:.2f}%) recovery {recovery}"
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
