# SMB OpSight - Operational & Financial Analytics engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Command-Line Interface (CLI) for SMB OpSight.

The CLI is intentionally thin: it does not implement any accounting or
production logic itself. It loads the TOML configuration, opens the
read-only SQLite store and calls the analytics modules:

    summary      profit-and-loss summary of one period
    trend        rolling multi-period profitability trend
    bottlenecks  delayed production stages
    stock        stock forecast, inventory value and most used materials

Examples
--------
    python -m smb_opsight.cli summary --period-type quarterly --anchor 2026-08-15
    python -m smb_opsight.cli trend --periods 12 --basis cash
    python -m smb_opsight.cli --log-level DEBUG bottlenecks

Exit codes: 0 on success, 1 when the store cannot be read, 2 on
configuration errors.
"""

import argparse
import logging
from typing import Optional

import pandas as pd

from . import __version__
from .config import LOG_LEVELS, AppConfig, load_app_config
from .db import SqliteStore
from .errors import ConfigurationError, SourceReadError
from .inventory import (
    forecast_stock,
    forecasts_to_dataframe,
    inventory_stats,
    top_materials_used,
)
from .ledger import BASES
from .periods import (
    PERIOD_TYPES,
    comparison_label,
    previous_period,
    resolve_period,
    utc_now,
)
from .production import bottlenecks_to_dataframe, detect_bottlenecks
from .profitability import (
    FinancialSummary,
    build_trend,
    compare_summaries,
    financial_summary,
    order_growth,
    order_status_distribution,
    overhead_per_order,
    trend_to_dataframe,
)

logger = logging.getLogger(__name__)

# FinancialSummary fields printed by the 'summary' command, in order.
SUMMARY_LINES = (
    "revenue",
    "material_cost",
    "labour_cost",
    "overhead",
    "other_expenses",
    "total_costs",
    "net_profit",
    "profit_margin",
    "payments_received",
    "cash_flow",
    "total_orders",
    "completed_orders",
    "pending_orders",
    "cancelled_orders",
    "avg_order_value",
)

TREND_COLUMNS = [
    "period_label",
    "revenue",
    "total_costs",
    "net_profit",
    "profit_margin",
    "payments_received",
    "cash_flow",
    "total_orders",
    "degraded",
]


def _build_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the CLI."""
    ap = argparse.ArgumentParser(
        prog="python -m smb_opsight.cli",
        description=(
            "SMB OpSight - Operational & Financial Analytics engine for SMBs. "
            "Computes profit-and-loss summaries, profitability trends, "
            "production bottlenecks and stock forecasts from the shop database."
        ),
    )
    ap.add_argument(
        "--version",
        action="store_true",
        help="Show the installed version of smb_opsight and exit.",
    )
    ap.add_argument(
        "--config",
        dest="config_path",
        help=(
            "Path to the TOML configuration file. "
            "If omitted, 'smb_opsight_config.toml' in the current directory is used."
        ),
    )
    ap.add_argument(
        "--log-level",
        dest="log_level",
        choices=LOG_LEVELS,
        help="Override the logging level defined in the configuration file.",
    )

    sub = ap.add_subparsers(dest="command")

    def add_period_options(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--period-type",
            dest="period_type",
            choices=PERIOD_TYPES,
            help="Period granularity. Defaults to analytics.default_period_type.",
        )
        p.add_argument(
            "--anchor",
            help="Any date (YYYY-MM-DD) inside the wanted period. Defaults to today.",
        )
        p.add_argument(
            "--basis",
            choices=BASES,
            default="accrual",
            help="Accounting basis for revenue and costs (default: accrual).",
        )

    p_summary = sub.add_parser("summary", help="Profit-and-loss summary of one period.")
    add_period_options(p_summary)
    p_summary.add_argument(
        "--compare",
        action="store_true",
        help="Also show the change against the previous period.",
    )

    p_trend = sub.add_parser("trend", help="Rolling profitability trend.")
    add_period_options(p_trend)
    p_trend.add_argument(
        "--periods",
        type=int,
        help="Number of periods in the trend. Defaults to analytics.trend_periods.",
    )

    sub.add_parser("bottlenecks", help="Delayed production stages.")
    p_stock = sub.add_parser("stock", help="Stock forecast and inventory figures.")
    p_stock.add_argument(
        "--top",
        type=int,
        default=10,
        help="Number of most used materials to list (default: 10).",
    )

    return ap


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _summary_table(summary: FinancialSummary) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "line": list(SUMMARY_LINES),
            "value": [getattr(summary, name) for name in SUMMARY_LINES],
        }
    )


def _run_summary(args: argparse.Namespace, config: AppConfig, store: SqliteStore) -> None:
    period_type = args.period_type or config.analytics.default_period_type
    period = resolve_period(period_type, args.anchor or utc_now())
    workers = config.analytics.max_workers

    summary = financial_summary(store, period, basis=args.basis, max_workers=workers)
    print(f"{period.label} ({period.start} to {period.end}), {args.basis} basis")
    print(_summary_table(summary).to_string(index=False))

    per_order = overhead_per_order(
        store, period, expected_orders=config.finance.expected_monthly_orders
    )
    print(f"\nOverhead per expected order: {per_order:.2f}")

    growth = order_growth(store, period, max_workers=workers)
    print(f"Order growth {comparison_label(period)}: {growth:+.1f}%")
    print("\nOrders by status")
    print(order_status_distribution(store, period).to_string(index=False))

    if args.compare:
        previous = financial_summary(
            store, previous_period(period), basis=args.basis, max_workers=workers
        )
        comparison = compare_summaries(summary, previous)
        changes = pd.DataFrame(
            {
                "metric": list(comparison.changes),
                "change_pct": list(comparison.changes.values()),
            }
        )
        print(f"\nChange {comparison.label}")
        print(changes.to_string(index=False))


def _run_trend(args: argparse.Namespace, config: AppConfig, store: SqliteStore) -> None:
    count = config.analytics.trend_periods if args.periods is None else args.periods
    trend = build_trend(
        store,
        count,
        period_type=args.period_type or config.analytics.default_period_type,
        anchor=args.anchor,
        basis=args.basis,
        max_workers=config.analytics.max_workers,
    )
    print(trend_to_dataframe(trend)[TREND_COLUMNS].to_string(index=False))

    for summary in trend:
        if summary.degraded:
            print(f"Warning: {summary.period_label} is incomplete: {summary.warning}")


def _run_bottlenecks(config: AppConfig, store: SqliteStore) -> None:
    flags = detect_bottlenecks(
        store,
        multiplier=config.production.delay_multiplier,
        fallback_hours=config.production.fallback_threshold_hours,
    )
    if not flags:
        print("No delayed production stages.")
        return
    print(bottlenecks_to_dataframe(flags).to_string(index=False))


def _run_stock(args: argparse.Namespace, store: SqliteStore) -> None:
    forecasts = forecast_stock(store)
    if forecasts:
        print(forecasts_to_dataframe(forecasts).to_string(index=False))
    else:
        print("No material at risk and no open bookings.")

    stats = inventory_stats(store)
    print(f"\nMaterials: {stats.total_materials}, stock value: {stats.total_value:.2f}")
    print(f"Materials currently at or below minimum stock: {stats.low_stock_count}")

    top = top_materials_used(store, limit=args.top)
    if not top.empty:
        print("\nMost used materials")
        print(top.to_string(index=False))


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the SMB OpSight CLI.

    This function parses command-line arguments, loads the configuration,
    configures logging, opens the read-only store and dispatches to the
    selected sub-command. Errors are reported on stdout and mapped to the
    exit codes documented in the module docstring.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    # --version: short-circuit and exit early.
    if args.version:
        print(f"smb_opsight version {__version__}")
        return 0

    if not args.command:
        parser.print_help()
        return 2

    try:
        config = load_app_config(args.config_path)
    except (FileNotFoundError, ConfigurationError) as exc:
        print(f"Error: {exc}")
        return 2

    _configure_logging(args.log_level or config.log_level)
    try:
        store = SqliteStore(config.database)
        if args.command == "summary":
            _run_summary(args, config, store)
        elif args.command == "trend":
            _run_trend(args, config, store)
        elif args.command == "bottlenecks":
            _run_bottlenecks(config, store)
        elif args.command == "stock":
            _run_stock(args, store)
    except ConfigurationError as exc:
        print(f"Error: {exc}")
        return 2
    except SourceReadError as exc:
        logger.error("Store read failed: %s", exc)
        print(f"Error: {exc}")
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
