# SMB OpSight - Operational & Financial Analytics engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Profitability summaries and trends for SMB OpSight.

This module turns ledger totals (see ``ledger.py``) into the profit-and-loss
figures shown to the business owner:

- ``summarize()`` is a pure function building one FinancialSummary from a
  LedgerResult:

      total_costs   = material_cost + labour_cost + overhead + other_expenses
      net_profit    = revenue - total_costs
      profit_margin = net_profit / revenue * 100   (0 when revenue is 0)
      cash_flow     = payments_received - total_costs

  Money is rounded to 2 decimal places here and nowhere earlier. Each
  line is rounded first and total_costs, net_profit, profit_margin and
  cash_flow are derived from the rounded lines, so the identities above
  hold exactly on the published values.

- ``financial_summary()`` aggregates and summarizes a single period. It
  fails closed: a store read error propagates and no summary is produced.

- ``build_trend()`` builds a rolling multi-period sequence, oldest first.
  Each period is computed independently; when one period's reads fail, a
  zero-filled summary marked ``degraded`` takes its place and the sequence
  continues, so one bad month does not hide the others.

Helpers for dashboards and exports complete the module: period-over-period
comparison, a DataFrame view of a trend, per-order profitability, the
overhead share per expected order, the order status distribution and
period-over-period order growth.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Optional

import pandas as pd

from .errors import ConfigurationError, SourceReadError
from .ledger import ACCRUAL, BASES, LedgerResult, aggregate_ledger
from .periods import (
    Clock,
    DateLike,
    Period,
    comparison_label,
    filter_frame_by_period,
    periods_back,
    previous_period,
    utc_now,
)
from .store import (
    DEFAULT_ORDER_STATUS,
    ORDER_STATUSES,
    SourceRead,
    TransactionalStore,
    read_concurrently,
)

logger = logging.getLogger(__name__)

# Headline metrics compared period over period.
COMPARED_METRICS = (
    "revenue",
    "total_costs",
    "net_profit",
    "payments_received",
    "cash_flow",
    "total_orders",
)


def round_money(value: float) -> float:
    """Round an accumulated amount for output (2 decimal places)."""
    return round(float(value), 2)


@dataclass(frozen=True)
class FinancialSummary:
    """
    One period's full profit-and-loss summary.

    Revenue and cost lines come from the summary's ``basis`` (accrual or
    cash); ``payments_received`` always comes from the cash basis. Order
    counts are measured over orders placed in the period.

    A degraded summary is a zero-filled placeholder produced by the trend
    builder when the period's data could not be read; ``warning`` then
    explains why.
    """

    period: Period
    basis: str
    revenue: float = 0.0
    material_cost: float = 0.0
    labour_cost: float = 0.0
    overhead: float = 0.0
    other_expenses: float = 0.0
    payments_received: float = 0.0
    total_costs: float = 0.0
    net_profit: float = 0.0
    profit_margin: float = 0.0
    cash_flow: float = 0.0
    total_orders: int = 0
    completed_orders: int = 0
    pending_orders: int = 0
    cancelled_orders: int = 0
    avg_order_value: float = 0.0
    degraded: bool = False
    warning: Optional[str] = None

    @property
    def period_label(self) -> str:
        return self.period.label


@dataclass(frozen=True)
class SummaryComparison:
    """Percentage change of headline metrics against the previous period."""

    label: str
    changes: dict[str, Optional[float]] = field(default_factory=dict)


def _check_basis(basis: str) -> str:
    if basis not in BASES:
        raise ConfigurationError(
            f"Unknown accounting basis: {basis!r}. Expected one of: {', '.join(BASES)}."
        )
    return basis


def summarize(ledger: LedgerResult, basis: str = ACCRUAL) -> FinancialSummary:
    """
    Build a FinancialSummary from ledger totals.

    Args:
        ledger: Result of ``aggregate_ledger`` for one period.
        basis: 'accrual' (default) or 'cash'. Selects where revenue and
            cost lines come from.

    Returns:
        The rounded summary. All-zero ledgers give an all-zero summary.
    """
    totals = ledger.totals(_check_basis(basis))

    revenue = round_money(totals.revenue)
    material_cost = round_money(totals.material_cost)
    labour_cost = round_money(totals.labour_cost)
    overhead = round_money(totals.overhead)
    other_expenses = round_money(totals.other_expenses)
    payments = round_money(ledger.cash.payments_received)

    total_costs = round_money(material_cost + labour_cost + overhead + other_expenses)
    net_profit = round_money(revenue - total_costs)
    profit_margin = (net_profit / revenue) * 100 if revenue > 0 else 0.0

    completed = ledger.completed_order_count
    avg_order_value = ledger.accrual.revenue / completed if completed > 0 else 0.0

    counts = ledger.order_counts
    return FinancialSummary(
        period=ledger.period,
        basis=basis,
        revenue=revenue,
        material_cost=material_cost,
        labour_cost=labour_cost,
        overhead=overhead,
        other_expenses=other_expenses,
        payments_received=payments,
        total_costs=total_costs,
        net_profit=net_profit,
        profit_margin=round(profit_margin, 2),
        cash_flow=round_money(payments - total_costs),
        total_orders=counts.total_orders,
        completed_orders=counts.completed_orders,
        pending_orders=counts.pending_orders,
        cancelled_orders=counts.cancelled_orders,
        avg_order_value=round_money(avg_order_value),
    )


def degraded_summary(period: Period, basis: str, warning: str) -> FinancialSummary:
    """Zero-filled placeholder for a period whose data could not be read."""
    return FinancialSummary(period=period, basis=basis, degraded=True, warning=warning)


def financial_summary(
    store: TransactionalStore,
    period: Period,
    basis: str = ACCRUAL,
    max_workers: int = 5,
) -> FinancialSummary:
    """
    Aggregate and summarize a single period.

    Raises:
        SourceReadError: if any store read fails (no partial summary).
        ConfigurationError: if the basis is unknown.
    """
    _check_basis(basis)
    return summarize(aggregate_ledger(store, period, max_workers=max_workers), basis)


def build_trend(
    store: TransactionalStore,
    periods_count: int,
    period_type: str = "monthly",
    anchor: Optional[DateLike] = None,
    clock: Clock = utc_now,
    basis: str = ACCRUAL,
    max_workers: int = 5,
) -> list[FinancialSummary]:
    """
    Build a rolling profitability trend, oldest period first.

    The sequence ends with the period containing `anchor` (defaults to the
    clock's current date) and holds exactly `periods_count` entries. Each
    period is aggregated on its own; a SourceReadError for one period is
    logged and replaced by a degraded, zero-filled summary.

    Raises:
        ConfigurationError: for an unknown period type or basis, or when
            fewer than one period is requested.
    """
    _check_basis(basis)
    if anchor is None:
        anchor = clock()

    trend: list[FinancialSummary] = []
    for period in periods_back(period_type, periods_count, anchor):
        try:
            ledger = aggregate_ledger(store, period, max_workers=max_workers)
        except SourceReadError as exc:
            logger.warning("Trend period %s degraded: %s", period.key, exc)
            trend.append(degraded_summary(period, basis, str(exc)))
            continue
        trend.append(summarize(ledger, basis))
    return trend


def trend_to_dataframe(trend: list[FinancialSummary]) -> pd.DataFrame:
    """
    Flatten a trend into one row per period.

    Columns: period_key, period_label, start, end, then every
    FinancialSummary field (basis, money lines, order counts, degraded,
    warning).
    """
    rows = []
    for summary in trend:
        data = asdict(summary)
        data.pop("period")
        rows.append(
            {
                "period_key": summary.period.key,
                "period_label": summary.period.label,
                "start": summary.period.start,
                "end": summary.period.end,
                **data,
            }
        )
    return pd.DataFrame(rows)


def compare_summaries(
    current: FinancialSummary, previous: FinancialSummary
) -> SummaryComparison:
    """
    Percentage change of headline metrics from `previous` to `current`.

    A change is None when the previous value is 0 (no meaningful base).
    """
    changes: dict[str, Optional[float]] = {}
    for metric in COMPARED_METRICS:
        before = float(getattr(previous, metric))
        after = float(getattr(current, metric))
        if before == 0:
            changes[metric] = None
        else:
            changes[metric] = round((after - before) / abs(before) * 100, 1)
    return SummaryComparison(label=comparison_label(current.period), changes=changes)


def order_profitability(
    store: TransactionalStore, period: Period
) -> pd.DataFrame:
    """
    Per-order profit for orders placed in the period, newest first.

    profit        = total_cost - (material_cost + labour_cost + overhead_cost)
    profit_margin = profit / total_cost * 100   (0 when total_cost is 0)

    Raises:
        SourceReadError: if the orders read fails.
    """
    frames = read_concurrently(
        [SourceRead("orders_placed", "orders",
                    lambda: store.fetch_orders(period, "order_date"))]
    )
    orders = filter_frame_by_period(frames["orders_placed"], "order_date", period)

    costs = orders["material_cost"] + orders["labour_cost"] + orders["overhead_cost"]
    profit = orders["total_cost"] - costs
    has_total = orders["total_cost"] > 0
    margin = (profit / orders["total_cost"].where(has_total)) * 100

    out = orders.assign(
        profit=profit.round(2),
        profit_margin=margin.where(has_total, 0.0).astype(float).round(2),
    )
    return out.sort_values("order_date", ascending=False).reset_index(drop=True)


def overhead_per_order(
    store: TransactionalStore, period: Period, expected_orders: int = 40
) -> float:
    """
    Overhead of the period spread over the expected number of orders.

    Raises:
        ConfigurationError: if `expected_orders` is not positive.
        SourceReadError: if the overhead read fails.
    """
    if expected_orders <= 0:
        raise ConfigurationError("expected_orders must be a positive integer.")

    frames = read_concurrently(
        [SourceRead("overhead", "overhead", lambda: store.fetch_overhead(period))]
    )
    overhead = filter_frame_by_period(frames["overhead"], "month", period)
    total = float(overhead["amount"].sum()) if not overhead.empty else 0.0
    return round_money(total / expected_orders)


def order_status_distribution(store: TransactionalStore, period: Period) -> pd.DataFrame:
    """
    Number of orders placed in the period, per status.

    Every known status is listed, in pipeline order and zero-filled;
    unknown statuses found in the data follow, alphabetically. Orders
    without a status count as 'enquiry'.

    Raises:
        SourceReadError: if the orders read fails.
    """
    frames = read_concurrently(
        [SourceRead("orders_placed", "orders",
                    lambda: store.fetch_orders(period, "order_date"))]
    )
    orders = filter_frame_by_period(frames["orders_placed"], "order_date", period)
    statuses = orders["status"].replace("", DEFAULT_ORDER_STATUS)

    counts = statuses.value_counts()
    extra = sorted(set(counts.index) - set(ORDER_STATUSES))
    ordered = list(ORDER_STATUSES) + extra
    return pd.DataFrame(
        {
            "status": ordered,
            "count": [int(counts.get(status, 0)) for status in ordered],
        }
    )


def order_growth(store: TransactionalStore, period: Period, max_workers: int = 2) -> float:
    """
    Percentage change in orders placed, from the previous period to `period`.

    Rounded to 1 decimal place. Returns 0.0 when the previous period has
    no orders.

    Raises:
        SourceReadError: if either orders read fails.
    """
    before = previous_period(period)
    frames = read_concurrently(
        [
            SourceRead("orders_placed", "orders",
                       lambda: store.fetch_orders(period, "order_date")),
            SourceRead("orders_placed_before", "orders",
                       lambda: store.fetch_orders(before, "order_date")),
        ],
        max_workers=max_workers,
    )
    current = len(filter_frame_by_period(frames["orders_placed"], "order_date", period))
    previous = len(
        filter_frame_by_period(frames["orders_placed_before"], "order_date", before)
    )
    if previous == 0:
        return 0.0
    return round((current - previous) / previous * 100, 1)
