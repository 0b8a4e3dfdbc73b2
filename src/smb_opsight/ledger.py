# SMB OpSight - Operational & Financial Analytics engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Ledger aggregation for SMB OpSight.

This module reduces the transactional rows of one period into money
totals on two accounting bases:

1. Accrual basis
   -------------
   Revenue and production costs (material, labour) are recognized when
   an order is *completed*: only orders whose status is 'completed' or
   'delivered' and whose ``completed_at`` falls inside the period count.
   An order placed in the period but finished later contributes nothing
   yet.

2. Cash basis
   ----------
   Money actually received in the period: the sum of payments dated
   inside it, whatever order they belong to and whenever that order was
   completed.

Period costs that are not tied to an order are shared by both bases:

- overhead entries whose ``month`` falls inside the period,
- misc expenses dated inside the period, except the labour category
  (recorded as 'labour' or 'labor'), which is already folded into the
  orders' ``labour_cost``.

Order *volume* is measured on a different window from order *money*:
order counts are computed over orders placed in the period (by
``order_date``), independently of the accrual window.

The five reads (orders placed, orders completed, overhead, expenses,
payments) are issued concurrently; the reduction only starts once all of
them have succeeded. If any read fails, the whole aggregation fails with
SourceReadError and no partial totals are produced.

Amounts are accumulated at full float precision: LedgerTotals are not
rounded. Rounding to 2 decimal places happens once, when a
FinancialSummary is built (see ``profitability.py``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import pandas as pd

from .periods import Period, filter_frame_by_period
from .store import (
    CANCELLED_ORDER_STATUS,
    COMPLETED_ORDER_STATUSES,
    SourceRead,
    TransactionalStore,
    read_concurrently,
)

logger = logging.getLogger(__name__)

# Expense categories already accounted for through orders' labour_cost.
LABOUR_EXPENSE_CATEGORIES = ("labour", "labor")

ACCRUAL = "accrual"
CASH = "cash"
BASES = (ACCRUAL, CASH)


@dataclass(frozen=True)
class LedgerTotals:
    """
    Aggregated money for one period, on exactly one basis.

    Attributes
    ----------
    basis:
        'accrual' or 'cash'.
    revenue:
        Accrual: total_cost of orders completed in the period.
        Cash: payments received in the period.
    material_cost, labour_cost:
        Accrual: production costs of orders completed in the period.
        Cash: always 0.0 (production costs carry no payment date).
    overhead:
        Overhead entries whose month falls in the period.
    other_expenses:
        Non-labour expenses dated in the period.
    payments_received:
        Cash: payments dated in the period. Accrual: always 0.0.
    """

    basis: str
    revenue: float = 0.0
    material_cost: float = 0.0
    labour_cost: float = 0.0
    overhead: float = 0.0
    other_expenses: float = 0.0
    payments_received: float = 0.0


@dataclass(frozen=True)
class OrderCounts:
    """Order volume over orders *placed* in the period."""

    total_orders: int = 0
    completed_orders: int = 0
    pending_orders: int = 0
    cancelled_orders: int = 0


@dataclass(frozen=True)
class LedgerResult:
    """Accrual and cash totals plus order counts for one period."""

    period: Period
    accrual: LedgerTotals
    cash: LedgerTotals
    order_counts: OrderCounts
    # Orders completed in the period (accrual window), used for averages.
    completed_order_count: int = 0

    def totals(self, basis: str) -> LedgerTotals:
        if basis == CASH:
            return self.cash
        return self.accrual


def _sum(frame: pd.DataFrame, column: str) -> float:
    if frame.empty:
        return 0.0
    return float(frame[column].sum())


def _count_orders(placed: pd.DataFrame) -> OrderCounts:
    statuses = placed["status"]
    completed = statuses.isin(COMPLETED_ORDER_STATUSES)
    cancelled = statuses == CANCELLED_ORDER_STATUS
    return OrderCounts(
        total_orders=int(len(placed)),
        completed_orders=int(completed.sum()),
        pending_orders=int((~completed & ~cancelled).sum()),
        cancelled_orders=int(cancelled.sum()),
    )


def aggregate_ledger(
    store: TransactionalStore,
    period: Period,
    max_workers: int = 5,
) -> LedgerResult:
    """
    Aggregate one period's transactional rows into accrual and cash totals.

    The accounting rules are re-applied in memory to whatever the store
    returns (status, category and date windows), so a store that returns
    more rows than asked cannot change the result.

    Parameters
    ----------
    store:
        Transactional store to read from.
    period:
        Inclusive reporting window.
    max_workers:
        Maximum number of concurrent reads.

    Returns
    -------
    LedgerResult
        Accrual totals, cash totals and order counts. A period without any
        data gives all-zero totals.

    Raises
    ------
    SourceReadError
        If any of the five reads fails.
    """
    frames = read_concurrently(
        [
            SourceRead("orders_placed", "orders",
                       lambda: store.fetch_orders(period, "order_date")),
            SourceRead("orders_completed", "orders",
                       lambda: store.fetch_orders(period, "completed_at")),
            SourceRead("overhead", "overhead", lambda: store.fetch_overhead(period)),
            SourceRead("expenses", "expenses", lambda: store.fetch_expenses(period)),
            SourceRead("payments", "payments", lambda: store.fetch_payments(period)),
        ],
        max_workers=max_workers,
    )

    placed = filter_frame_by_period(frames["orders_placed"], "order_date", period)

    completed = frames["orders_completed"]
    completed = completed.loc[completed["status"].isin(COMPLETED_ORDER_STATUSES)]
    completed = filter_frame_by_period(completed, "completed_at", period)

    overhead = filter_frame_by_period(frames["overhead"], "month", period)

    expenses = frames["expenses"]
    expenses = expenses.loc[~expenses["category"].isin(LABOUR_EXPENSE_CATEGORIES)]
    expenses = filter_frame_by_period(expenses, "expense_date", period)

    payments = filter_frame_by_period(frames["payments"], "payment_date", period)

    overhead_total = _sum(overhead, "amount")
    other_total = _sum(expenses, "amount")
    payments_total = _sum(payments, "amount")

    accrual = LedgerTotals(
        basis=ACCRUAL,
        revenue=_sum(completed, "total_cost"),
        material_cost=_sum(completed, "material_cost"),
        labour_cost=_sum(completed, "labour_cost"),
        overhead=overhead_total,
        other_expenses=other_total,
    )
    cash = LedgerTotals(
        basis=CASH,
        revenue=payments_total,
        overhead=overhead_total,
        other_expenses=other_total,
        payments_received=payments_total,
    )

    logger.debug(
        "Ledger %s: %d placed, %d completed, %d overhead, %d expenses, %d payments",
        period.key,
        len(placed),
        len(completed),
        len(overhead),
        len(expenses),
        len(payments),
    )

    return LedgerResult(
        period=period,
        accrual=accrual,
        cash=cash,
        order_counts=_count_orders(placed),
        completed_order_count=int(len(completed)),
    )
