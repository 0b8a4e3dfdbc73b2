from datetime import date, datetime

import pytest

from smb_opsight.errors import ConfigurationError, SourceReadError
from smb_opsight.ledger import LedgerResult, LedgerTotals, OrderCounts
from smb_opsight.periods import resolve_period
from smb_opsight.profitability import (
    build_trend,
    compare_summaries,
    financial_summary,
    order_growth,
    order_profitability,
    order_status_distribution,
    overhead_per_order,
    summarize,
    trend_to_dataframe,
)
from smb_opsight.store import InMemoryStore

OCTOBER = resolve_period("monthly", "2026-10-01")


def make_ledger(revenue=0.0, material=0.0, labour=0.0, overhead=0.0, other=0.0, paid=0.0):
    accrual = LedgerTotals(
        basis="accrual",
        revenue=revenue,
        material_cost=material,
        labour_cost=labour,
        overhead=overhead,
        other_expenses=other,
    )
    cash = LedgerTotals(
        basis="cash",
        revenue=paid,
        overhead=overhead,
        other_expenses=other,
        payments_received=paid,
    )
    return LedgerResult(period=OCTOBER, accrual=accrual, cash=cash, order_counts=OrderCounts())


def monthly_store():
    """One completed order, one overhead entry and one payment per month of 2026 H1."""
    orders, overhead, payments = [], [], []
    for month in range(1, 7):
        orders.append(
            {
                "id": month,
                "status": "completed",
                "order_date": f"2026-{month:02d}-02",
                "completed_at": f"2026-{month:02d}-15",
                "total_cost": 100 * month,
                "material_cost": 10 * month,
                "labour_cost": 0,
            }
        )
        overhead.append({"id": month, "category": "rent", "month": f"2026-{month:02d}-01",
                         "amount": 20})
        payments.append({"id": month, "order_id": month,
                         "payment_date": f"2026-{month:02d}-20", "amount": 50})
    return {"orders": orders, "overhead": overhead, "payments": payments}


class MarchFailingStore(InMemoryStore):
    """InMemoryStore whose payment reads fail for March 2026 only."""

    def fetch_payments(self, period):
        if period.key == "2026-03":
            raise SourceReadError("payments", "timeout")
        return super().fetch_payments(period)


def test_end_to_end_summary() -> None:
    """A completed order with overhead and a partial payment in the same month."""
    store = InMemoryStore(
        orders=[
            {
                "id": 1,
                "status": "completed",
                "order_date": "2026-10-01",
                "completed_at": "2026-10-12T14:00:00",
                "total_cost": 1000,
                "material_cost": 300,
                "labour_cost": 200,
            }
        ],
        overhead=[{"id": 1, "category": "rent", "month": "2026-10-01", "amount": 100}],
        payments=[{"id": 1, "order_id": 1, "payment_date": "2026-10-12", "amount": 600}],
    )

    summary = financial_summary(store, OCTOBER)

    assert summary.revenue == 1000.0
    assert summary.total_costs == 600.0
    assert summary.net_profit == 400.0
    assert summary.profit_margin == 40.0
    assert summary.cash_flow == 0.0
    assert summary.completed_orders == 1
    assert summary.avg_order_value == 1000.0
    assert summary.degraded is False


@pytest.mark.parametrize(
    "revenue, material, labour, overhead, other",
    [
        (0.0, 0.0, 0.0, 0.0, 0.0),
        (0.0, 120.0, 30.0, 10.0, 5.0),
        (500.0, 100.0, 50.0, 25.0, 25.0),
        (200.0, 300.0, 0.0, 0.0, 0.0),
    ],
)
def test_summary_identity(revenue, material, labour, overhead, other) -> None:
    summary = summarize(make_ledger(revenue, material, labour, overhead, other))

    assert summary.total_costs == material + labour + overhead + other
    assert summary.net_profit == revenue - summary.total_costs
    if revenue == 0:
        assert summary.profit_margin == 0.0


def test_summary_rounds_money_to_two_decimals() -> None:
    summary = summarize(make_ledger(revenue=100.0, material=33.333, other=0.004))

    assert summary.material_cost == 33.33
    assert summary.total_costs == 33.33
    assert summary.net_profit == 66.67
    assert summary.profit_margin == 66.67


@pytest.mark.parametrize(
    "revenue, material, labour, overhead, other, paid",
    [
        (10.006, 5.004, 0.0, 0.0, 0.0, 0.0),
        (99.995, 0.004, 0.004, 0.004, 0.004, 12.345),
        (0.015, 0.005, 0.0, 0.0, 0.0, 0.005),
    ],
)
def test_summary_identity_holds_on_rounded_values(
    revenue, material, labour, overhead, other, paid
) -> None:
    """Derived figures are computed from the published, rounded lines."""
    summary = summarize(make_ledger(revenue, material, labour, overhead, other, paid))

    lines = (
        summary.material_cost + summary.labour_cost + summary.overhead + summary.other_expenses
    )
    assert summary.total_costs == round(lines, 2)
    assert summary.net_profit == round(summary.revenue - summary.total_costs, 2)
    assert summary.cash_flow == round(summary.payments_received - summary.total_costs, 2)


def test_fractional_cents_do_not_break_net_profit() -> None:
    summary = summarize(make_ledger(revenue=10.006, material=5.004))

    assert summary.revenue == 10.01
    assert summary.total_costs == 5.0
    assert summary.net_profit == 5.01


def test_cash_basis_summary_uses_payments_as_revenue() -> None:
    store = InMemoryStore(**monthly_store())
    period = resolve_period("monthly", "2026-04-10")

    summary = financial_summary(store, period, basis="cash")

    assert summary.revenue == 50.0
    assert summary.total_costs == 20.0
    assert summary.net_profit == 30.0
    assert summary.cash_flow == 30.0


def test_unknown_basis_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        financial_summary(InMemoryStore(), OCTOBER, basis="hybrid")


def test_single_period_summary_fails_closed() -> None:
    store = MarchFailingStore(**monthly_store())

    with pytest.raises(SourceReadError):
        financial_summary(store, resolve_period("monthly", "2026-03-01"))


def test_trend_degrades_only_the_failing_period() -> None:
    store = MarchFailingStore(**monthly_store())

    trend = build_trend(store, 6, anchor=date(2026, 6, 30))

    assert len(trend) == 6
    assert [s.period.key for s in trend] == [
        "2026-01", "2026-02", "2026-03", "2026-04", "2026-05", "2026-06",
    ]
    assert trend[2].degraded is True
    assert trend[2].revenue == 0.0
    assert "payments" in trend[2].warning
    for index in (0, 1, 3, 4, 5):
        month = index + 1
        assert trend[index].degraded is False
        assert trend[index].revenue == 100.0 * month
        assert trend[index].net_profit == 100.0 * month - 10.0 * month - 20.0
        assert trend[index].payments_received == 50.0


def test_trend_anchor_defaults_to_clock() -> None:
    trend = build_trend(
        InMemoryStore(), 3, period_type="quarterly", clock=lambda: datetime(2026, 10, 19)
    )

    assert [s.period.label for s in trend] == ["Q2 2026", "Q3 2026", "Q4 2026"]


def test_trend_to_dataframe_has_one_row_per_period() -> None:
    trend = build_trend(InMemoryStore(**monthly_store()), 2, anchor="2026-02-01")

    df = trend_to_dataframe(trend)

    assert df["period_key"].tolist() == ["2026-01", "2026-02"]
    assert df["revenue"].tolist() == [100.0, 200.0]
    assert "degraded" in df.columns


def test_compare_summaries() -> None:
    store = InMemoryStore(**monthly_store())
    march = financial_summary(store, resolve_period("monthly", "2026-03-01"))
    april = financial_summary(store, resolve_period("monthly", "2026-04-01"))

    comparison = compare_summaries(april, march)

    assert comparison.label == "vs. March 2026"
    assert comparison.changes["revenue"] == pytest.approx(33.3)
    assert comparison.changes["payments_received"] == 0.0


def test_compare_summaries_with_zero_base() -> None:
    empty = summarize(make_ledger())
    busy = summarize(make_ledger(revenue=100.0))

    assert compare_summaries(busy, empty).changes["revenue"] is None


def test_order_profitability() -> None:
    store = InMemoryStore(
        orders=[
            {"id": 1, "status": "completed", "order_date": "2026-10-01", "total_cost": 200,
             "material_cost": 50, "labour_cost": 50, "overhead_cost": 20},
            {"id": 2, "status": "enquiry", "order_date": "2026-10-09", "total_cost": 0},
        ]
    )

    df = order_profitability(store, OCTOBER)

    assert df["id"].tolist() == [2, 1]
    assert df["profit"].tolist() == [0.0, 80.0]
    assert df["profit_margin"].tolist() == [0.0, 40.0]


def test_overhead_per_order() -> None:
    store = InMemoryStore(
        overhead=[
            {"id": 1, "category": "rent", "month": "2026-10-01", "amount": 800},
            {"id": 2, "category": "power", "month": "2026-10-01", "amount": 200},
        ]
    )

    assert overhead_per_order(store, OCTOBER, expected_orders=40) == 25.0
    with pytest.raises(ConfigurationError):
        overhead_per_order(store, OCTOBER, expected_orders=0)


def test_order_status_distribution_lists_every_status() -> None:
    store = InMemoryStore(
        orders=[
            {"id": 1, "status": "Production", "order_date": "2026-10-02"},
            {"id": 2, "status": "production", "order_date": "2026-10-05"},
            {"id": 3, "status": None, "order_date": "2026-10-06"},
            {"id": 4, "status": "on_hold", "order_date": "2026-10-07"},
            {"id": 5, "status": "delivered", "order_date": "2026-09-30"},
        ]
    )

    df = order_status_distribution(store, OCTOBER)
    counts = dict(zip(df["status"], df["count"]))

    assert df["status"].tolist()[:3] == ["enquiry", "contacted", "measurements"]
    assert df["status"].tolist()[-1] == "on_hold"
    assert counts["production"] == 2
    assert counts["enquiry"] == 1
    assert counts["on_hold"] == 1
    assert counts["delivered"] == 0
    assert df["count"].sum() == 4


def test_order_growth_against_previous_period() -> None:
    orders = [
        {"id": i, "status": "enquiry", "order_date": f"2026-09-{i + 1:02d}"} for i in range(4)
    ] + [
        {"id": 10 + i, "status": "enquiry", "order_date": f"2026-10-{i + 1:02d}"}
        for i in range(5)
    ]
    store = InMemoryStore(orders=orders)

    assert order_growth(store, OCTOBER) == 25.0
    assert order_growth(store, resolve_period("monthly", "2026-11-01")) == -100.0


def test_order_growth_is_zero_without_previous_orders() -> None:
    store = InMemoryStore(orders=[{"id": 1, "status": "enquiry", "order_date": "2026-10-01"}])

    assert order_growth(store, OCTOBER) == 0.0
