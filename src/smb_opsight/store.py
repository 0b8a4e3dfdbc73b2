# SMB OpSight - Operational & Financial Analytics engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Transactional store boundary for SMB OpSight.

The analytics components never talk to a database directly. They consume
an object implementing the ``TransactionalStore`` protocol, whose methods
return pandas DataFrames of raw rows:

    fetch_orders(period, date_field)   orders placed / completed in a period
    fetch_overhead(period)             overhead entries by 'month'
    fetch_expenses(period)             misc expenses by 'expense_date'
    fetch_payments(period)             payments by 'payment_date'
    fetch_stages(statuses)             production stage executions
    fetch_materials()                  inventory materials
    fetch_bookings()                   production material requirements,
                                       joined with their batch status
    fetch_order_materials()            materials consumed by orders

Rows coming out of a store are normalized exactly once, in
``normalize_frame``:

- money columns are parsed with parse-or-zero semantics and clamped at 0,
- quantity columns are parsed with parse-or-zero semantics,
- date/timestamp columns become naive UTC datetime64 (NaT if unparseable),
- status/category columns become stripped lower-case strings.

A single corrupt row therefore degrades a total instead of aborting it.

``read_concurrently`` issues independent reads on a thread pool and joins
on all of them before returning (all-or-nothing).

``InMemoryStore`` is a complete store backed by lists of row dicts, used
by tests and scripting. A SQLite-backed store lives in ``db.py``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import pandas as pd

from .errors import ConfigurationError, SourceReadError
from .periods import Period, filter_frame_by_period, to_timestamps

logger = logging.getLogger(__name__)

ORDER_STATUSES = (
    "enquiry",
    "contacted",
    "measurements",
    "production",
    "fitting",
    "completed",
    "delivered",
    "cancelled",
)
DEFAULT_ORDER_STATUS = "enquiry"
COMPLETED_ORDER_STATUSES = ("completed", "delivered")
CANCELLED_ORDER_STATUS = "cancelled"
ORDER_DATE_FIELDS = ("order_date", "completed_at")

# ---------------------------------------------------------------------------
# Row schemas
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FrameSchema:
    """Expected columns of one row category, grouped by how they are parsed."""

    columns: tuple[str, ...]
    money: tuple[str, ...] = ()
    quantities: tuple[str, ...] = ()
    timestamps: tuple[str, ...] = ()
    labels: tuple[str, ...] = ()


SCHEMAS: dict[str, FrameSchema] = {
    "orders": FrameSchema(
        columns=(
            "id",
            "order_number",
            "status",
            "order_date",
            "completed_at",
            "total_cost",
            "material_cost",
            "labour_cost",
            "overhead_cost",
        ),
        money=("total_cost", "material_cost", "labour_cost", "overhead_cost"),
        timestamps=("order_date", "completed_at"),
        labels=("status",),
    ),
    "overhead": FrameSchema(
        columns=("id", "category", "month", "amount"),
        money=("amount",),
        timestamps=("month",),
        labels=("category",),
    ),
    "expenses": FrameSchema(
        columns=("id", "category", "expense_date", "amount"),
        money=("amount",),
        timestamps=("expense_date",),
        labels=("category",),
    ),
    "payments": FrameSchema(
        columns=("id", "order_id", "payment_date", "amount"),
        money=("amount",),
        timestamps=("payment_date",),
    ),
    "stages": FrameSchema(
        columns=("id", "batch_id", "stage_name", "status", "started_at", "completed_at"),
        timestamps=("started_at", "completed_at"),
        labels=("status",),
    ),
    "materials": FrameSchema(
        columns=(
            "id",
            "name",
            "unit",
            "category",
            "stock_quantity",
            "min_stock_level",
            "cost_per_unit",
        ),
        money=("cost_per_unit",),
        quantities=("stock_quantity", "min_stock_level"),
        labels=("category",),
    ),
    "bookings": FrameSchema(
        columns=("id", "batch_id", "material_id", "quantity_used", "batch_status"),
        quantities=("quantity_used",),
        labels=("batch_status",),
    ),
    "order_materials": FrameSchema(
        columns=("id", "order_id", "material_id", "quantity_used", "cost"),
        money=("cost",),
        quantities=("quantity_used",),
    ),
}


def _parse_numeric(values: pd.Series) -> pd.Series:
    return pd.to_numeric(values, errors="coerce").fillna(0.0).astype(float)


def _parse_label(value: Any) -> str:
    if value is None or (isinstance(value, float) and value != value):
        return ""
    return str(value).strip().lower()


def normalize_frame(frame: Optional[pd.DataFrame], schema: str) -> pd.DataFrame:
    """
    Normalize raw store rows to the given schema.

    Missing columns are added (empty), extra columns are dropped and each
    column is parsed according to its kind. ``None`` is treated as an empty
    result.

    Raises:
        ConfigurationError: if the schema name is unknown.
    """
    try:
        layout = SCHEMAS[schema]
    except KeyError as exc:
        raise ConfigurationError(f"Unknown row schema: {schema!r}") from exc

    if frame is None:
        frame = pd.DataFrame()

    out = frame.reindex(columns=list(layout.columns)).copy()

    for col in layout.money:
        out[col] = _parse_numeric(out[col]).clip(lower=0.0)
    for col in layout.quantities:
        out[col] = _parse_numeric(out[col])
    for col in layout.timestamps:
        out[col] = to_timestamps(out[col])
    for col in layout.labels:
        out[col] = out[col].map(_parse_label).astype(str)

    return out.reset_index(drop=True)


def rows_to_frame(rows: Optional[Iterable[Mapping[str, Any]]], schema: str) -> pd.DataFrame:
    """Build a raw DataFrame from row dicts, keeping the schema's columns."""
    columns = list(SCHEMAS[schema].columns)
    records = list(rows or [])
    if not records:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame.from_records(records)


# ---------------------------------------------------------------------------
# Store protocol
# ---------------------------------------------------------------------------


class TransactionalStore(Protocol):
    """Read-only query capability over the business's transactional rows."""

    def fetch_orders(self, period: Period, date_field: str) -> pd.DataFrame: ...

    def fetch_overhead(self, period: Period) -> pd.DataFrame: ...

    def fetch_expenses(self, period: Period) -> pd.DataFrame: ...

    def fetch_payments(self, period: Period) -> pd.DataFrame: ...

    def fetch_stages(self, statuses: Sequence[str]) -> pd.DataFrame: ...

    def fetch_materials(self) -> pd.DataFrame: ...

    def fetch_bookings(self) -> pd.DataFrame: ...

    def fetch_order_materials(self) -> pd.DataFrame: ...


def check_date_field(date_field: str) -> str:
    if date_field not in ORDER_DATE_FIELDS:
        raise ConfigurationError(
            f"Invalid order date field: {date_field!r}. "
            f"Expected one of: {', '.join(ORDER_DATE_FIELDS)}."
        )
    return date_field


class InMemoryStore:
    """
    TransactionalStore backed by in-memory row dicts.

    Rows use the same column names as the database tables (see SCHEMAS).
    Date filtering follows the same inclusive, calendar-day rule as the
    analytics components.
    """

    def __init__(
        self,
        orders: Optional[Iterable[Mapping[str, Any]]] = None,
        overhead: Optional[Iterable[Mapping[str, Any]]] = None,
        expenses: Optional[Iterable[Mapping[str, Any]]] = None,
        payments: Optional[Iterable[Mapping[str, Any]]] = None,
        stages: Optional[Iterable[Mapping[str, Any]]] = None,
        materials: Optional[Iterable[Mapping[str, Any]]] = None,
        bookings: Optional[Iterable[Mapping[str, Any]]] = None,
        order_materials: Optional[Iterable[Mapping[str, Any]]] = None,
    ) -> None:
        self._frames = {
            "orders": rows_to_frame(orders, "orders"),
            "overhead": rows_to_frame(overhead, "overhead"),
            "expenses": rows_to_frame(expenses, "expenses"),
            "payments": rows_to_frame(payments, "payments"),
            "stages": rows_to_frame(stages, "stages"),
            "materials": rows_to_frame(materials, "materials"),
            "bookings": rows_to_frame(bookings, "bookings"),
            "order_materials": rows_to_frame(order_materials, "order_materials"),
        }

    def _window(self, name: str, column: str, period: Period) -> pd.DataFrame:
        frame = self._frames[name]
        if column not in frame.columns:
            return frame.iloc[0:0].copy()
        return filter_frame_by_period(frame, column, period)

    def fetch_orders(self, period: Period, date_field: str) -> pd.DataFrame:
        return self._window("orders", check_date_field(date_field), period)

    def fetch_overhead(self, period: Period) -> pd.DataFrame:
        return self._window("overhead", "month", period)

    def fetch_expenses(self, period: Period) -> pd.DataFrame:
        return self._window("expenses", "expense_date", period)

    def fetch_payments(self, period: Period) -> pd.DataFrame:
        return self._window("payments", "payment_date", period)

    def fetch_stages(self, statuses: Sequence[str]) -> pd.DataFrame:
        frame = self._frames["stages"]
        if frame.empty or "status" not in frame.columns:
            return frame.copy()
        wanted = {s.lower() for s in statuses}
        mask = frame["status"].map(_parse_label).isin(wanted)
        return frame.loc[mask].copy()

    def fetch_materials(self) -> pd.DataFrame:
        return self._frames["materials"].copy()

    def fetch_bookings(self) -> pd.DataFrame:
        return self._frames["bookings"].copy()

    def fetch_order_materials(self) -> pd.DataFrame:
        return self._frames["order_materials"].copy()


# ---------------------------------------------------------------------------
# Concurrent reads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceRead:
    """One independent read: a source name, its row schema and the query."""

    source: str
    schema: str
    fetch: Callable[[], Optional[pd.DataFrame]]


def _timed_fetch(read: SourceRead) -> Optional[pd.DataFrame]:
    started = time.perf_counter()
    frame = read.fetch()
    logger.debug(
        "Read %s: %d rows in %.1f ms",
        read.source,
        0 if frame is None else len(frame),
        (time.perf_counter() - started) * 1000.0,
    )
    return frame


def read_concurrently(
    reads: Sequence[SourceRead], max_workers: int = 5
) -> dict[str, pd.DataFrame]:
    """
    Issue independent store reads in parallel and wait for all of them.

    The reads share no state and have no ordering dependency. Results are
    returned only once every read has succeeded, normalized to their
    schema and keyed by source name.

    Raises:
        SourceReadError: as soon as one read fails. Reads not yet started
            are cancelled and nothing is returned. Exceptions other than
            SourceReadError are wrapped, keeping the original as cause.
    """
    if not reads:
        return {}

    workers = max(1, min(int(max_workers), len(reads)))
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="opsight-read")
    try:
        futures = {executor.submit(_timed_fetch, read): read for read in reads}
        done, _ = wait(futures, return_when=FIRST_EXCEPTION)

        for future in futures:
            if future in done and future.exception() is not None:
                read = futures[future]
                exc = future.exception()
                if isinstance(exc, SourceReadError):
                    raise exc
                raise SourceReadError(read.source, str(exc)) from exc

        # Join barrier: every read has finished successfully at this point.
        return {
            futures[future].source: normalize_frame(
                future.result(), futures[future].schema
            )
            for future in futures
        }
    finally:
        executor.shutdown(wait=True, cancel_futures=True)
