# SMB OpSight - Operational & Financial Analytics engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Period helpers for SMB OpSight.

This module defines the Period value object and the helpers that turn a
(period type, anchor date) pair into concrete inclusive date windows:

- ``monthly``   : first to last calendar day of the anchor's month,
- ``quarterly`` : first day of the quarter's first month to the last day
                  of its third month,
- ``annual``    : 1 January to 31 December of the anchor's year.

It also provides navigation (previous / next period), comparison labels
and a DataFrame filter used by the store adapters.
"""

from calendar import monthrange
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Union

import pandas as pd

from .errors import ConfigurationError

PERIOD_TYPES = ("monthly", "quarterly", "annual")

# Number of calendar months covered by one step of each period type.
_MONTHS_PER_STEP = {"monthly": 1, "quarterly": 3, "annual": 12}

DateLike = Union[date, datetime, pd.Timestamp, str]

# Source of "now"; injected wherever elapsed time or the current period matters.
Clock = Callable[[], datetime]


@dataclass(frozen=True)
class Period:
    """An inclusive reporting window of one calendar granularity."""

    type: str
    start: date
    end: date

    @property
    def label(self) -> str:
        """Human-readable label, e.g. 'October 2026', 'Q4 2026', '2026'."""
        if self.type == "monthly":
            return self.start.strftime("%B %Y")
        if self.type == "quarterly":
            return f"Q{_quarter_index(self.start.month) + 1} {self.start.year}"
        return str(self.start.year)

    @property
    def key(self) -> str:
        """Sortable identifier, e.g. '2026-10', '2026-Q4', '2026'."""
        if self.type == "monthly":
            return f"{self.start.year}-{self.start.month:02d}"
        if self.type == "quarterly":
            return f"{self.start.year}-Q{_quarter_index(self.start.month) + 1}"
        return str(self.start.year)


def utc_now() -> datetime:
    """Return the current time as a naive UTC datetime (isolated for easier testing)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _quarter_index(month: int) -> int:
    """Zero-based quarter index for a 1-based calendar month."""
    return (month - 1) // 3


def _check_type(period_type: str) -> str:
    if period_type not in PERIOD_TYPES:
        raise ConfigurationError(
            f"Unknown period type: {period_type!r}. "
            f"Expected one of: {', '.join(PERIOD_TYPES)}."
        )
    return period_type


def to_date(value: DateLike) -> date:
    """
    Convert a date-like value to a ``date``.

    Accepts ``date``, ``datetime``, ``pandas.Timestamp`` and ISO-8601
    strings. Anything else raises ConfigurationError.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip()).date()
        except ValueError as exc:
            raise ConfigurationError(
                f"Invalid date {value!r}, expected ISO format YYYY-MM-DD."
            ) from exc
    raise ConfigurationError(f"Invalid date input: {value!r}")


def _to_naive_utc(value) -> pd.Timestamp:
    """Parse one value into a naive UTC Timestamp, or NaT when unparseable."""
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError, OverflowError):
        return pd.NaT
    if ts is pd.NaT:
        return pd.NaT
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts


def to_timestamps(values: pd.Series) -> pd.Series:
    """
    Convert a column of date-like values to naive UTC datetime64.

    Values may be ISO strings (date-only or full timestamps, with or
    without offsets), ``date``/``datetime`` objects or Timestamps. Each
    value is parsed on its own so a column mixing formats is handled, and
    anything unparseable becomes NaT.
    """
    return pd.to_datetime(values.map(_to_naive_utc), errors="coerce")


def resolve_period(period_type: str, anchor: DateLike) -> Period:
    """Resolve the period of the given type that contains `anchor`."""
    _check_type(period_type)
    day = to_date(anchor)

    if period_type == "monthly":
        first_month = last_month = day.month
    elif period_type == "quarterly":
        first_month = _quarter_index(day.month) * 3 + 1
        last_month = first_month + 2
    else:
        first_month, last_month = 1, 12

    start = date(day.year, first_month, 1)
    end = date(day.year, last_month, monthrange(day.year, last_month)[1])
    return Period(type=period_type, start=start, end=end)


def _shift_months(day: date, months: int) -> date:
    """Return the first day of the month `months` away from `day`'s month."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def advance_period(period: Period, direction: int) -> Period:
    """
    Step a period forwards (direction > 0) or backwards (direction < 0).

    Each unit of `direction` moves one month, quarter or year depending on
    the period type. The result is re-resolved from the shifted anchor and
    is never clamped.
    """
    if direction == 0:
        raise ConfigurationError("Period navigation direction must be non-zero.")
    months = _MONTHS_PER_STEP[_check_type(period.type)] * int(direction)
    return resolve_period(period.type, _shift_months(period.start, months))


def previous_period(period: Period) -> Period:
    return advance_period(period, -1)


def comparison_label(period: Period) -> str:
    """Label comparing a period with the one before it, e.g. 'vs. Q3 2026'."""
    return f"vs. {previous_period(period).label}"


def periods_back(period_type: str, count: int, anchor: DateLike) -> list[Period]:
    """
    Return `count` consecutive periods ending with the anchor's period.

    The list is ordered oldest first.
    """
    if count < 1:
        raise ConfigurationError("At least one period is required.")
    periods = [resolve_period(period_type, anchor)]
    for _ in range(count - 1):
        periods.insert(0, previous_period(periods[0]))
    return periods


def can_advance(period: Period, today: DateLike) -> bool:
    """
    Navigation guard: True if the next period has already started.

    The same rule applies to monthly, quarterly and annual periods.
    """
    return advance_period(period, 1).start <= to_date(today)


def filter_frame_by_period(
    frame: pd.DataFrame, column: str, period: Period
) -> pd.DataFrame:
    """
    Keep the rows of `frame` whose `column` falls within the period.

    The column may hold raw date-like values or datetime64 values (see
    ``to_timestamps``). Timestamps are compared by calendar day,
    so anything on the period's last day is still inside. Rows with a
    missing or unparseable value (NaT) are dropped.

    Parameters
    ----------
    frame:
        DataFrame with at least the given column.
    column:
        Name of the date/timestamp column used for windowing.
    period:
        Period defining the [start, end] boundaries (inclusive).

    Returns
    -------
    pandas.DataFrame
        Filtered copy of the frame.
    """
    if frame.empty:
        return frame.copy()

    days = to_timestamps(frame[column]).dt.normalize()
    mask = (days >= pd.Timestamp(period.start)) & (days <= pd.Timestamp(period.end))
    return frame.loc[mask].copy()
