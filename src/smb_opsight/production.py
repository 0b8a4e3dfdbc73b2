# SMB OpSight - Operational & Financial Analytics engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Production bottleneck detection for SMB OpSight.

A production batch goes through named stages (cutting, stitching,
finishing, quality check, ...). Each stage execution is recorded with a
start timestamp and, once done, a completion timestamp.

The detector works in two steps:

1. ``average_stage_durations()`` learns, from completed stage executions
   only, the historical mean duration (hours) of every stage name. The
   mean is unweighted: every past completion counts once.

2. ``detect_bottlenecks()`` compares every stage still in progress with
   that history:

       current   = now - started_at                    (hours)
       threshold = average * multiplier   if average > 0
                   fallback_hours         otherwise
       delayed   = current > threshold

   Stage names without any history fall back to the fixed threshold, so
   newly introduced stages are monitored from day one.

Nothing is persisted: every call recomputes from the store. "Now" comes
from an injected clock.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields

import pandas as pd

from .periods import Clock, utc_now
from .store import SourceRead, TransactionalStore, read_concurrently

logger = logging.getLogger(__name__)

STAGE_IN_PROGRESS = "in_progress"
STAGE_COMPLETED = "completed"

DEFAULT_DELAY_MULTIPLIER = 1.5
DEFAULT_FALLBACK_HOURS = 24.0

_SECONDS_PER_HOUR = 3600.0


@dataclass(frozen=True)
class BottleneckFlag:
    """An in-progress stage running longer than its threshold."""

    stage_name: str
    batch_id: object
    current_duration_hours: float
    average_duration_hours: float
    threshold_hours: float
    delay_ratio: float
    is_delayed: bool


def _now(clock: Clock) -> pd.Timestamp:
    now = pd.Timestamp(clock())
    if now.tzinfo is not None:
        now = now.tz_convert("UTC").tz_localize(None)
    return now


def _named_stages(stages: pd.DataFrame, kind: str) -> pd.DataFrame:
    """Drop stage records without a stage name."""
    names = stages["stage_name"]
    named = names.notna() & (names.astype(str).str.strip() != "")
    skipped = int((~named).sum())
    if skipped:
        logger.warning("Ignoring %d %s stage record(s) without a stage name", skipped, kind)
    return stages.loc[named]


def _stage_averages(completed: pd.DataFrame) -> dict[str, float]:
    """Mean duration in hours per stage name over completed executions."""
    completed = _named_stages(completed, "completed")
    if completed.empty:
        return {}

    durations = (
        completed["completed_at"] - completed["started_at"]
    ).dt.total_seconds() / _SECONDS_PER_HOUR

    valid = durations.notna() & (durations >= 0)
    skipped = int((~valid).sum())
    if skipped:
        logger.warning(
            "Ignoring %d completed stage record(s) with missing or inverted timestamps",
            skipped,
        )

    history = pd.DataFrame(
        {"stage_name": completed["stage_name"].astype(str), "hours": durations}
    ).loc[valid]
    if history.empty:
        return {}
    means = history.groupby("stage_name")["hours"].mean()
    return {str(name): float(hours) for name, hours in means.items()}


def average_stage_durations(
    store: TransactionalStore, max_workers: int = 2
) -> dict[str, float]:
    """
    Historical average duration (hours) of each stage name.

    Only stage executions with status 'completed' are used.

    Raises:
        SourceReadError: if the stage read fails.
    """
    frames = read_concurrently(
        [SourceRead("completed_stages", "stages",
                    lambda: store.fetch_stages([STAGE_COMPLETED]))],
        max_workers=max_workers,
    )
    completed = frames["completed_stages"]
    return _stage_averages(completed.loc[completed["status"] == STAGE_COMPLETED])


def detect_bottlenecks(
    store: TransactionalStore,
    clock: Clock = utc_now,
    multiplier: float = DEFAULT_DELAY_MULTIPLIER,
    fallback_hours: float = DEFAULT_FALLBACK_HOURS,
    max_workers: int = 2,
) -> list[BottleneckFlag]:
    """
    Flag in-progress stages that run longer than their threshold.

    The completed-stage history and the in-progress stages are read
    concurrently; thresholds are only computed once both reads are done.

    Args:
        store: Transactional store to read from.
        clock: Source of the current time (naive UTC or timezone-aware).
        multiplier: Threshold multiplier applied to a stage's average.
        fallback_hours: Threshold for stage names without history.
        max_workers: Maximum number of concurrent reads.

    Returns:
        Delayed stages only, longest running first. Each flag carries the
        batch id of the stage for traceability.

    Raises:
        SourceReadError: if either read fails.
    """
    frames = read_concurrently(
        [
            SourceRead("completed_stages", "stages",
                       lambda: store.fetch_stages([STAGE_COMPLETED])),
            SourceRead("active_stages", "stages",
                       lambda: store.fetch_stages([STAGE_IN_PROGRESS])),
        ],
        max_workers=max_workers,
    )

    completed = frames["completed_stages"]
    averages = _stage_averages(completed.loc[completed["status"] == STAGE_COMPLETED])

    active = frames["active_stages"]
    active = active.loc[(active["status"] == STAGE_IN_PROGRESS) & active["started_at"].notna()]
    active = _named_stages(active, "in-progress")
    if active.empty:
        return []

    now = _now(clock)
    flags: list[BottleneckFlag] = []
    for row in active.itertuples(index=False):
        stage_name = str(row.stage_name)
        current = (now - row.started_at).total_seconds() / _SECONDS_PER_HOUR
        average = averages.get(stage_name, 0.0)

        if average > 0:
            threshold = average * multiplier
            ratio = current / average
        else:
            threshold = float(fallback_hours)
            ratio = 1.0

        if current > threshold:
            flags.append(
                BottleneckFlag(
                    stage_name=stage_name,
                    batch_id=row.batch_id,
                    current_duration_hours=round(current, 2),
                    average_duration_hours=round(average, 2),
                    threshold_hours=round(threshold, 2),
                    delay_ratio=round(ratio, 2),
                    is_delayed=True,
                )
            )

    if flags:
        logger.info("Detected %d delayed production stage(s)", len(flags))
    flags.sort(key=lambda f: f.current_duration_hours, reverse=True)
    return flags


def bottlenecks_to_dataframe(flags: list[BottleneckFlag]) -> pd.DataFrame:
    """One row per flagged stage, for tables and exports."""
    columns = [f.name for f in fields(BottleneckFlag)]
    return pd.DataFrame([asdict(flag) for flag in flags], columns=columns)

