# SMB OpSight - Operational & Financial Analytics engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Database layer for SMB OpSight.

This module provides a read-only ``TransactionalStore`` over the SQLite
database of the shop management application. The analytics engine never
writes: every query is issued on a connection opened in SQLite's
read-only mode, one connection per query, so reads can safely run on
worker threads.

------------------------------------------------------------------------------
Schema Overview
------------------------------------------------------------------------------

1) orders
   - id, order_number
   - status          TEXT  -- enquiry | contacted | measurements | production
                              | fitting | completed | delivered | cancelled
   - order_date      TEXT  -- ISO timestamp the order was placed
   - completed_at    TEXT  -- ISO timestamp, set once completed/delivered
   - total_cost, material_cost, labour_cost, overhead_cost   REAL

2) overhead_costs
   - id, category, month (ISO date, first day of the month), amount

3) expenses
   - id, category, expense_date (ISO date), amount, description

4) payments
   - id, order_id, payment_date (ISO date), amount

5) production_batches
   - id, batch_number, status

6) production_stages
   - id, batch_id, stage_name
   - status          TEXT  -- in_progress | completed
   - started_at, completed_at   ISO timestamps

7) materials
   - id, name, unit, category, stock_quantity, min_stock_level, cost_per_unit

8) production_materials
   - id, batch_id, material_id, quantity_used, cost

9) order_materials
   - id, order_id, material_id, quantity_used, cost

Money and quantity columns are declared REAL but rows written by other
tools may hold text; values are parsed with parse-or-zero semantics when
normalized (see ``store.normalize_frame``).

------------------------------------------------------------------------------
SQLite Notes
------------------------------------------------------------------------------

- Timestamps are stored as ISO-8601 text. Period filters compare the
  calendar day returned by SQLite's ``date()`` function (UTC for values
  carrying an offset).
- ``init_database`` creates missing tables and is the only function of
  this module that writes. It is used on first run and by tests.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd

from .errors import ConfigurationError, SourceReadError
from .periods import Period
from .store import check_date_field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Database configuration for SMB OpSight.

    Attributes
    ----------
    engine:
        Database engine identifier. Only "sqlite" is supported.
    path:
        Path to the SQLite database file.
    """

    engine: str
    path: Path


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS orders (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    order_number    TEXT,
    status          TEXT NOT NULL DEFAULT 'enquiry',
    order_date      TEXT NOT NULL,
    completed_at    TEXT,
    total_cost      REAL DEFAULT 0,
    material_cost   REAL DEFAULT 0,
    labour_cost     REAL DEFAULT 0,
    overhead_cost   REAL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS overhead_costs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    category        TEXT,
    month           TEXT NOT NULL,
    amount          REAL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS expenses (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    category        TEXT,
    expense_date    TEXT NOT NULL,
    amount          REAL DEFAULT 0,
    description     TEXT
);

CREATE TABLE IF NOT EXISTS payments (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id        INTEGER,
    payment_date    TEXT NOT NULL,
    amount          REAL DEFAULT 0,
    FOREIGN KEY (order_id) REFERENCES orders(id)
);

CREATE TABLE IF NOT EXISTS production_batches (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    batch_number    TEXT,
    status          TEXT NOT NULL DEFAULT 'cutting'
);

CREATE TABLE IF NOT EXISTS production_stages (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    batch_id        INTEGER NOT NULL,
    stage_name      TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'in_progress',
    started_at      TEXT NOT NULL,
    completed_at    TEXT,
    FOREIGN KEY (batch_id) REFERENCES production_batches(id)
);

CREATE TABLE IF NOT EXISTS materials (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    name            TEXT NOT NULL,
    unit            TEXT,
    category        TEXT,
    stock_quantity  REAL DEFAULT 0,
    min_stock_level REAL DEFAULT 0,
    cost_per_unit   REAL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS production_materials (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    batch_id        INTEGER NOT NULL,
    material_id     INTEGER NOT NULL,
    quantity_used   REAL DEFAULT 0,
    cost            REAL DEFAULT 0,
    FOREIGN KEY (batch_id) REFERENCES production_batches(id),
    FOREIGN KEY (material_id) REFERENCES materials(id)
);

CREATE TABLE IF NOT EXISTS order_materials (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id        INTEGER NOT NULL,
    material_id     INTEGER NOT NULL,
    quantity_used   REAL DEFAULT 0,
    cost            REAL DEFAULT 0,
    FOREIGN KEY (order_id) REFERENCES orders(id),
    FOREIGN KEY (material_id) REFERENCES materials(id)
);
"""


def _ensure_sqlite(cfg: DatabaseConfig) -> None:
    """Raise if the configuration does not refer to a supported engine."""
    if cfg.engine.lower() != "sqlite":
        msg = (
            f"Unsupported database engine: {cfg.engine!r}. "
            "Only 'sqlite' is supported for now."
        )
        raise ConfigurationError(msg)


def _connect_read_only(cfg: DatabaseConfig) -> sqlite3.Connection:
    """
    Open a read-only SQLite connection.

    The caller is responsible for closing the connection.
    """
    _ensure_sqlite(cfg)
    uri = f"{Path(cfg.path).resolve().as_uri()}?mode=ro"
    return sqlite3.connect(uri, uri=True)


def init_database(cfg: DatabaseConfig) -> None:
    """
    Create the SQLite file and any missing table.

    This function is idempotent and safe to call multiple times.
    """
    _ensure_sqlite(cfg)
    Path(cfg.path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(cfg.path)
    try:
        conn.executescript(_SCHEMA)
        conn.commit()
    finally:
        conn.close()
    logger.debug("Database schema ready at %s", cfg.path)


def _query(
    cfg: DatabaseConfig, source: str, sql: str, params: Sequence[Any] = ()
) -> pd.DataFrame:
    """
    Run one read query and return its rows as a DataFrame.

    Raises:
        SourceReadError: if the database cannot be opened or the query
            fails (missing file, missing table, locked database, ...).
    """
    if not Path(cfg.path).is_file():
        raise SourceReadError(source, f"database file not found: {cfg.path}")

    try:
        conn = _connect_read_only(cfg)
        try:
            return pd.read_sql_query(sql, conn, params=list(params))
        finally:
            conn.close()
    except (sqlite3.Error, pd.errors.DatabaseError) as exc:
        raise SourceReadError(source, str(exc)) from exc


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SqliteStore:
    """TransactionalStore reading from the application's SQLite database."""

    def __init__(self, cfg: DatabaseConfig) -> None:
        _ensure_sqlite(cfg)
        self.cfg = cfg

    def fetch_orders(self, period: Period, date_field: str) -> pd.DataFrame:
        column = check_date_field(date_field)
        return _query(
            self.cfg,
            f"orders[{column}]",
            f"""
            SELECT id, order_number, status, order_date, completed_at,
                   total_cost, material_cost, labour_cost, overhead_cost
              FROM orders
             WHERE date({column}) BETWEEN ? AND ?
             ORDER BY {column}, id;
            """,
            (period.start.isoformat(), period.end.isoformat()),
        )

    def fetch_overhead(self, period: Period) -> pd.DataFrame:
        return _query(
            self.cfg,
            "overhead_costs",
            """
            SELECT id, category, month, amount
              FROM overhead_costs
             WHERE date(month) BETWEEN ? AND ?
             ORDER BY category, id;
            """,
            (period.start.isoformat(), period.end.isoformat()),
        )

    def fetch_expenses(self, period: Period) -> pd.DataFrame:
        return _query(
            self.cfg,
            "expenses",
            """
            SELECT id, category, expense_date, amount
              FROM expenses
             WHERE date(expense_date) BETWEEN ? AND ?
             ORDER BY expense_date, id;
            """,
            (period.start.isoformat(), period.end.isoformat()),
        )

    def fetch_payments(self, period: Period) -> pd.DataFrame:
        return _query(
            self.cfg,
            "payments",
            """
            SELECT id, order_id, payment_date, amount
              FROM payments
             WHERE date(payment_date) BETWEEN ? AND ?
             ORDER BY payment_date, id;
            """,
            (period.start.isoformat(), period.end.isoformat()),
        )

    def fetch_stages(self, statuses: Sequence[str]) -> pd.DataFrame:
        wanted = [s.lower() for s in statuses]
        if not wanted:
            return pd.DataFrame(
                columns=["id", "batch_id", "stage_name", "status", "started_at", "completed_at"]
            )
        placeholders = ", ".join("?" for _ in wanted)
        return _query(
            self.cfg,
            "production_stages",
            f"""
            SELECT id, batch_id, stage_name, status, started_at, completed_at
              FROM production_stages
             WHERE lower(status) IN ({placeholders})
             ORDER BY started_at, id;
            """,
            wanted,
        )

    def fetch_materials(self) -> pd.DataFrame:
        return _query(
            self.cfg,
            "materials",
            """
            SELECT id, name, unit, category, stock_quantity, min_stock_level,
                   cost_per_unit
              FROM materials
             ORDER BY name, id;
            """,
        )

    def fetch_bookings(self) -> pd.DataFrame:
        return _query(
            self.cfg,
            "production_materials",
            """
            SELECT pm.id, pm.batch_id, pm.material_id, pm.quantity_used,
                   pb.status AS batch_status
              FROM production_materials AS pm
              LEFT JOIN production_batches AS pb ON pb.id = pm.batch_id
             WHERE pb.status IS NULL OR lower(pb.status) <> 'completed'
             ORDER BY pm.batch_id, pm.id;
            """,
        )

    def fetch_order_materials(self) -> pd.DataFrame:
        return _query(
            self.cfg,
            "order_materials",
            """
            SELECT id, order_id, material_id, quantity_used, cost
              FROM order_materials
             ORDER BY material_id, id;
            """,
        )
