# SMB OpSight - Operational & Financial Analytics engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Stock forecasting and inventory figures for SMB OpSight.

Materials required by production batches that are not completed yet are
"booked": they will leave the shelf once those batches run. The forecast
nets each material's on-hand quantity against its booked quantity:

    booked     = sum of quantity_used over bookings of open batches
    forecasted = on_hand - booked
    at_risk    = forecasted <= min_stock_level

Only actionable materials are returned: those already at risk and those
with a non-zero booking. Healthy materials untouched by open production
are omitted.

The module also provides the inventory figures of the owner dashboard:
catalogue value and low-stock count (``inventory_stats``) and the
materials most consumed by orders (``top_materials_used``).
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields

import pandas as pd

from .errors import ConfigurationError
from .store import SourceRead, TransactionalStore, read_concurrently

logger = logging.getLogger(__name__)

BATCH_COMPLETED = "completed"
UNCATEGORIZED = "uncategorized"
UNKNOWN_MATERIAL = "Unknown"


@dataclass(frozen=True)
class StockForecast:
    """Projected stock position of one material once bookings are fulfilled."""

    material_id: object
    name: str
    on_hand: float
    booked: float
    forecasted: float
    min_stock_level: float
    at_risk: bool


@dataclass(frozen=True)
class InventoryStats:
    """Catalogue-wide inventory figures."""

    total_materials: int
    total_value: float
    low_stock_count: int
    categories: dict[str, int] = field(default_factory=dict)


def _id_key(value: object) -> str:
    """Comparable key for material ids (1, 1.0 and "1" are the same id)."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _booked_by_material(bookings: pd.DataFrame) -> pd.Series:
    """Booked quantity per material id over batches that are still open."""
    open_bookings = bookings.loc[
        (bookings["batch_status"] != BATCH_COMPLETED) & bookings["material_id"].notna()
    ]
    if open_bookings.empty:
        return pd.Series(dtype=float)
    keys = open_bookings["material_id"].map(_id_key)
    return open_bookings.groupby(keys)["quantity_used"].sum()


def forecast_stock(store: TransactionalStore, max_workers: int = 2) -> list[StockForecast]:
    """
    Forecast material stock once open production consumes its bookings.

    Returns:
        At-risk materials first, then by forecasted quantity ascending.
        Without open production nothing is booked, and only materials
        already at or below their minimum level are returned.

    Raises:
        SourceReadError: if the materials or bookings read fails.
    """
    frames = read_concurrently(
        [
            SourceRead("materials", "materials", store.fetch_materials),
            SourceRead("bookings", "bookings", store.fetch_bookings),
        ],
        max_workers=max_workers,
    )
    materials = frames["materials"]
    booked = _booked_by_material(frames["bookings"])

    known_ids = set(materials["id"].map(_id_key))
    unknown = sorted(set(booked.index) - known_ids)
    if unknown:
        logger.warning(
            "Skipping bookings for %d unknown material id(s): %s",
            len(unknown),
            ", ".join(unknown),
        )

    forecasts: list[StockForecast] = []
    for row in materials.itertuples(index=False):
        on_hand = float(row.stock_quantity)
        minimum = float(row.min_stock_level)
        reserved = float(booked.get(_id_key(row.id), 0.0))
        forecasted = on_hand - reserved
        at_risk = forecasted <= minimum

        if not at_risk and reserved == 0:
            continue

        forecasts.append(
            StockForecast(
                material_id=row.id,
                name="" if pd.isna(row.name) else str(row.name),
                on_hand=on_hand,
                booked=reserved,
                forecasted=forecasted,
                min_stock_level=minimum,
                at_risk=at_risk,
            )
        )

    forecasts.sort(key=lambda f: (not f.at_risk, f.forecasted))
    return forecasts


def inventory_stats(store: TransactionalStore) -> InventoryStats:
    """
    Dashboard figures over the whole material catalogue.

    total_value is the sum of stock_quantity * cost_per_unit, rounded to
    2 decimal places. Materials without a category are counted under
    "uncategorized".

    Raises:
        SourceReadError: if the materials read fails.
    """
    frames = read_concurrently([SourceRead("materials", "materials", store.fetch_materials)])
    materials = frames["materials"]

    value = float((materials["stock_quantity"] * materials["cost_per_unit"]).sum())
    low = int((materials["stock_quantity"] <= materials["min_stock_level"]).sum())
    categories = materials["category"].replace("", UNCATEGORIZED).value_counts()

    return InventoryStats(
        total_materials=int(len(materials)),
        total_value=round(value, 2),
        low_stock_count=low,
        categories={str(name): int(count) for name, count in categories.items()},
    )


def low_stock_count(store: TransactionalStore) -> int:
    """Number of materials at or below their minimum stock level right now."""
    return inventory_stats(store).low_stock_count


def top_materials_used(
    store: TransactionalStore, limit: int = 10, max_workers: int = 2
) -> pd.DataFrame:
    """
    Materials consumed by orders, aggregated per material.

    Returns a DataFrame with columns material_id, name, unit, quantity and
    cost (both rounded to 2 decimal places), sorted by quantity
    descending and cut to `limit` rows. Consumption of a material missing
    from the catalogue is reported under the name "Unknown".

    Raises:
        ConfigurationError: if `limit` is lower than 1.
        SourceReadError: if either read fails.
    """
    if limit < 1:
        raise ConfigurationError("limit must be a positive integer.")

    frames = read_concurrently(
        [
            SourceRead("order_materials", "order_materials", store.fetch_order_materials),
            SourceRead("materials", "materials", store.fetch_materials),
        ],
        max_workers=max_workers,
    )
    columns = ["material_id", "name", "unit", "quantity", "cost"]
    used = frames["order_materials"]
    used = used.loc[used["material_id"].notna()]
    if used.empty:
        return pd.DataFrame(columns=columns)

    keys = used["material_id"].map(_id_key)
    totals = (
        used.assign(key=keys)
        .groupby("key", sort=False)
        .agg(
            material_id=("material_id", "first"),
            quantity=("quantity_used", "sum"),
            cost=("cost", "sum"),
        )
    )

    catalogue = frames["materials"]
    catalogue = catalogue.assign(key=catalogue["id"].map(_id_key)).drop_duplicates("key")
    names = catalogue.set_index("key")["name"]
    units = catalogue.set_index("key")["unit"]

    totals["name"] = totals.index.map(names).fillna(UNKNOWN_MATERIAL).astype(str)
    totals["unit"] = totals.index.map(units).fillna("").astype(str)
    totals["quantity"] = totals["quantity"].round(2)
    totals["cost"] = totals["cost"].round(2)

    top = totals.sort_values("quantity", ascending=False, kind="stable").head(limit)
    return top[columns].reset_index(drop=True)


def forecasts_to_dataframe(forecasts: list[StockForecast]) -> pd.DataFrame:
    """One row per forecast, for tables and exports."""
    columns = [f.name for f in fields(StockForecast)]
    return pd.DataFrame([asdict(forecast) for forecast in forecasts], columns=columns)
