import logging

import pytest

from smb_opsight.errors import ConfigurationError
from smb_opsight.inventory import (
    forecast_stock,
    forecasts_to_dataframe,
    inventory_stats,
    low_stock_count,
    top_materials_used,
)
from smb_opsight.store import InMemoryStore

MATERIALS = [
    {"id": 1, "name": "Oak board", "unit": "m2", "stock_quantity": 50, "min_stock_level": 25},
    {"id": 2, "name": "Hinges", "unit": "pcs", "stock_quantity": 80, "min_stock_level": 10},
    {"id": 3, "name": "Varnish", "unit": "l", "stock_quantity": 100, "min_stock_level": 10},
    {"id": 4, "name": "Glue", "unit": "l", "stock_quantity": 2, "min_stock_level": 5},
]

BOOKINGS = [
    {"id": 1, "batch_id": 10, "material_id": 1, "quantity_used": 30, "batch_status": "cutting"},
    {"id": 2, "batch_id": 11, "material_id": "3", "quantity_used": 5, "batch_status": "sewing"},
    {"id": 3, "batch_id": 12, "material_id": 2, "quantity_used": 70, "batch_status": "completed"},
]


def test_booked_material_falling_to_minimum_is_at_risk() -> None:
    """50 on hand, 30 booked, minimum 25: forecast 20 is at risk."""
    forecasts = forecast_stock(InMemoryStore(materials=MATERIALS, bookings=BOOKINGS))
    by_id = {f.material_id: f for f in forecasts}

    oak = by_id[1]
    assert oak.on_hand == 50.0
    assert oak.booked == 30.0
    assert oak.forecasted == 20.0
    assert oak.at_risk is True


def test_forecast_keeps_only_actionable_materials() -> None:
    """Healthy materials without open bookings are omitted; completed batches book nothing."""
    forecasts = forecast_stock(InMemoryStore(materials=MATERIALS, bookings=BOOKINGS))

    assert [f.material_id for f in forecasts] == [4, 1, 3]
    varnish = forecasts[2]
    assert varnish.booked == 5.0
    assert varnish.at_risk is False


def test_without_open_production_only_low_stock_is_returned() -> None:
    forecasts = forecast_stock(InMemoryStore(materials=MATERIALS))

    assert [f.name for f in forecasts] == ["Glue"]
    assert forecasts[0].forecasted == 2.0


def test_bookings_for_unknown_materials_are_logged(caplog) -> None:
    bookings = BOOKINGS + [
        {"id": 4, "batch_id": 10, "material_id": 99, "quantity_used": 1, "batch_status": "cutting"}
    ]

    with caplog.at_level(logging.WARNING, logger="smb_opsight.inventory"):
        forecast_stock(InMemoryStore(materials=MATERIALS, bookings=bookings))

    assert "unknown material" in caplog.text
    assert "99" in caplog.text


def test_low_stock_count_and_dataframe() -> None:
    store = InMemoryStore(materials=MATERIALS, bookings=BOOKINGS)

    assert low_stock_count(store) == 1
    df = forecasts_to_dataframe(forecast_stock(store))
    assert list(df.columns)[:3] == ["material_id", "name", "on_hand"]
    assert df["at_risk"].tolist() == [True, True, False]


def test_empty_store_gives_empty_forecast() -> None:
    assert forecast_stock(InMemoryStore()) == []
    assert forecasts_to_dataframe([]).empty


def test_inventory_stats() -> None:
    """Catalogue value is stock times unit cost; blank categories are grouped."""
    materials = [
        {"id": 1, "name": "Wool", "category": "Fabric", "stock_quantity": 10,
         "min_stock_level": 2, "cost_per_unit": 12.5},
        {"id": 2, "name": "Linen", "category": "fabric", "stock_quantity": 4,
         "min_stock_level": 5, "cost_per_unit": "8"},
        {"id": 3, "name": "Buttons", "category": None, "stock_quantity": 200,
         "min_stock_level": 50, "cost_per_unit": "n/a"},
    ]

    stats = inventory_stats(InMemoryStore(materials=materials))

    assert stats.total_materials == 3
    assert stats.total_value == 157.0
    assert stats.low_stock_count == 1
    assert stats.categories == {"fabric": 2, "uncategorized": 1}


def test_inventory_stats_of_empty_catalogue() -> None:
    stats = inventory_stats(InMemoryStore())

    assert stats.total_materials == 0
    assert stats.total_value == 0.0
    assert stats.categories == {}


def test_top_materials_used_aggregates_per_material() -> None:
    usage = [
        {"id": 1, "order_id": 1, "material_id": 1, "quantity_used": 2.5, "cost": 20},
        {"id": 2, "order_id": 2, "material_id": "1", "quantity_used": 1.25, "cost": 10},
        {"id": 3, "order_id": 2, "material_id": 3, "quantity_used": 6, "cost": "4.5"},
        {"id": 4, "order_id": 3, "material_id": 99, "quantity_used": 1, "cost": 1},
        {"id": 5, "order_id": 3, "material_id": 4, "quantity_used": 0.5, "cost": 3},
    ]
    store = InMemoryStore(materials=MATERIALS, order_materials=usage)

    top = top_materials_used(store, limit=3)

    assert list(top.columns) == ["material_id", "name", "unit", "quantity", "cost"]
    assert top["name"].tolist() == ["Varnish", "Oak board", "Unknown"]
    assert top["quantity"].tolist() == [6.0, 3.75, 1.0]
    assert top["cost"].tolist() == [4.5, 30.0, 1.0]
    assert top["unit"].tolist() == ["l", "m2", ""]


def test_top_materials_used_without_usage_or_with_bad_limit() -> None:
    assert top_materials_used(InMemoryStore(materials=MATERIALS)).empty
    with pytest.raises(ConfigurationError):
        top_materials_used(InMemoryStore(), limit=0)
