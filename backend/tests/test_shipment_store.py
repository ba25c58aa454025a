"""Unit tests for the SQLite shipment store."""
from __future__ import annotations

from datetime import date
import os
import sys
from pathlib import Path

import pytest


TMP = Path(__file__).resolve().parent / ".tmp_freightlens"
TMP.mkdir(parents=True, exist_ok=True)
os.environ["OPENAI_API_KEY"] = ""
os.environ["OPENAI_BASE_URL"] = ""
os.environ["SHIPMENTS_DB_PATH"] = str(TMP / "shipments.db")

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from freightlens.core.errors import QueryExecutionError, ToolArgumentError, UnknownFieldError  # noqa: E402
from freightlens.services.shipment_store import ShipmentStore  # noqa: E402


store = ShipmentStore(db_path=str(TMP / "store_tests.db"))


def _load(tenant: str, rows):
    store.clear_tenant(tenant)
    store.insert_shipments(tenant, rows)


def test_seed_synthetic_is_deterministic_and_tenant_scoped():
    first = store.seed_synthetic("seed_a", seed=11, shipments=40, today=date(2025, 6, 30))
    snapshot = store.fetch_rows("seed_a", ["carrier_name", "retail", "created_date"])
    second = store.seed_synthetic("seed_a", seed=11, shipments=40, today=date(2025, 6, 30))

    assert first["shipments_created"] == 40
    assert first == second
    assert store.fetch_rows("seed_a", ["carrier_name", "retail", "created_date"]) == snapshot
    assert store.count("seed_a") == 40
    assert store.count("seed_b_empty") == 0


def test_group_aggregate_sorts_descending_and_truncates():
    _load(
        "group_tenant",
        [
            {"carrier_name": "A", "retail": 100},
            {"carrier_name": "B", "retail": 300},
            {"carrier_name": "A", "retail": 50},
            {"carrier_name": "C", "retail": 10},
        ],
    )
    groups = store.group_aggregate("group_tenant", "carrier_name", "retail", "sum", limit=2)
    assert [(g["name"], g["value"], g["count"]) for g in groups] == [("B", 300.0, 1), ("A", 150.0, 2)]

    totals = store.totals("group_tenant", "carrier_name", "retail", "sum")
    assert totals == {"value": 460.0, "count": 4, "groups": 3}


def test_tenants_do_not_see_each_other():
    _load("tenant_x", [{"carrier_name": "X", "retail": 1}])
    _load("tenant_y", [{"carrier_name": "Y", "retail": 2}])
    names = [g["name"] for g in store.group_aggregate("tenant_x", "carrier_name", "retail", "sum")]
    assert names == ["X"]


def test_date_window_is_half_open():
    _load(
        "window_tenant",
        [
            {"carrier_name": "A", "retail": 1, "created_date": "2025-05-31"},
            {"carrier_name": "A", "retail": 2, "created_date": "2025-06-01"},
            {"carrier_name": "A", "retail": 4, "created_date": "2025-06-30"},
        ],
    )
    rows = store.fetch_rows("window_tenant", ["retail"], since=date(2025, 6, 1), until=date(2025, 6, 30))
    assert [r["retail"] for r in rows] == [2.0]


def test_identifiers_are_checked_against_registry():
    with pytest.raises(UnknownFieldError):
        store.fetch_rows("group_tenant", ["retail; DROP TABLE shipments"])
    with pytest.raises(UnknownFieldError):
        store.group_aggregate("group_tenant", "tenant_id", "retail", "sum")
    with pytest.raises(ToolArgumentError):
        store.group_aggregate("group_tenant", "carrier_name", "retail", "median")


def test_insert_generates_sequential_ids_when_missing():
    store.clear_tenant("ids_tenant")
    store.insert_shipments("ids_tenant", [{"carrier_name": "A"}, {"carrier_name": "B"}])
    store.insert_shipments("ids_tenant", [{"carrier_name": "C"}])
    assert store.count("ids_tenant") == 3


def test_sqlite_errors_surface_as_query_execution_error():
    closed = ShipmentStore(db_path=str(TMP / "closed_store.db"))
    closed._conn.close()
    with pytest.raises(QueryExecutionError):
        closed.fetch_rows("any", ["retail"])
    with pytest.raises(QueryExecutionError):
        closed.totals("any", "carrier_name", "retail", "sum")
