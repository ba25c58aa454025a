"""Unit tests for the analytic query engine."""
from __future__ import annotations

import asyncio
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

from freightlens.core.errors import ToolArgumentError  # noqa: E402
from freightlens.models.analysis import (  # noqa: E402
    AnalyzeMetricArgs,
    ComparePeriodsArgs,
    DetectAnomaliesArgs,
    ErrorKind,
    GetFieldInfoArgs,
    GetSummaryStatsArgs,
    GetTrendArgs,
    ResultStatus,
    TrendPeriod,
)
from freightlens.services.query_engine import (  # noqa: E402
    QueryEngine,
    parse_lookback,
    percent_change,
    period_key,
)
from freightlens.services.shipment_store import ShipmentStore  # noqa: E402


TODAY = date(2025, 6, 30)
store = ShipmentStore(db_path=str(TMP / "engine_tests.db"))
engine = QueryEngine(store=store, today=lambda: TODAY)


def _load(tenant: str, rows):
    store.clear_tenant(tenant)
    store.insert_shipments(tenant, rows)
    return tenant


def _analyze(tenant: str, **kwargs):
    return asyncio.run(engine.analyze_metric(tenant, AnalyzeMetricArgs(**kwargs)))


def test_categorical_aggregation_example():
    tenant = _load(
        "carrier_example",
        [
            {"carrier_name": "A", "retail": 100},
            {"carrier_name": "B", "retail": 300},
            {"carrier_name": "A", "retail": 50},
        ],
    )
    result = _analyze(tenant, metric="retail", aggregation="sum", group_by="carrier_name", limit=3)

    assert result.success
    assert [(r["name"], r["value"]) for r in result.rows] == [("B", 300.0), ("A", 150.0)]
    assert result.details["is_bucketed"] is False
    assert result.details["total_groups"] == 2
    assert sum(r["percent_of_total"] for r in result.rows) == pytest.approx(100.0)


def test_categorical_limit_truncates_after_sorting():
    tenant = _load(
        "carrier_limit",
        [{"carrier_name": f"C{i}", "retail": i * 10} for i in range(1, 8)],
    )
    result = _analyze(tenant, metric="retail", aggregation="max", group_by="carrier_name", limit=3)
    assert [r["name"] for r in result.rows] == ["C7", "C6", "C5"]
    assert result.details["total_groups"] == 7
    assert "percent_of_total" not in result.rows[0]


def test_boolean_groups_render_as_yes_no():
    tenant = _load(
        "late_flags",
        [
            {"carrier_name": "A", "retail": 10, "is_late": 1},
            {"carrier_name": "A", "retail": 10, "is_late": 0},
            {"carrier_name": "A", "retail": 10, "is_late": 0},
        ],
    )
    result = _analyze(tenant, metric="retail", aggregation="count", group_by="is_late")
    assert [(r["name"], r["value"]) for r in result.rows] == [("No", 2.0), ("Yes", 1.0)]


def test_numeric_group_by_routes_to_buckets_in_declared_order():
    tenant = _load(
        "bucket_order",
        [
            {"miles": 1800, "retail": 4000},
            {"miles": 100, "retail": 300},
            {"miles": 250, "retail": 600},
            {"miles": 249.9, "retail": 500},
        ],
    )
    result = _analyze(tenant, metric="retail", aggregation="sum", group_by="miles")

    assert result.details["is_bucketed"] is True
    assert [(r["label"], r["value"], r["count"]) for r in result.rows] == [
        ("0-250 mi", 800.0, 2),
        ("250-500 mi", 600.0, 1),
        ("1,500+ mi", 4000.0, 1),
    ]


def test_rows_outside_every_bucket_are_excluded_not_misassigned():
    tenant = _load(
        "bucket_excluded",
        [
            {"miles": -5, "retail": 999},
            {"miles": None, "retail": 999},
            {"miles": 10, "retail": 100},
        ],
    )
    result = _analyze(tenant, metric="retail", aggregation="sum", group_by="miles")

    assert [(r["label"], r["value"]) for r in result.rows] == [("0-250 mi", 100.0)]
    assert result.details["excluded_records"] == 1
    assert result.details["total_records"] == 1


def test_derived_ratio_is_total_over_total_not_mean_of_ratios():
    rows = [
        {"carrier_name": "A", "miles": 10, "retail": 100},
        {"carrier_name": "A", "miles": 200, "retail": 100},
    ]
    expected = 200 / 210
    mean_of_ratios = (100 / 10 + 100 / 200) / 2

    tenant = _load("derived_ratio", rows)
    bucketed = _analyze(tenant, metric="retail", aggregation="sum", group_by="miles", derived_metric="cost_per_mile")
    categorical = _analyze(
        tenant, metric="retail", aggregation="sum", group_by="carrier_name", derived_metric="cost_per_mile"
    )

    for result in (bucketed, categorical):
        derived = result.rows[0]["derived_value"]
        assert derived == pytest.approx(expected)
        assert derived != pytest.approx(mean_of_ratios)


def test_derived_metric_none_is_treated_as_absent():
    tenant = _load("derived_none", [{"carrier_name": "A", "retail": 5}])
    result = _analyze(tenant, metric="retail", aggregation="sum", group_by="carrier_name", derived_metric="none")
    assert result.success
    assert "derived_value" not in result.rows[0]


def test_unknown_field_comes_back_as_structured_tool_error():
    result = _analyze("carrier_example", metric="fuel", aggregation="sum", group_by="carrier_name")
    assert not result.success
    assert result.error_kind == ErrorKind.TOOL_ARGUMENT
    assert result.error == "Unknown field: fuel"
    assert "retail" in result.details["available_fields"]

    payload = result.to_payload()
    assert payload["success"] is False
    assert payload["error_kind"] == "tool_argument"


def test_non_aggregatable_metric_is_rejected():
    result = _analyze("carrier_example", metric="carrier_name", aggregation="sum", group_by="origin_state")
    assert not result.success
    assert "cannot be aggregated" in result.error


def test_trend_groups_by_month_in_chronological_order():
    tenant = _load(
        "trend_monthly",
        [
            {"retail": 120, "created_date": "2025-06-15"},
            {"retail": 100, "created_date": "2025-05-10"},
            {"retail": 30, "created_date": "2025-06-20"},
            {"retail": 999, "created_date": "2024-01-01"},
        ],
    )
    result = asyncio.run(
        engine.get_trend(tenant, GetTrendArgs(metric="retail", aggregation="sum", period="monthly", range="last90"))
    )
    assert [(r["period"], r["value"], r["count"]) for r in result.rows] == [
        ("2025-05", 100.0, 1),
        ("2025-06", 150.0, 2),
    ]


def test_trend_rejects_unbounded_range():
    result = asyncio.run(
        engine.get_trend("trend_monthly", GetTrendArgs(metric="retail", aggregation="sum", period="monthly", range="all"))
    )
    assert not result.success
    assert result.error_kind == ErrorKind.TOOL_ARGUMENT
    assert "bounded range" in result.error


def test_store_failure_comes_back_as_query_execution_error():
    broken = ShipmentStore(db_path=str(TMP / "broken_engine.db"))
    broken._conn.close()
    failing = QueryEngine(store=broken, today=lambda: TODAY)
    result = asyncio.run(
        failing.get_trend("any", GetTrendArgs(metric="retail", aggregation="sum", period="monthly"))
    )
    assert not result.success
    assert result.error_kind == ErrorKind.QUERY_EXECUTION
    assert result.error == "The data query failed. Try a simpler request."


def test_period_keys():
    wednesday = date(2025, 6, 4)
    assert period_key(wednesday, TrendPeriod.DAILY) == "2025-06-04"
    assert period_key(wednesday, TrendPeriod.WEEKLY) == "2025-06-01"
    assert period_key(date(2025, 6, 1), TrendPeriod.WEEKLY) == "2025-06-01"
    assert period_key(wednesday, TrendPeriod.MONTHLY) == "2025-06"


def test_compare_periods_example():
    tenant = _load(
        "compare_example",
        [
            {"retail": 120, "created_date": "2025-06-15"},
            {"retail": 100, "created_date": "2025-05-10"},
        ],
    )
    result = asyncio.run(
        engine.compare_periods(
            tenant,
            ComparePeriodsArgs(metric="retail", aggregation="sum", period1="last30", period2="last60"),
        )
    )
    assert result.success
    assert result.details["change"] == {"absolute": 20.0, "percent": 20.0}
    assert result.details["period1"]["value"] == 120.0
    assert result.details["period2"]["value"] == 100.0


def test_compare_periods_requires_non_overlapping_windows():
    result = asyncio.run(
        engine.compare_periods(
            "compare_example",
            ComparePeriodsArgs(metric="retail", aggregation="sum", period1="last60", period2="last30"),
        )
    )
    assert not result.success
    assert result.error_kind == ErrorKind.TOOL_ARGUMENT


@pytest.mark.parametrize(
    "current, baseline, expected",
    [(0, 0, 0.0), (50, 0, 100.0), (80, 100, -20.0), (120, 100, 20.0)],
)
def test_percent_change(current, baseline, expected):
    assert percent_change(current, baseline) == pytest.approx(expected)


def test_lookback_parsing():
    assert parse_lookback("last30") == 30
    assert parse_lookback("lastyear") == 365
    assert parse_lookback("all") is None
    assert parse_lookback(None, default_days=90) == 90
    with pytest.raises(ToolArgumentError):
        parse_lookback("yesterday")


def test_anomaly_scan_with_fewer_than_three_groups_is_insufficient():
    tenant = _load(
        "anomaly_small",
        [{"carrier_name": "A", "retail": 100}, {"carrier_name": "B", "retail": 5000}],
    )
    result = asyncio.run(engine.detect_anomalies(tenant, DetectAnomaliesArgs(metric="retail")))
    assert result.success
    assert result.status == ResultStatus.INSUFFICIENT_DATA
    assert result.details["groups_found"] == 2
    assert "at least 3" in result.details["message"]


def test_anomaly_scan_flags_outlier_group():
    rows = [{"carrier_name": f"C{i}", "retail": 100} for i in range(10)]
    rows.append({"carrier_name": "Spike", "retail": 1000})
    tenant = _load("anomaly_spike", rows)

    result = asyncio.run(
        engine.detect_anomalies(tenant, DetectAnomaliesArgs(metric="retail", sensitivity="medium"))
    )
    assert result.status == ResultStatus.OK
    assert [(r["group"], r["type"]) for r in result.rows] == [("Spike", "high")]
    assert result.rows[0]["deviation"] > 2
    assert result.details["stats"]["threshold"] == 2.0
    assert result.details["groups_analyzed"] == 11


def test_anomaly_scan_with_identical_groups_flags_nothing():
    tenant = _load("anomaly_flat", [{"carrier_name": f"C{i}", "retail": 100} for i in range(4)])
    result = asyncio.run(engine.detect_anomalies(tenant, DetectAnomaliesArgs(metric="retail")))
    assert result.status == ResultStatus.OK
    assert result.rows == []
    assert result.details["stats"]["std_dev"] == 0


def test_summary_stats_totals_and_top_dimensions():
    tenant = _load(
        "summary_tenant",
        [
            {"carrier_name": "A", "mode_name": "LTL", "retail": 100, "miles": 50, "total_weight": 10,
             "created_date": "2025-06-01"},
            {"carrier_name": "A", "mode_name": "FTL", "retail": 300, "miles": 150, "total_weight": 30,
             "created_date": "2025-06-10"},
            {"carrier_name": "B", "mode_name": "LTL", "retail": 200, "miles": 0, "total_weight": 20,
             "created_date": "2025-06-20"},
        ],
    )
    result = asyncio.run(engine.get_summary_stats(tenant, GetSummaryStatsArgs(time_range="last90")))
    stats = result.rows[0]
    assert stats["total_shipments"] == 3
    assert stats["total_cost"] == 600.0
    assert stats["cost_per_mile"] == pytest.approx(3.0)
    assert stats["unique_carriers"] == 2
    assert result.details["top_carriers"][0] == {"name": "A", "count": 2}
    assert result.details["date_range"] == {"earliest": "2025-06-01", "latest": "2025-06-20"}


def test_summary_stats_on_empty_tenant():
    result = asyncio.run(engine.get_summary_stats("nobody_here", GetSummaryStatsArgs()))
    assert result.success
    assert result.rows == []
    assert result.details["message"] == "No shipments found"


def test_field_info_lists_fields_and_rejects_unknown():
    listing = asyncio.run(engine.get_field_info("any", GetFieldInfoArgs()))
    assert {"name", "type", "can_bucket"} <= set(listing.rows[0])
    assert any(d["name"] == "cost_per_mile" for d in listing.details["derived_metrics"])

    single = asyncio.run(engine.get_field_info("any", GetFieldInfoArgs(field_name="miles")))
    assert single.rows[0]["can_bucket"] is True

    unknown = asyncio.run(engine.get_field_info("any", GetFieldInfoArgs(field_name="nope")))
    assert not unknown.success
    assert unknown.details["available_fields"]
