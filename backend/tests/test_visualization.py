"""Unit tests for visualization synthesis from tool results."""
from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


os.environ["OPENAI_API_KEY"] = ""
os.environ["OPENAI_BASE_URL"] = ""

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from freightlens.models.analysis import ErrorKind, ToolName, ToolResult  # noqa: E402
from freightlens.models.investigation import ChangeDirection, ValueFormat, VisualizationType  # noqa: E402
from freightlens.services.visualization import VisualizationSynthesizer, format_hint  # noqa: E402


synth = VisualizationSynthesizer(id_factory=lambda: "viz-1")


@pytest.mark.parametrize(
    "metric, expected",
    [
        ("retail", ValueFormat.CURRENCY),
        ("cost_per_mile", ValueFormat.CURRENCY),
        ("Total Spend", ValueFormat.CURRENCY),
        ("on_time_rate", ValueFormat.PERCENT),
        ("miles", ValueFormat.NUMBER),
        (None, ValueFormat.NUMBER),
    ],
)
def test_format_hint_from_metric_name(metric, expected):
    assert format_hint(metric) == expected


def test_categorical_result_becomes_bar_in_engine_order():
    result = ToolResult.ok(
        ToolName.ANALYZE_METRIC,
        [{"name": "B", "value": 300.0, "count": 1}, {"name": "A", "value": 150.456, "count": 2}],
        is_bucketed=False,
        group_by="carrier_name",
        metric="retail",
        aggregation="sum",
        derived_metric=None,
    )
    viz = synth.synthesize(ToolName.ANALYZE_METRIC, {"metric": "retail"}, result)

    assert viz.type == VisualizationType.BAR
    assert viz.title == "Cost by Carrier"
    assert [(p.label, p.value) for p in viz.data.data] == [("B", 300.0), ("A", 150.46)]
    assert viz.data.format == ValueFormat.CURRENCY


def test_bucketed_result_plots_derived_value():
    result = ToolResult.ok(
        ToolName.ANALYZE_METRIC,
        [
            {"label": "0-250 mi", "value": 900.0, "count": 3, "derived_value": 4.5},
            {"label": "250-500 mi", "value": 700.0, "count": 1, "derived_value": 2.1},
        ],
        is_bucketed=True,
        bucket_field="miles",
        metric="retail",
        aggregation="sum",
        derived_metric="cost_per_mile",
    )
    viz = synth.synthesize(ToolName.ANALYZE_METRIC, {}, result)

    assert viz.title == "Cost per Mile by Miles Bands"
    assert viz.subtitle == "2 bands"
    assert [p.value for p in viz.data.data] == [4.5, 2.1]


def test_small_count_breakdown_stays_a_bar():
    result = ToolResult.ok(
        ToolName.ANALYZE_METRIC,
        [{"name": "LTL", "value": 12, "count": 12}, {"name": "FTL", "value": 4, "count": 4}],
        is_bucketed=False,
        group_by="mode_name",
        metric="retail",
        aggregation="count",
    )
    viz = synth.synthesize(ToolName.ANALYZE_METRIC, {}, result)
    assert viz.type == VisualizationType.BAR
    assert viz.title == "Cost by Mode"
    assert viz.data.format == ValueFormat.NUMBER


def test_trend_becomes_line_chart():
    result = ToolResult.ok(
        ToolName.GET_TREND,
        [{"period": "2025-05", "value": 100.0, "count": 1}, {"period": "2025-06", "value": 150.0, "count": 2}],
        metric="retail",
        aggregation="sum",
        period="monthly",
    )
    viz = synth.synthesize(ToolName.GET_TREND, {}, result)
    assert viz.type == VisualizationType.LINE
    assert viz.title == "Cost Over Time"
    assert [p.label for p in viz.data.data] == ["2025-05", "2025-06"]


@pytest.mark.parametrize(
    "percent, direction",
    [(20.0, ChangeDirection.UP), (-12.34, ChangeDirection.DOWN), (0.0, ChangeDirection.NEUTRAL)],
)
def test_period_comparison_becomes_stat_with_direction(percent, direction):
    result = ToolResult.ok(
        ToolName.COMPARE_PERIODS,
        [],
        metric="retail",
        aggregation="sum",
        period1={"label": "last30", "value": 120.0, "count": 1},
        period2={"label": "last60", "value": 100.0, "count": 1},
        change={"absolute": 20.0, "percent": percent},
    )
    viz = synth.synthesize(ToolName.COMPARE_PERIODS, {}, result)
    assert viz.type == VisualizationType.STAT
    assert viz.data.value == 120.0
    assert viz.data.comparison.direction == direction
    assert viz.data.comparison.label == "vs last60"


def test_summary_becomes_total_spend_stat():
    result = ToolResult.ok(
        ToolName.GET_SUMMARY_STATS,
        [{"total_shipments": 3, "total_cost": 600.0}],
        time_range="last90",
    )
    viz = synth.synthesize(ToolName.GET_SUMMARY_STATS, {}, result)
    assert viz.type == VisualizationType.STAT
    assert viz.title == "Total Spend"
    assert viz.data.format == ValueFormat.CURRENCY


def test_no_visualization_for_errors_insufficient_data_or_field_info():
    failure = ToolResult.failure(ToolName.ANALYZE_METRIC, ErrorKind.TOOL_ARGUMENT, "Unknown field: x")
    insufficient = ToolResult.insufficient(ToolName.DETECT_ANOMALIES, "Not enough data")
    empty = ToolResult.ok(ToolName.ANALYZE_METRIC, [], is_bucketed=False)
    info = ToolResult.ok(ToolName.GET_FIELD_INFO, [{"name": "retail"}])

    assert synth.synthesize(ToolName.ANALYZE_METRIC, {}, failure) is None
    assert synth.synthesize(ToolName.DETECT_ANOMALIES, {}, insufficient) is None
    assert synth.synthesize(ToolName.ANALYZE_METRIC, {}, empty) is None
    assert synth.synthesize(ToolName.GET_FIELD_INFO, {}, info) is None


def test_serialized_visualization_uses_camel_case():
    result = ToolResult.ok(
        ToolName.ANALYZE_METRIC,
        [{"name": "B", "value": 1.0, "count": 1}],
        is_bucketed=False,
        group_by="carrier_name",
        metric="retail",
        aggregation="sum",
    )
    payload = synth.synthesize(ToolName.ANALYZE_METRIC, {}, result).model_dump(mode="json", by_alias=True)
    assert payload["id"] == "viz-1"
    assert payload["config"]["groupBy"] == "carrier_name"
    assert payload["data"]["data"][0] == {"label": "B", "value": 1.0, "count": 1}
