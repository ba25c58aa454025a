"""Turn a tool's tabular result into a chart-agnostic visualization descriptor."""
from __future__ import annotations

import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional

from freightlens.models.analysis import ResultStatus, ToolName, ToolResult
from freightlens.models.investigation import (
    ChangeDirection,
    ChartPayload,
    ChartPoint,
    StatComparison,
    StatPayload,
    ValueFormat,
    Visualization,
    VisualizationType,
)
from freightlens.services.schema_registry import SchemaRegistry, schema_registry


CURRENCY_HINTS = ("cost", "spend", "price", "retail", "revenue")
PERCENT_HINTS = ("percent", "rate", "ratio")

MAX_BAR_POINTS = 10


def format_hint(metric: Optional[str]) -> ValueFormat:
    """Pick a number format from the metric's name alone."""
    lowered = (metric or "").lower()
    if any(token in lowered for token in CURRENCY_HINTS):
        return ValueFormat.CURRENCY
    if any(token in lowered for token in PERCENT_HINTS):
        return ValueFormat.PERCENT
    return ValueFormat.NUMBER


def change_direction(percent: float) -> ChangeDirection:
    if percent > 0:
        return ChangeDirection.UP
    if percent < 0:
        return ChangeDirection.DOWN
    return ChangeDirection.NEUTRAL


def _round(value: Any, digits: int = 2) -> float:
    try:
        return round(float(value or 0.0), digits)
    except (TypeError, ValueError):
        return 0.0


class VisualizationSynthesizer:
    """Pure mapping from (tool, arguments, result) to at most one Visualization."""

    def __init__(
        self,
        registry: Optional[SchemaRegistry] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self.registry = registry or schema_registry
        self._new_id = id_factory or (lambda: str(uuid.uuid4()))
        self._builders = {
            ToolName.ANALYZE_METRIC: self._analyze_metric,
            ToolName.GET_TREND: self._trend,
            ToolName.COMPARE_PERIODS: self._comparison,
            ToolName.DETECT_ANOMALIES: self._anomalies,
            ToolName.GET_SUMMARY_STATS: self._summary,
        }

    def synthesize(
        self,
        tool: ToolName,
        arguments: Mapping[str, Any],
        result: ToolResult,
    ) -> Optional[Visualization]:
        if not result.success or result.status != ResultStatus.OK:
            return None
        builder = self._builders.get(tool)
        if builder is None:
            return None
        return builder(dict(arguments or {}), result)

    def _label(self, name: Optional[str]) -> str:
        return self.registry.display_name(name or "value")

    def _format(self, metric: Optional[str], aggregation: Optional[str]) -> ValueFormat:
        if aggregation == "count":
            return ValueFormat.NUMBER
        return format_hint(metric)

    # --------------------------------------------------------------- builders

    def _analyze_metric(self, args: Dict[str, Any], result: ToolResult) -> Optional[Visualization]:
        if not result.rows:
            return None
        details = result.details
        metric = details.get("metric") or args.get("metric")
        aggregation = details.get("aggregation") or args.get("aggregation")
        derived = details.get("derived_metric")
        use_derived = bool(derived) and "derived_value" in result.rows[0]
        shown = derived if use_derived else metric
        value_format = self._format(shown, None if use_derived else aggregation)
        value_key = "derived_value" if use_derived else "value"

        if details.get("is_bucketed"):
            field = details.get("bucket_field") or args.get("group_by")
            points = [
                ChartPoint(label=row["label"], value=_round(row.get(value_key)), count=row.get("count"))
                for row in result.rows
            ]
            return Visualization(
                id=self._new_id(),
                type=VisualizationType.BAR,
                title=f"{self._label(shown)} by {self._label(field)} Bands",
                subtitle=f"{len(points)} bands",
                data=ChartPayload(data=points, format=value_format),
                config={"metric": metric, "bucketField": field, "derivedMetric": derived, "isBucketed": True},
            )

        group_by = details.get("group_by") or args.get("group_by")
        points = [
            ChartPoint(
                label=str(row.get("name") or "Unknown"),
                value=_round(row.get(value_key)),
                count=row.get("count"),
            )
            for row in result.rows[:MAX_BAR_POINTS]
        ]
        return Visualization(
            id=self._new_id(),
            type=VisualizationType.BAR,
            title=f"{self._label(shown)} by {self._label(group_by)}",
            data=ChartPayload(data=points, format=value_format),
            config={"metric": metric, "groupBy": group_by, "derivedMetric": derived, "isBucketed": False},
        )

    def _trend(self, args: Dict[str, Any], result: ToolResult) -> Optional[Visualization]:
        if not result.rows:
            return None
        metric = result.details.get("metric") or args.get("metric")
        aggregation = result.details.get("aggregation") or args.get("aggregation")
        points = [
            ChartPoint(label=row["period"], value=_round(row.get("value")), count=row.get("count"))
            for row in result.rows
        ]
        return Visualization(
            id=self._new_id(),
            type=VisualizationType.LINE,
            title=f"{self._label(metric)} Over Time",
            data=ChartPayload(data=points, format=self._format(metric, aggregation)),
            config={"metric": metric, "period": result.details.get("period") or args.get("period")},
        )

    def _comparison(self, args: Dict[str, Any], result: ToolResult) -> Optional[Visualization]:
        current = result.details.get("period1")
        baseline = result.details.get("period2")
        change = result.details.get("change")
        if not (current and baseline and change):
            return None
        metric = result.details.get("metric") or args.get("metric")
        aggregation = result.details.get("aggregation") or args.get("aggregation")
        percent = _round(change.get("percent"), 1)
        return Visualization(
            id=self._new_id(),
            type=VisualizationType.STAT,
            title=self._label(metric),
            data=StatPayload(
                value=_round(current.get("value")),
                format=self._format(metric, aggregation),
                comparison=StatComparison(
                    value=percent,
                    label=f"vs {baseline.get('label')}",
                    direction=change_direction(percent),
                ),
            ),
            config={"metric": metric, "absoluteChange": _round(change.get("absolute"))},
        )

    def _anomalies(self, args: Dict[str, Any], result: ToolResult) -> Optional[Visualization]:
        if not result.rows:
            return None
        metric = result.details.get("metric") or args.get("metric")
        group_by = result.details.get("group_by") or args.get("group_by")
        points: List[ChartPoint] = [
            ChartPoint(label=str(row.get("group") or "Unknown"), value=_round(row.get("value")))
            for row in result.rows[:MAX_BAR_POINTS]
        ]
        return Visualization(
            id=self._new_id(),
            type=VisualizationType.BAR,
            title=f"{self._label(metric)} Anomalies by {self._label(group_by)}",
            subtitle=f"{len(result.rows)} flagged",
            data=ChartPayload(data=points, format=format_hint(metric)),
            config={"metric": metric, "groupBy": group_by, "stats": result.details.get("stats")},
        )

    def _summary(self, args: Dict[str, Any], result: ToolResult) -> Optional[Visualization]:
        if not result.rows or "total_cost" not in result.rows[0]:
            return None
        stats = result.rows[0]
        return Visualization(
            id=self._new_id(),
            type=VisualizationType.STAT,
            title="Total Spend",
            subtitle=f"{stats.get('total_shipments', 0)} shipments",
            data=StatPayload(value=_round(stats["total_cost"]), format=ValueFormat.CURRENCY),
            config={"timeRange": result.details.get("time_range")},
        )


visualization_synthesizer = VisualizationSynthesizer()
