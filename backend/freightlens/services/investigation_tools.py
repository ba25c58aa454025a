"""Tool catalog offered to the reasoning service and dispatch into the query engine."""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from freightlens.core.logging import logger
from freightlens.models.analysis import (
    AnalyzeMetricArgs,
    ComparePeriodsArgs,
    DetectAnomaliesArgs,
    ErrorKind,
    GetFieldInfoArgs,
    GetSummaryStatsArgs,
    GetTrendArgs,
    ToolCall,
    ToolName,
    ToolResult,
)
from freightlens.services.query_engine import QueryEngine, query_engine
from freightlens.services.schema_registry import SchemaRegistry, schema_registry


TOOL_ARGS: Dict[ToolName, Type[BaseModel]] = {
    ToolName.GET_FIELD_INFO: GetFieldInfoArgs,
    ToolName.ANALYZE_METRIC: AnalyzeMetricArgs,
    ToolName.GET_TREND: GetTrendArgs,
    ToolName.COMPARE_PERIODS: ComparePeriodsArgs,
    ToolName.DETECT_ANOMALIES: DetectAnomaliesArgs,
    ToolName.GET_SUMMARY_STATS: GetSummaryStatsArgs,
}


def tool_schemas(registry: Optional[SchemaRegistry] = None) -> List[Dict[str, Any]]:
    """OpenAI function-calling definitions; names must match ToolName exactly."""
    registry = registry or schema_registry
    derived = [d.name for d in registry.list_derived_metrics()] + ["none"]
    return [
        {
            "type": "function",
            "function": {
                "name": ToolName.GET_FIELD_INFO.value,
                "description": (
                    "Get information about available data fields and what analysis is possible. "
                    "Returns fields with their types and whether they can be grouped, aggregated or bucketed. "
                    "Omit field_name to list every field."
                ),
                "parameters": {
                    "type": "object",
                    "properties": {
                        "field_name": {
                            "type": "string",
                            "description": "Optional: a specific field to describe.",
                        }
                    },
                },
            },
        },
        {
            "type": "function",
            "function": {
                "name": ToolName.ANALYZE_METRIC.value,
                "description": (
                    "Primary tool for every 'X by Y' question. Categorical group_by fields (carrier_name, "
                    "origin_state, mode_name) are grouped by value; numeric group_by fields (miles, retail, "
                    "total_weight) are split into fixed bands automatically. Set derived_metric for "
                    "'cost per mile' style questions."
                ),
                "parameters": {
                    "type": "object",
                    "properties": {
                        "metric": {
                            "type": "string",
                            "description": "Field to aggregate (e.g. 'retail', 'miles', 'total_weight').",
                        },
                        "aggregation": {
                            "type": "string",
                            "enum": ["sum", "avg", "count", "min", "max"],
                            "description": "How to aggregate the metric.",
                        },
                        "group_by": {
                            "type": "string",
                            "description": "Categorical field to group by, or numeric field to band.",
                        },
                        "derived_metric": {
                            "type": "string",
                            "enum": derived,
                            "description": "Optional per-unit metric computed as total over total.",
                        },
                        "limit": {
                            "type": "integer",
                            "minimum": 1,
                            "maximum": 100,
                            "description": "Max groups to return (default 15).",
                        },
                        "time_range": {
                            "type": "string",
                            "description": "Optional lookback such as last7, last30, last90, last180 or all.",
                        },
                    },
                    "required": ["metric", "aggregation", "group_by"],
                },
            },
        },
        {
            "type": "function",
            "function": {
                "name": ToolName.GET_TREND.value,
                "description": "Time series for a metric bucketed by day, week or month. Use for trend questions.",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "metric": {"type": "string", "description": "Metric to trend (e.g. 'retail')."},
                        "aggregation": {"type": "string", "enum": ["sum", "avg", "count"]},
                        "period": {"type": "string", "enum": ["daily", "weekly", "monthly"]},
                        "range": {
                            "type": "string",
                            "description": "Lookback window such as last30, last90 or last180 (default last90).",
                        },
                    },
                    "required": ["metric", "aggregation", "period"],
                },
            },
        },
        {
            "type": "function",
            "function": {
                "name": ToolName.COMPARE_PERIODS.value,
                "description": (
                    "Compare a metric between the current window (period1) and the window before it "
                    "(period2 reaching further back). Returns both values plus absolute and percent change."
                ),
                "parameters": {
                    "type": "object",
                    "properties": {
                        "metric": {"type": "string", "description": "Metric to compare (e.g. 'retail')."},
                        "aggregation": {"type": "string", "enum": ["sum", "avg", "count"]},
                        "period1": {"type": "string", "description": "Current period, e.g. last30."},
                        "period2": {"type": "string", "description": "Earlier boundary, e.g. last60."},
                    },
                    "required": ["metric", "aggregation", "period1", "period2"],
                },
            },
        },
        {
            "type": "function",
            "function": {
                "name": ToolName.DETECT_ANOMALIES.value,
                "description": (
                    "Find groups whose total deviates unusually from the rest (spikes, drops, outliers). "
                    "Returns flagged groups with deviation scores and high/low type."
                ),
                "parameters": {
                    "type": "object",
                    "properties": {
                        "metric": {"type": "string", "description": "Metric to scan."},
                        "group_by": {
                            "type": "string",
                            "description": "Grouping dimension (default carrier_name).",
                        },
                        "sensitivity": {
                            "type": "string",
                            "enum": ["high", "medium", "low"],
                            "description": "High flags more groups.",
                        },
                    },
                    "required": ["metric"],
                },
            },
        },
        {
            "type": "function",
            "function": {
                "name": ToolName.GET_SUMMARY_STATS.value,
                "description": (
                    "Overview of the customer's shipments: totals, averages, top carriers and modes, date range. "
                    "Good starting point for broad questions."
                ),
                "parameters": {
                    "type": "object",
                    "properties": {
                        "time_range": {
                            "type": "string",
                            "description": "Lookback such as last30, last90 or all (default last90).",
                        }
                    },
                },
            },
        },
    ]


def _describe_validation(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "arguments"
        problems.append(f"{location}: {error.get('msg')}")
    return "Invalid arguments - " + "; ".join(problems)


class ToolDispatcher:
    """Validates ToolCall arguments and routes them to the query engine by ToolName."""

    def __init__(self, engine: Optional[QueryEngine] = None) -> None:
        self.engine = engine or query_engine
        self._handlers: Dict[ToolName, Callable[[str, Any], Awaitable[ToolResult]]] = {
            ToolName.GET_FIELD_INFO: self.engine.get_field_info,
            ToolName.ANALYZE_METRIC: self.engine.analyze_metric,
            ToolName.GET_TREND: self.engine.get_trend,
            ToolName.COMPARE_PERIODS: self.engine.compare_periods,
            ToolName.DETECT_ANOMALIES: self.engine.detect_anomalies,
            ToolName.GET_SUMMARY_STATS: self.engine.get_summary_stats,
        }

    @staticmethod
    def resolve(name: str) -> Optional[ToolName]:
        try:
            return ToolName(name)
        except ValueError:
            return None

    async def execute(self, tenant_id: str, call: ToolCall) -> ToolResult:
        tool = self.resolve(call.name)
        if tool is None:
            logger.warning("Reasoning service requested unknown tool", tool=call.name, tenant_id=tenant_id)
            return ToolResult.failure(
                call.name,
                ErrorKind.TOOL_ARGUMENT,
                f"Unknown tool: {call.name}",
                available_tools=[t.value for t in ToolName],
            )
        try:
            args = TOOL_ARGS[tool].model_validate(call.arguments or {})
        except ValidationError as exc:
            return ToolResult.failure(tool, ErrorKind.TOOL_ARGUMENT, _describe_validation(exc))
        return await self._handlers[tool](tenant_id, args)


tool_dispatcher = ToolDispatcher()
