"""Tool-call, analysis-request and tool-result models for the query engine."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ToolName(str, Enum):
    """Closed set of tools exposed to the reasoning service."""

    GET_FIELD_INFO = "get_field_info"
    ANALYZE_METRIC = "analyze_metric"
    GET_TREND = "get_trend"
    COMPARE_PERIODS = "compare_periods"
    DETECT_ANOMALIES = "detect_anomalies"
    GET_SUMMARY_STATS = "get_summary_stats"


class Aggregation(str, Enum):
    SUM = "sum"
    AVG = "avg"
    COUNT = "count"
    MIN = "min"
    MAX = "max"


class BasicAggregation(str, Enum):
    """Aggregations accepted by the time-based tools."""

    SUM = "sum"
    AVG = "avg"
    COUNT = "count"


class TrendPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Sensitivity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ResultStatus(str, Enum):
    OK = "ok"
    INSUFFICIENT_DATA = "insufficient_data"
    ERROR = "error"


class ErrorKind(str, Enum):
    TOOL_ARGUMENT = "tool_argument"
    QUERY_EXECUTION = "query_execution"


class _ToolArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")


class GetFieldInfoArgs(_ToolArgs):
    field_name: Optional[str] = None


class AnalyzeMetricArgs(_ToolArgs):
    metric: str
    aggregation: Aggregation
    group_by: str
    derived_metric: Optional[str] = None
    limit: int = Field(default=15, ge=1, le=100)
    time_range: Optional[str] = None

    @field_validator("derived_metric")
    @classmethod
    def _none_means_absent(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value.strip().lower() in {"", "none"}:
            return None
        return value.strip()


class GetTrendArgs(_ToolArgs):
    metric: str
    aggregation: BasicAggregation
    period: TrendPeriod
    range: Optional[str] = "last90"


class ComparePeriodsArgs(_ToolArgs):
    metric: str
    aggregation: BasicAggregation
    period1: str
    period2: str


class DetectAnomaliesArgs(_ToolArgs):
    metric: str
    group_by: Optional[str] = "carrier_name"
    sensitivity: Sensitivity = Sensitivity.MEDIUM


class GetSummaryStatsArgs(_ToolArgs):
    time_range: Optional[str] = "last90"


class AnalysisRequest(BaseModel):
    """Validated shape consumed by analyze_metric; the branch is fixed at creation."""

    model_config = ConfigDict(frozen=True)

    metric: str
    aggregation: Aggregation
    group_by: str
    derived_metric: Optional[str] = None
    time_range: Optional[str] = None
    limit: int = 15
    bucketed: bool = False


class ToolCall(BaseModel):
    """One tool invocation requested by the reasoning service."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


def _tool_id(tool: Any) -> str:
    return tool.value if isinstance(tool, Enum) else str(tool)


class ToolResult(BaseModel):
    """Query engine output for one tool call."""

    model_config = ConfigDict(frozen=True)

    tool: str
    success: bool
    status: ResultStatus = ResultStatus.OK
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, tool: str, rows: List[Dict[str, Any]], **details: Any) -> "ToolResult":
        return cls(tool=_tool_id(tool), success=True, rows=rows, row_count=len(rows), details=details)

    @classmethod
    def insufficient(cls, tool: str, message: str, **details: Any) -> "ToolResult":
        return cls(
            tool=_tool_id(tool),
            success=True,
            status=ResultStatus.INSUFFICIENT_DATA,
            details={"message": message, **details},
        )

    @classmethod
    def failure(cls, tool: str, kind: ErrorKind, message: str, **details: Any) -> "ToolResult":
        return cls(
            tool=_tool_id(tool),
            success=False,
            status=ResultStatus.ERROR,
            error=message,
            error_kind=kind,
            details=details,
        )

    def to_payload(self) -> Dict[str, Any]:
        """Flat JSON shape sent back to the reasoning service."""
        payload: Dict[str, Any] = {"success": self.success, "status": self.status.value}
        if self.error:
            payload["error"] = self.error
            payload["error_kind"] = self.error_kind.value if self.error_kind else None
        payload["rows"] = self.rows
        payload["row_count"] = self.row_count
        payload.update(self.details)
        return payload
