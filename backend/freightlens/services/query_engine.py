"""Bounded analytic operations over the tenant's shipments."""
from __future__ import annotations

import asyncio
import re
import statistics
import time
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from freightlens.core.errors import QueryExecutionError, ToolArgumentError, UnknownFieldError
from freightlens.core.logging import logger
from freightlens.models.analysis import (
    AnalysisRequest,
    AnalyzeMetricArgs,
    ComparePeriodsArgs,
    DetectAnomaliesArgs,
    ErrorKind,
    GetFieldInfoArgs,
    GetSummaryStatsArgs,
    GetTrendArgs,
    Sensitivity,
    ToolName,
    ToolResult,
    TrendPeriod,
)
from freightlens.models.schema import FieldMetadata, FieldType, UnknownField
from freightlens.services.schema_registry import SchemaRegistry, schema_registry
from freightlens.services.shipment_store import ShipmentStore, shipment_store


LOOKBACK_PATTERN = re.compile(r"^last(\d{1,4})$")
NAMED_LOOKBACKS = {"lastyear": 365}

SENSITIVITY_THRESHOLDS = {
    Sensitivity.HIGH: 1.5,
    Sensitivity.MEDIUM: 2.0,
    Sensitivity.LOW: 3.0,
}

ANOMALY_MIN_GROUPS = 3
ANOMALY_MAX_GROUPS = 50
SUMMARY_TOP_N = 5


def parse_lookback(value: Optional[str], default_days: Optional[int] = 90) -> Optional[int]:
    """Translate 'last30' / 'lastyear' / 'all' into a day count (None = unbounded)."""
    if value is None or not str(value).strip():
        return default_days
    text = str(value).strip().lower().replace("_", "").replace(" ", "")
    if text == "all":
        return None
    if text in NAMED_LOOKBACKS:
        return NAMED_LOOKBACKS[text]
    match = LOOKBACK_PATTERN.match(text)
    if not match or int(match.group(1)) <= 0:
        raise ToolArgumentError(
            f"Unsupported time range '{value}'. Use lastN (days, e.g. last30), lastyear or all."
        )
    return int(match.group(1))


def percent_change(current: float, baseline: float) -> float:
    """Signed percent change; a zero baseline maps to 0 (flat) or +/-100."""
    if baseline == 0:
        if current == 0:
            return 0.0
        return 100.0 if current > 0 else -100.0
    return (current - baseline) * 100.0 / abs(baseline)


def aggregate_values(values: Sequence[float], aggregation: str, row_count: int) -> float:
    if aggregation == "count":
        return float(row_count)
    if not values:
        return 0.0
    if aggregation == "sum":
        return float(sum(values))
    if aggregation == "avg":
        return float(sum(values)) / len(values)
    if aggregation == "min":
        return float(min(values))
    if aggregation == "max":
        return float(max(values))
    raise ToolArgumentError(f"Unsupported aggregation: {aggregation}")


def period_key(day: date, period: TrendPeriod) -> str:
    if period == TrendPeriod.DAILY:
        return day.isoformat()
    if period == TrendPeriod.WEEKLY:
        # Weeks start on Sunday.
        return (day - timedelta(days=(day.weekday() + 1) % 7)).isoformat()
    return f"{day.year:04d}-{day.month:02d}"


def _number(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class QueryEngine:
    """Read-only analytic entry points. Failures come back as ToolResult errors."""

    def __init__(
        self,
        store: Optional[ShipmentStore] = None,
        registry: Optional[SchemaRegistry] = None,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.store = store or shipment_store
        self.registry = registry or schema_registry
        self._today = today or _utc_today

    # ---------------------------------------------------------------- plumbing

    async def _run(self, tool: ToolName, tenant_id: str, func: Callable[..., ToolResult], *args: Any) -> ToolResult:
        started = time.time()
        try:
            result = await asyncio.to_thread(func, tenant_id, *args)
        except UnknownFieldError as exc:
            logger.info("Tool rejected unknown field", tool=tool.value, field=exc.field_name, tenant_id=tenant_id)
            return ToolResult.failure(
                tool,
                ErrorKind.TOOL_ARGUMENT,
                str(exc),
                available_fields=exc.available,
            )
        except ToolArgumentError as exc:
            logger.info("Tool rejected arguments", tool=tool.value, error=str(exc), tenant_id=tenant_id)
            return ToolResult.failure(tool, ErrorKind.TOOL_ARGUMENT, str(exc))
        except QueryExecutionError as exc:
            logger.error("Query execution failed", tool=tool.value, error=str(exc), tenant_id=tenant_id)
            return ToolResult.failure(tool, ErrorKind.QUERY_EXECUTION, "The data query failed. Try a simpler request.")
        logger.debug(
            "Tool executed",
            tool=tool.value,
            tenant_id=tenant_id,
            rows=result.row_count,
            elapsed_ms=round((time.time() - started) * 1000, 2),
        )
        return result

    def _since(self, days: Optional[int]) -> Optional[date]:
        if days is None:
            return None
        return self._today() - timedelta(days=days)

    def _field(self, name: str) -> FieldMetadata:
        metadata = self.registry.get(name)
        if metadata is None:
            raise UnknownFieldError(name, self.registry.field_names())
        return metadata

    def _metric(self, name: str, aggregation: str) -> FieldMetadata:
        metadata = self._field(name)
        if aggregation != "count" and not metadata.can_aggregate:
            numeric = [f.name for f in self.registry.list_fields(FieldType.NUMERIC) if f.can_aggregate]
            raise ToolArgumentError(
                f"Field '{name}' cannot be aggregated with {aggregation}. Aggregatable fields: {', '.join(numeric)}"
            )
        return metadata

    def _group_field(self, name: str) -> FieldMetadata:
        metadata = self._field(name)
        if not (metadata.can_group_by or self.registry.is_bucketable(name)):
            groupable = [f.name for f in self.registry.list_fields() if f.can_group_by or f.can_bucket]
            raise ToolArgumentError(
                f"Field '{name}' cannot be used for grouping. Groupable fields: {', '.join(groupable)}"
            )
        return metadata

    # -------------------------------------------------------------- discovery

    async def get_field_info(self, tenant_id: str, args: GetFieldInfoArgs) -> ToolResult:
        return await self._run(ToolName.GET_FIELD_INFO, tenant_id, self._field_info, args)

    def _field_info(self, tenant_id: str, args: GetFieldInfoArgs) -> ToolResult:
        if args.field_name:
            described = self.registry.describe_field(args.field_name)
            if isinstance(described, UnknownField):
                return ToolResult.failure(
                    ToolName.GET_FIELD_INFO,
                    ErrorKind.TOOL_ARGUMENT,
                    described.error,
                    available_fields=described.available_fields,
                )
            return ToolResult.ok(ToolName.GET_FIELD_INFO, [described.model_dump(mode="json")])

        rows = [
            {
                "name": f.name,
                "type": f.type.value,
                "display_name": f.display_name,
                "can_group_by": f.can_group_by,
                "can_aggregate": f.can_aggregate,
                "can_bucket": f.can_bucket,
            }
            for f in self.registry.list_fields()
        ]
        derived = [
            {"name": d.name, "display_name": d.display_name, "formula": d.formula, "unit": d.unit}
            for d in self.registry.list_derived_metrics()
        ]
        return ToolResult.ok(ToolName.GET_FIELD_INFO, rows, derived_metrics=derived)

    # --------------------------------------------------------- analyze_metric

    def plan_analysis(self, args: AnalyzeMetricArgs) -> AnalysisRequest:
        """Validate arguments against the registry and fix the execution branch."""
        self._metric(args.metric, args.aggregation.value)
        self._group_field(args.group_by)
        if args.derived_metric and self.registry.get_derived(args.derived_metric) is None:
            names = [d.name for d in self.registry.list_derived_metrics()]
            raise ToolArgumentError(
                f"Unknown derived metric '{args.derived_metric}'. Available: {', '.join(names)}"
            )
        parse_lookback(args.time_range, default_days=None)
        return AnalysisRequest(
            metric=args.metric,
            aggregation=args.aggregation,
            group_by=args.group_by,
            derived_metric=args.derived_metric,
            time_range=args.time_range,
            limit=args.limit,
            bucketed=self.registry.is_bucketable(args.group_by),
        )

    async def analyze_metric(self, tenant_id: str, args: AnalyzeMetricArgs) -> ToolResult:
        return await self._run(ToolName.ANALYZE_METRIC, tenant_id, self._analyze, args)

    def _analyze(self, tenant_id: str, args: AnalyzeMetricArgs) -> ToolResult:
        request = self.plan_analysis(args)
        if request.bucketed:
            return self.bucketed_aggregation(tenant_id, request)
        return self.categorical_aggregation(tenant_id, request)

    def categorical_aggregation(self, tenant_id: str, request: AnalysisRequest) -> ToolResult:
        since = self._since(parse_lookback(request.time_range, default_days=None))
        spec = self.registry.get_derived(request.derived_metric) if request.derived_metric else None
        groups = self.store.group_aggregate(
            tenant_id,
            request.group_by,
            request.metric,
            request.aggregation.value,
            since=since,
            limit=request.limit,
            ratio=(spec.numerator, spec.denominator) if spec else None,
        )
        is_boolean = self._field(request.group_by).type == FieldType.BOOLEAN
        totals = self.store.totals(
            tenant_id, request.group_by, request.metric, request.aggregation.value, since=since
        )
        total_value = _number(totals["value"]) or 0.0
        # Shares are only meaningful for additive aggregations.
        additive = request.aggregation.value in {"sum", "count"} and total_value != 0

        rows: List[Dict[str, Any]] = []
        for group in groups:
            name = group["name"]
            if is_boolean:
                name = "Yes" if str(name) in {"1", "true", "True"} else "No"
            value = _number(group["value"]) or 0.0
            row = {"name": name, "value": value, "count": int(group["count"])}
            if additive:
                row["percent_of_total"] = round(value / total_value * 100.0, 2)
            if spec:
                row["derived_value"] = _number(group.get("derived_value"))
            rows.append(row)

        return ToolResult.ok(
            ToolName.ANALYZE_METRIC,
            rows,
            is_bucketed=False,
            group_by=request.group_by,
            metric=request.metric,
            aggregation=request.aggregation.value,
            derived_metric=request.derived_metric,
            total_groups=totals["groups"],
            total_records=totals["count"],
            total_value=total_value,
        )

    def bucketed_aggregation(self, tenant_id: str, request: AnalysisRequest) -> ToolResult:
        since = self._since(parse_lookback(request.time_range, default_days=None))
        spec = self.registry.get_derived(request.derived_metric) if request.derived_metric else None
        fields = [request.group_by, request.metric] + (spec.requires if spec else [])
        records = self.store.fetch_rows(tenant_id, fields, since=since, not_null=[request.group_by])

        buckets = self.registry.buckets_for(request.group_by)
        members: List[List[Dict[str, Any]]] = [[] for _ in buckets]
        excluded = 0
        for record in records:
            value = _number(record[request.group_by])
            index = next((i for i, b in enumerate(buckets) if value is not None and b.contains(value)), None)
            if index is None:
                excluded += 1
                continue
            members[index].append(record)

        rows: List[Dict[str, Any]] = []
        for bucket, bucket_rows in zip(buckets, members):
            if not bucket_rows:
                continue
            values = [v for v in (_number(r[request.metric]) for r in bucket_rows) if v is not None]
            row = {
                "label": bucket.label,
                "value": aggregate_values(values, request.aggregation.value, len(bucket_rows)),
                "count": len(bucket_rows),
            }
            if spec:
                row["derived_value"] = self._ratio(bucket_rows, spec.numerator, spec.denominator)
            rows.append(row)

        return ToolResult.ok(
            ToolName.ANALYZE_METRIC,
            rows,
            is_bucketed=True,
            bucket_field=request.group_by,
            metric=request.metric,
            aggregation=request.aggregation.value,
            derived_metric=request.derived_metric,
            total_records=len(records) - excluded,
            excluded_records=excluded,
        )

    @staticmethod
    def _ratio(rows: Sequence[Dict[str, Any]], numerator: str, denominator: Optional[str]) -> Optional[float]:
        """Total-over-total ratio; never the mean of per-row ratios."""
        total = sum(_number(r.get(numerator)) or 0.0 for r in rows)
        if denominator:
            base = sum(_number(r.get(denominator)) or 0.0 for r in rows)
        else:
            base = float(len(rows))
        if base == 0:
            return None
        return total / base

    # ------------------------------------------------------------------ trend

    async def get_trend(self, tenant_id: str, args: GetTrendArgs) -> ToolResult:
        return await self._run(ToolName.GET_TREND, tenant_id, self._trend, args)

    def _trend(self, tenant_id: str, args: GetTrendArgs) -> ToolResult:
        self._metric(args.metric, args.aggregation.value)
        days = parse_lookback(args.range, default_days=90)
        if days is None:
            raise ToolArgumentError("get_trend needs a bounded range such as last30, last90 or lastyear")
        records = self.store.fetch_rows(
            tenant_id,
            ["created_date", args.metric],
            since=self._since(days),
            not_null=["created_date"],
        )
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for record in records:
            try:
                day = date.fromisoformat(str(record["created_date"])[:10])
            except ValueError:
                continue
            grouped.setdefault(period_key(day, args.period), []).append(record)

        rows = []
        for key in sorted(grouped):
            bucket_rows = grouped[key]
            values = [v for v in (_number(r[args.metric]) for r in bucket_rows) if v is not None]
            rows.append(
                {
                    "period": key,
                    "value": aggregate_values(values, args.aggregation.value, len(bucket_rows)),
                    "count": len(bucket_rows),
                }
            )

        details: Dict[str, Any] = {
            "metric": args.metric,
            "aggregation": args.aggregation.value,
            "period": args.period.value,
            "range": args.range or "last90",
        }
        if not rows:
            details["message"] = "No data found for the specified period"
        return ToolResult.ok(ToolName.GET_TREND, rows, **details)

    # ------------------------------------------------------ compare_periods

    async def compare_periods(self, tenant_id: str, args: ComparePeriodsArgs) -> ToolResult:
        return await self._run(ToolName.COMPARE_PERIODS, tenant_id, self._compare, args)

    def _compare(self, tenant_id: str, args: ComparePeriodsArgs) -> ToolResult:
        self._metric(args.metric, args.aggregation.value)
        current_days = parse_lookback(args.period1, default_days=None)
        baseline_days = parse_lookback(args.period2, default_days=None)
        if current_days is None or baseline_days is None:
            raise ToolArgumentError("compare_periods needs bounded periods such as last30 and last60")
        if baseline_days <= current_days:
            raise ToolArgumentError(
                f"period2 ({args.period2}) must reach further back than period1 ({args.period1}) "
                "so the two windows do not overlap"
            )

        boundary = self._since(current_days)
        current_rows = self.store.fetch_rows(tenant_id, [args.metric], since=boundary)
        baseline_rows = self.store.fetch_rows(
            tenant_id,
            [args.metric],
            since=self._since(baseline_days),
            until=boundary,
        )

        def _value(records: List[Dict[str, Any]]) -> float:
            values = [v for v in (_number(r[args.metric]) for r in records) if v is not None]
            return aggregate_values(values, args.aggregation.value, len(records))

        current = _value(current_rows)
        baseline = _value(baseline_rows)
        period1 = {"label": args.period1, "value": current, "count": len(current_rows)}
        period2 = {"label": args.period2, "value": baseline, "count": len(baseline_rows)}
        return ToolResult.ok(
            ToolName.COMPARE_PERIODS,
            [dict(period1, role="current"), dict(period2, role="baseline")],
            metric=args.metric,
            aggregation=args.aggregation.value,
            period1=period1,
            period2=period2,
            change={"absolute": current - baseline, "percent": percent_change(current, baseline)},
        )

    # ----------------------------------------------------- detect_anomalies

    async def detect_anomalies(self, tenant_id: str, args: DetectAnomaliesArgs) -> ToolResult:
        return await self._run(ToolName.DETECT_ANOMALIES, tenant_id, self._anomalies, args)

    def _anomalies(self, tenant_id: str, args: DetectAnomaliesArgs) -> ToolResult:
        group_by = args.group_by or "carrier_name"
        self._metric(args.metric, "sum")
        if not self._field(group_by).can_group_by:
            raise ToolArgumentError(f"Field '{group_by}' cannot be used as an anomaly dimension")

        groups = self.store.group_aggregate(
            tenant_id, group_by, args.metric, "sum", limit=ANOMALY_MAX_GROUPS
        )
        if len(groups) < ANOMALY_MIN_GROUPS:
            return ToolResult.insufficient(
                ToolName.DETECT_ANOMALIES,
                f"Not enough data for anomaly detection: need at least {ANOMALY_MIN_GROUPS} groups, "
                f"found {len(groups)}",
                groups_found=len(groups),
                group_by=group_by,
                metric=args.metric,
            )

        values = [_number(g["value"]) or 0.0 for g in groups]
        mean = statistics.fmean(values)
        std_dev = statistics.pstdev(values, mu=mean)
        threshold = SENSITIVITY_THRESHOLDS[args.sensitivity]

        rows = []
        for group, value in zip(groups, values):
            if abs(value - mean) > threshold * std_dev:
                rows.append(
                    {
                        "group": group["name"],
                        "value": value,
                        "deviation": round((value - mean) / std_dev, 2) if std_dev else 0.0,
                        "type": "high" if value > mean else "low",
                    }
                )

        return ToolResult.ok(
            ToolName.DETECT_ANOMALIES,
            rows,
            group_by=group_by,
            metric=args.metric,
            groups_analyzed=len(groups),
            stats={
                "mean": mean,
                "std_dev": std_dev,
                "threshold": threshold,
                "sensitivity": args.sensitivity.value,
            },
        )

    # ---------------------------------------------------- get_summary_stats

    async def get_summary_stats(self, tenant_id: str, args: GetSummaryStatsArgs) -> ToolResult:
        return await self._run(ToolName.GET_SUMMARY_STATS, tenant_id, self._summary, args)

    def _summary(self, tenant_id: str, args: GetSummaryStatsArgs) -> ToolResult:
        days = parse_lookback(args.time_range, default_days=90)
        records = self.store.fetch_rows(
            tenant_id,
            ["retail", "miles", "total_weight", "carrier_name", "mode_name", "created_date"],
            since=self._since(days),
        )
        time_range = args.time_range or "last90"
        if not records:
            return ToolResult.ok(
                ToolName.GET_SUMMARY_STATS,
                [],
                message="No shipments found",
                time_range=time_range,
            )

        total = len(records)
        total_cost = sum(_number(r["retail"]) or 0.0 for r in records)
        total_miles = sum(_number(r["miles"]) or 0.0 for r in records)
        total_weight = sum(_number(r["total_weight"]) or 0.0 for r in records)
        carriers = Counter(r["carrier_name"] for r in records if r["carrier_name"])
        modes = Counter(r["mode_name"] for r in records if r["mode_name"])
        dates = sorted(str(r["created_date"]) for r in records if r["created_date"])

        stats = {
            "total_shipments": total,
            "total_cost": total_cost,
            "total_miles": total_miles,
            "total_weight": total_weight,
            "avg_cost": total_cost / total,
            "avg_miles": total_miles / total,
            "cost_per_mile": total_cost / total_miles if total_miles > 0 else 0.0,
            "unique_carriers": len(carriers),
        }
        return ToolResult.ok(
            ToolName.GET_SUMMARY_STATS,
            [stats],
            time_range=time_range,
            date_range={"earliest": dates[0] if dates else None, "latest": dates[-1] if dates else None},
            top_carriers=[{"name": n, "count": c} for n, c in carriers.most_common(SUMMARY_TOP_N)],
            top_modes=[{"name": n, "count": c} for n, c in modes.most_common(SUMMARY_TOP_N)],
        )


query_engine = QueryEngine()
