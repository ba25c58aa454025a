"""Async wrapper around the OpenAI-compatible chat completions API with tool calls."""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import openai
from openai import AsyncOpenAI

from freightlens.core.config import Settings, get_settings
from freightlens.core.errors import ReasoningServiceError
from freightlens.core.logging import logger
from freightlens.models.analysis import ToolCall


DEFAULT_SYSTEM_PROMPT = """You are an expert logistics data analyst. Investigate the customer's shipping data with the tools provided and give actionable insights.

## Use analyze_metric for almost everything
analyze_metric handles every "X by Y" question:
- Categorical grouping: "cost by carrier" -> group_by: "carrier_name"
- Numeric banding: "cost by mileage bands" -> group_by: "miles" (bands are applied automatically)
- Derived metrics: "cost per mile" -> derived_metric: "cost_per_mile"

## Question -> tool mapping
| Question pattern | Tool | Key parameters |
|---|---|---|
| "cost by carrier" | analyze_metric | group_by: "carrier_name", metric: "retail" |
| "cost by mileage bands" | analyze_metric | group_by: "miles", metric: "retail" |
| "cost per mile by distance" | analyze_metric | group_by: "miles", derived_metric: "cost_per_mile" |
| "shipments by state" | analyze_metric | group_by: "origin_state", aggregation: "count" |
| "trend over time" | get_trend | period: "weekly" |
| "compare to last month" | compare_periods | period1: "last30", period2: "last60" |
| "what's unusual" | detect_anomalies | sensitivity: "medium" |
| "overview of my data" | get_summary_stats | time_range: "last90" |

## Fields
Metrics: retail (cost), miles, total_weight
Dimensions: carrier_name, origin_state, destination_state, mode_name, equipment_name, status_name
Derived metrics: cost_per_mile, cost_per_pound, avg_cost
Call get_field_info when unsure. If a tool returns an error, correct the arguments and try again.

## Rules
1. Always use analyze_metric for "X by Y" questions.
2. For mileage, weight or cost bands pass the numeric field; banding is automatic.
3. For "per mile" or "per pound" questions use derived_metric.
4. Never guess at numbers. Always use tools.

## Response format
1. Lead with a direct answer.
2. Include key supporting data points.
3. Note any caveats.
4. End with a "Follow-up questions:" section listing 2-3 follow-up questions, one per line."""


@dataclass(frozen=True)
class TextReply:
    """The service ended its turn without requesting tools."""

    text: str


@dataclass(frozen=True)
class ToolCallsReply:
    """The service requested one or more tools; ``text`` is any thinking it emitted."""

    text: str
    calls: Tuple[ToolCall, ...]


ReasoningReply = Union[TextReply, ToolCallsReply]


def _parse_arguments(raw: Optional[str]) -> Dict[str, Any]:
    try:
        parsed = json.loads(raw or "{}")
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


class ReasoningClient:
    """Sends transcript plus tool catalog and returns a discriminated reply."""

    def __init__(self, settings: Optional[Settings] = None, client: Any = None) -> None:
        self.settings = settings or get_settings()
        self.model = self.settings.reasoning_model
        self._client = client
        if self._client is None:
            api_key = self.settings.resolved_openai_api_key()
            if api_key is not None:
                self._client = AsyncOpenAI(
                    api_key=api_key,
                    base_url=self.settings.openai_base_url,
                    timeout=float(self.settings.reasoning_timeout_seconds),
                )
                logger.info("Using OpenAI-compatible reasoning service", model=self.model)
            else:
                logger.warning("Reasoning service is not configured; set OPENAI_API_KEY or a local OPENAI_BASE_URL")

    def is_configured(self) -> bool:
        return self._client is not None

    def system_prompt(self) -> str:
        path = (self.settings.system_prompt_path or "").strip()
        if not path:
            return DEFAULT_SYSTEM_PROMPT
        try:
            text = Path(path).read_text(encoding="utf-8").strip()
        except OSError as exc:
            logger.warning("Failed to load custom system prompt", path=path, error=str(exc))
            return DEFAULT_SYSTEM_PROMPT
        return text or DEFAULT_SYSTEM_PROMPT

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        max_tokens: int,
    ) -> ReasoningReply:
        if not self.is_configured():
            raise ReasoningServiceError("Reasoning service credentials are not configured")
        try:
            completion = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                tools=tools,
                tool_choice="auto",
                temperature=float(self.settings.reasoning_temperature),
                max_tokens=int(max_tokens),
            )
        except (openai.OpenAIError, asyncio.TimeoutError) as exc:
            logger.error("Reasoning service call failed", model=self.model, error=str(exc))
            raise ReasoningServiceError(str(exc)) from exc

        if not completion.choices:
            raise ReasoningServiceError("Reasoning service returned no choices")
        message = completion.choices[0].message
        text = str(message.content or "").strip()
        calls = tuple(
            ToolCall(
                id=str(call.id),
                name=str(call.function.name or ""),
                arguments=_parse_arguments(call.function.arguments),
            )
            for call in (message.tool_calls or [])
        )
        if calls:
            return ToolCallsReply(text=text, calls=calls)
        return TextReply(text=text)


reasoning_client = ReasoningClient()
