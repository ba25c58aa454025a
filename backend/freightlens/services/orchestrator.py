"""Bounded multi-turn investigation loop between the reasoning service and the query engine."""
from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from freightlens.core.config import Settings, get_settings
from freightlens.core.errors import ReasoningServiceError
from freightlens.core.logging import logger
from freightlens.models.analysis import ToolCall, ToolResult
from freightlens.models.investigation import (
    ClassificationInfo,
    InvestigateResponse,
    InvestigationMetadata,
    InvestigationStatus,
    Question,
    ReasoningStep,
    ReasoningStepType,
    Visualization,
)
from freightlens.services.follow_ups import extract_follow_ups
from freightlens.services.investigation_tools import ToolDispatcher, tool_dispatcher, tool_schemas
from freightlens.services.mode_classifier import Classification, classify
from freightlens.services.reasoning_client import ReasoningClient, TextReply, reasoning_client
from freightlens.services.visualization import VisualizationSynthesizer, visualization_synthesizer


FALLBACK_ANSWER = "I encountered an error during the investigation. Please try again."
EXHAUSTED_ANSWER = (
    "I reached the analysis step limit before finishing. "
    "The reasoning and charts below show what I found so far."
)
CANCELLED_ANSWER = "The investigation was cancelled before it finished."
EMPTY_ANSWER = "Analysis complete. See the visualizations for details."


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


@dataclass(frozen=True)
class InvestigationTrace:
    """Accumulated, immutable loop state; each turn returns a new trace."""

    reasoning: Tuple[ReasoningStep, ...] = ()
    visualizations: Tuple[Visualization, ...] = ()
    answer: str = ""
    tool_call_count: int = 0
    iterations: int = 0

    def with_step(self, kind: ReasoningStepType, content: str, tool_name: Optional[str] = None) -> "InvestigationTrace":
        step = ReasoningStep(type=kind, content=content, tool_name=tool_name)
        return replace(self, reasoning=self.reasoning + (step,))

    def with_visualization(self, visualization: Optional[Visualization]) -> "InvestigationTrace":
        if visualization is None:
            return self
        return replace(self, visualizations=self.visualizations + (visualization,))


class InvestigationOrchestrator:
    """Routes a question, then alternates reasoning calls and tool execution until a terminal state."""

    def __init__(
        self,
        reasoning: Optional[ReasoningClient] = None,
        dispatcher: Optional[ToolDispatcher] = None,
        synthesizer: Optional[VisualizationSynthesizer] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.reasoning = reasoning or reasoning_client
        self.dispatcher = dispatcher or tool_dispatcher
        self.synthesizer = synthesizer or visualization_synthesizer
        self.settings = settings or get_settings()
        self._tools = tool_schemas(self.dispatcher.engine.registry)

    # ------------------------------------------------------------- transcript

    def _initial_transcript(self, question: Question) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [{"role": "system", "content": self.reasoning.system_prompt()}]
        messages.extend({"role": turn.role.value, "content": turn.content} for turn in question.history)
        messages.append({"role": "user", "content": question.text})
        return messages

    @staticmethod
    def _assistant_message(text: str, calls: Sequence[ToolCall]) -> Dict[str, Any]:
        return {
            "role": "assistant",
            "content": text or None,
            "tool_calls": [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                }
                for call in calls
            ],
        }

    @staticmethod
    def _tool_message(call: ToolCall, result: ToolResult) -> Dict[str, Any]:
        return {
            "role": "tool",
            "tool_call_id": call.id,
            "content": json.dumps(result.to_payload(), ensure_ascii=True, default=str),
        }

    # ------------------------------------------------------------------- loop

    async def investigate(
        self,
        question: Question,
        cancel: Optional[asyncio.Event] = None,
    ) -> InvestigateResponse:
        started = time.time()
        cancel = cancel or asyncio.Event()
        classification = classify(question.text, question.preferences.force_mode)
        logger.info(
            "Investigation started",
            tenant_id=question.tenant_id,
            mode=classification.mode.value,
            confidence=classification.confidence,
            reason=classification.reason,
        )

        trace = InvestigationTrace().with_step(
            ReasoningStepType.ROUTING,
            f"Mode: {classification.mode.value} ({classification.reason})",
        )
        if not self.reasoning.is_configured():
            logger.error("Investigation aborted: reasoning service credentials missing", tenant_id=question.tenant_id)
            return self._respond(question, classification, InvestigationTrace(), InvestigationStatus.ERROR, started)

        status = InvestigationStatus.EXHAUSTED
        try:
            status, trace = await self._run_turns(question, classification, trace, cancel)
        except Exception as exc:
            logger.exception("Investigation failed", tenant_id=question.tenant_id, error=str(exc))
            status = InvestigationStatus.ERROR

        return self._respond(question, classification, trace, status, started)

    async def _run_turns(
        self,
        question: Question,
        classification: Classification,
        trace: InvestigationTrace,
        cancel: asyncio.Event,
    ) -> Tuple[InvestigationStatus, InvestigationTrace]:
        budget = classification.budget
        messages = self._initial_transcript(question)
        for _ in range(budget.max_turns):
            if cancel.is_set():
                return InvestigationStatus.CANCELLED, trace
            try:
                reply = await self.reasoning.complete(messages, self._tools, budget.max_tokens)
            except ReasoningServiceError as exc:
                logger.error("Reasoning service failed mid-investigation", tenant_id=question.tenant_id, error=str(exc))
                return InvestigationStatus.ERROR, trace
            trace = replace(trace, iterations=trace.iterations + 1)
            if reply.text:
                trace = trace.with_step(
                    ReasoningStepType.THINKING,
                    _truncate(reply.text, self.settings.reasoning_max_chars),
                )
                trace = replace(trace, answer=reply.text)
            if isinstance(reply, TextReply):
                return InvestigationStatus.ANSWER, trace

            if cancel.is_set():
                return InvestigationStatus.CANCELLED, trace
            messages.append(self._assistant_message(reply.text, reply.calls))
            completed, tool_messages = await self._run_tools(question.tenant_id, reply.calls, trace)
            if cancel.is_set():
                # Results that landed after cancellation are discarded.
                return InvestigationStatus.CANCELLED, trace
            trace = completed
            messages.extend(tool_messages)
        return InvestigationStatus.EXHAUSTED, trace

    async def _run_tools(
        self,
        tenant_id: str,
        calls: Sequence[ToolCall],
        trace: InvestigationTrace,
    ) -> Tuple[InvestigationTrace, List[Dict[str, Any]]]:
        for call in calls:
            trace = trace.with_step(ReasoningStepType.TOOL_CALL, f"Calling {call.name}", tool_name=call.name)

        results = await asyncio.gather(*(self.dispatcher.execute(tenant_id, call) for call in calls))

        messages: List[Dict[str, Any]] = []
        for call, result in zip(calls, results):
            tool = self.dispatcher.resolve(call.name)
            if tool is not None:
                trace = trace.with_visualization(self.synthesizer.synthesize(tool, call.arguments, result))
            summary = json.dumps(result.to_payload(), ensure_ascii=True, default=str)
            trace = trace.with_step(
                ReasoningStepType.TOOL_RESULT,
                _truncate(summary, self.settings.tool_result_preview_chars),
                tool_name=call.name,
            )
            messages.append(self._tool_message(call, result))
            logger.info(
                "Tool call completed",
                tenant_id=tenant_id,
                tool=call.name,
                success=result.success,
                status=result.status.value,
                rows=result.row_count,
            )
        return replace(trace, tool_call_count=trace.tool_call_count + len(calls)), messages

    # --------------------------------------------------------------- response

    def _respond(
        self,
        question: Question,
        classification: Classification,
        trace: InvestigationTrace,
        status: InvestigationStatus,
        started: float,
    ) -> InvestigateResponse:
        answer = trace.answer.strip()
        if status == InvestigationStatus.ERROR:
            answer = FALLBACK_ANSWER
        elif status == InvestigationStatus.CANCELLED:
            answer = answer or CANCELLED_ANSWER
        elif status == InvestigationStatus.EXHAUSTED:
            answer = answer or EXHAUSTED_ANSWER
        else:
            answer = answer or EMPTY_ANSWER

        success = status in (InvestigationStatus.ANSWER, InvestigationStatus.EXHAUSTED)
        elapsed = (time.time() - started) * 1000
        logger.info(
            "Investigation finished",
            tenant_id=question.tenant_id,
            status=status.value,
            iterations=trace.iterations,
            tool_calls=trace.tool_call_count,
            visualizations=len(trace.visualizations),
            elapsed_ms=round(elapsed, 2),
        )
        return InvestigateResponse(
            success=success,
            answer=answer,
            reasoning=list(trace.reasoning) if question.preferences.show_reasoning else [],
            follow_up_questions=extract_follow_ups(answer) if success else [],
            visualizations=list(trace.visualizations),
            metadata=InvestigationMetadata(
                processing_time_ms=elapsed,
                tool_call_count=trace.tool_call_count,
                mode=classification.mode,
                classification=ClassificationInfo(
                    detected=classification.detected,
                    confidence=classification.confidence,
                    reason=classification.reason,
                ),
                iterations=trace.iterations,
                status=status,
            ),
        )

    def tool_catalog(self) -> List[Dict[str, Any]]:
        return list(self._tools)

    @staticmethod
    def failure_response(error: str) -> InvestigateResponse:
        """Body for requests rejected before any turn runs."""
        return InvestigateResponse(success=False, answer=FALLBACK_ANSWER, error=error)


investigation_orchestrator = InvestigationOrchestrator()
