"""Request, trace, and response models for the investigation endpoint."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from freightlens.core.errors import RequestValidationError


class _CamelModel(BaseModel):
    """JSON uses camelCase keys; Python code uses snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Mode(str, Enum):
    """Processing-budget class assigned before the first turn."""

    QUICK = "quick"
    VISUAL = "visual"
    DEEP = "deep"


class ConversationRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ConversationTurn(_CamelModel):
    role: ConversationRole
    content: str


class InvestigationPreferences(_CamelModel):
    show_reasoning: bool = True
    force_mode: Optional[Mode] = None


class Question(BaseModel):
    """Validated, immutable input for one investigation."""

    model_config = ConfigDict(frozen=True)

    text: str
    tenant_id: str
    user_id: Optional[str] = None
    history: Tuple[ConversationTurn, ...] = ()
    preferences: InvestigationPreferences = Field(default_factory=InvestigationPreferences)


class InvestigateRequest(_CamelModel):
    """Inbound payload. Required fields are checked by ``to_question``."""

    question: Optional[str] = None
    customer_id: Optional[str] = None
    user_id: Optional[str] = None
    conversation_history: List[ConversationTurn] = Field(default_factory=list)
    preferences: InvestigationPreferences = Field(default_factory=InvestigationPreferences)

    def to_question(self) -> Question:
        missing = []
        if not (self.question or "").strip():
            missing.append("question")
        if not (self.customer_id or "").strip():
            missing.append("customerId")
        if missing:
            raise RequestValidationError(f"Missing required field(s): {', '.join(missing)}")
        return Question(
            text=self.question.strip(),
            tenant_id=self.customer_id.strip(),
            user_id=self.user_id,
            history=tuple(self.conversation_history),
            preferences=self.preferences,
        )


class ReasoningStepType(str, Enum):
    ROUTING = "routing"
    THINKING = "thinking"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"


class ReasoningStep(_CamelModel):
    """Observational trace entry; never replayed to the reasoning service."""

    model_config = ConfigDict(frozen=True)

    type: ReasoningStepType
    content: str
    tool_name: Optional[str] = None


class FollowUpQuestion(_CamelModel):
    id: str
    question: str


class VisualizationType(str, Enum):
    BAR = "bar"
    LINE = "line"
    PIE = "pie"
    STAT = "stat"


class ValueFormat(str, Enum):
    CURRENCY = "currency"
    PERCENT = "percent"
    NUMBER = "number"


class ChangeDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


class ChartPoint(_CamelModel):
    label: str
    value: float
    count: Optional[int] = None


class ChartPayload(_CamelModel):
    """Labelled (label, value) series for bar, line and pie charts."""

    data: List[ChartPoint]
    format: ValueFormat


class StatComparison(_CamelModel):
    value: float
    label: str
    direction: ChangeDirection


class StatPayload(_CamelModel):
    """Single scalar, optionally compared with a baseline."""

    value: float
    format: ValueFormat
    comparison: Optional[StatComparison] = None


class Visualization(_CamelModel):
    id: str
    type: VisualizationType
    title: str
    subtitle: Optional[str] = None
    data: Union[ChartPayload, StatPayload]
    config: Dict[str, Any] = Field(default_factory=dict)


class InvestigationStatus(str, Enum):
    """Terminal state the loop stopped in."""

    ANSWER = "answer"
    EXHAUSTED = "exhausted"
    ERROR = "error"
    CANCELLED = "cancelled"


class ClassificationInfo(_CamelModel):
    detected: Mode
    confidence: float
    reason: str


class InvestigationMetadata(_CamelModel):
    processing_time_ms: float = 0.0
    tool_call_count: int = 0
    mode: Mode
    classification: ClassificationInfo
    iterations: int = 0
    status: InvestigationStatus


class InvestigateResponse(_CamelModel):
    success: bool
    answer: str
    reasoning: List[ReasoningStep] = Field(default_factory=list)
    follow_up_questions: List[FollowUpQuestion] = Field(default_factory=list)
    visualizations: List[Visualization] = Field(default_factory=list)
    metadata: Optional[InvestigationMetadata] = None
    error: Optional[str] = None
