"""Pattern-based routing of a question into a processing mode."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Tuple, Union

from freightlens.models.investigation import Mode


@dataclass(frozen=True)
class ModeBudget:
    """Orchestrator limits for a mode; both grow from quick to visual to deep."""

    max_turns: int
    max_tokens: int


MODE_BUDGETS: Dict[Mode, ModeBudget] = {
    Mode.QUICK: ModeBudget(max_turns=3, max_tokens=2048),
    Mode.VISUAL: ModeBudget(max_turns=5, max_tokens=3072),
    Mode.DEEP: ModeBudget(max_turns=8, max_tokens=4096),
}


@dataclass(frozen=True)
class Classification:
    """Detected mode plus the caller's override, if any."""

    detected: Mode
    confidence: float
    reason: str
    forced: Optional[Mode] = None

    @property
    def mode(self) -> Mode:
        return self.forced or self.detected

    @property
    def budget(self) -> ModeBudget:
        return MODE_BUDGETS[self.mode]


def _compile(*patterns: str) -> List[Pattern[str]]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


# Evaluated in order; the first family with a matching pattern wins.
PATTERN_FAMILIES: Tuple[Tuple[Mode, float, str, List[Pattern[str]]], ...] = (
    (
        Mode.QUICK,
        0.8,
        "Simple factual question",
        _compile(
            r"^(how many|what('?s| is) the (total|count|number)|count of)",
            r"^(what|who) (is|are) (the )?(top|best|worst|highest|lowest)",
            r"simple|quick|fast|just tell me",
        ),
    ),
    (
        Mode.VISUAL,
        0.85,
        "Visualization requested",
        _compile(
            r"show me|visualize|chart|graph|plot|display|breakdown",
            r"over time|trend|by (month|week|day|year)",
            r"compare|\bvs\b|versus|distribution",
            r"by (carrier|state|mode|mileage|distance|weight)",
            r"bands|ranges|buckets|tiers",
        ),
    ),
    (
        Mode.DEEP,
        0.9,
        "Analytical investigation needed",
        _compile(
            r"why|how come|explain|analyze|investigate|dig into",
            r"root cause|problem|issue|anomal",
            r"understand|figure out|what('?s| is) (happening|going on|wrong)",
        ),
    ),
)

LONG_QUESTION_CHARS = 100


def detect_mode(question: str) -> Tuple[Mode, float, str]:
    text = (question or "").strip()
    for mode, confidence, reason, patterns in PATTERN_FAMILIES:
        if any(p.search(text) for p in patterns):
            return mode, confidence, reason
    if len(text) > LONG_QUESTION_CHARS:
        return Mode.DEEP, 0.7, "Complex question"
    return Mode.DEEP, 0.6, "Default to thorough analysis"


def classify(question: str, force_mode: Optional[Union[Mode, str]] = None) -> Classification:
    """Classify a question. A forced mode overrides the detected one for budgeting."""
    detected, confidence, reason = detect_mode(question)
    return Classification(
        detected=detected,
        confidence=confidence,
        reason=reason,
        forced=Mode(force_mode) if force_mode else None,
    )
