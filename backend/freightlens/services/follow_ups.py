"""Extract suggested follow-up questions from the final answer text."""
from __future__ import annotations

import re
import uuid
from typing import List

from freightlens.models.investigation import FollowUpQuestion


FOLLOW_UP_SECTION = re.compile(r"follow[- ]?up questions?[:*]*\s*\n([\s\S]*?)(?:\n\n|$)", re.IGNORECASE)
LIST_MARKER = re.compile(r"^[-\d.)*•]+\s*")

MIN_QUESTION_CHARS = 10
MAX_FOLLOW_UPS = 3

GENERIC_FOLLOW_UPS = (
    "How does this compare to previous periods?",
    "What's driving these numbers?",
    "Are there any outliers I should know about?",
)


def extract_follow_ups(answer: str) -> List[FollowUpQuestion]:
    match = FOLLOW_UP_SECTION.search(answer or "")
    questions: List[str] = []
    if match:
        for line in match.group(1).splitlines():
            text = LIST_MARKER.sub("", line.strip()).strip()
            if len(text) > MIN_QUESTION_CHARS:
                questions.append(text)
            if len(questions) == MAX_FOLLOW_UPS:
                break
    if not questions:
        questions = list(GENERIC_FOLLOW_UPS)
    return [FollowUpQuestion(id=str(uuid.uuid4()), question=q) for q in questions]
