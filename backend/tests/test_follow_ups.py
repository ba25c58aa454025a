"""Unit tests for follow-up question extraction."""
from __future__ import annotations

import os
import sys
from pathlib import Path


os.environ["OPENAI_API_KEY"] = ""
os.environ["OPENAI_BASE_URL"] = ""

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from freightlens.services.follow_ups import GENERIC_FOLLOW_UPS, extract_follow_ups  # noqa: E402


def test_extracts_numbered_follow_ups_and_strips_markers():
    answer = (
        "XPO carries the most spend.\n\n"
        "Follow-up questions:\n"
        "1. Which lanes drive XPO's spend?\n"
        "2) How has XPO's cost per mile changed?\n"
        "- Are any carriers cheaper on the same lanes?\n"
    )
    questions = [q.question for q in extract_follow_ups(answer)]
    assert questions == [
        "Which lanes drive XPO's spend?",
        "How has XPO's cost per mile changed?",
        "Are any carriers cheaper on the same lanes?",
    ]


def test_heading_match_is_case_insensitive_and_caps_at_three():
    answer = (
        "**FOLLOW UP QUESTIONS:**\n"
        "* What about weight bands by carrier?\n"
        "* How do reefer loads compare to dry van?\n"
        "* Which states have the longest hauls?\n"
        "* Where are hazmat shipments concentrated?"
    )
    questions = [q.question for q in extract_follow_ups(answer)]
    assert len(questions) == 3
    assert questions[0] == "What about weight bands by carrier?"


def test_short_lines_are_dropped():
    answer = "Follow-up questions:\n1. Why?\n2. Which carriers are trending up this quarter?"
    assert [q.question for q in extract_follow_ups(answer)] == ["Which carriers are trending up this quarter?"]


def test_section_ends_at_blank_line():
    answer = (
        "Follow-up question:\n"
        "- Which lanes are most expensive per mile?\n"
        "\n"
        "Let me know if you need anything else, happy to dig deeper."
    )
    assert [q.question for q in extract_follow_ups(answer)] == ["Which lanes are most expensive per mile?"]


def test_generic_follow_ups_when_section_missing():
    questions = extract_follow_ups("Total spend was $1.2M over the last 90 days.")
    assert [q.question for q in questions] == list(GENERIC_FOLLOW_UPS)
    assert len({q.id for q in questions}) == 3
