"""Domain exceptions for the investigation pipeline."""
from __future__ import annotations

from typing import List, Optional


class InvestigationError(Exception):
    """Base class for investigation failures."""


class RequestValidationError(InvestigationError):
    """Inbound request is missing required fields. Fatal, no turns run."""


class ToolArgumentError(InvestigationError):
    """The reasoning service asked for an unknown field or an invalid argument."""


class UnknownFieldError(ToolArgumentError):
    """A field name is not declared in the schema registry."""

    def __init__(self, field_name: str, available: Optional[List[str]] = None) -> None:
        self.field_name = field_name
        self.available = list(available or [])
        super().__init__(f"Unknown field: {field_name}")


class QueryExecutionError(InvestigationError):
    """The backing store failed while executing an analytic query."""


class ReasoningServiceError(InvestigationError):
    """The reasoning service call failed, timed out, or is not configured."""
