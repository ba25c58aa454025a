"""Schema registry models: queryable fields, buckets, and derived metrics."""
from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class FieldType(str, Enum):
    """Storage/semantic type of a shipment field."""

    NUMERIC = "numeric"
    CATEGORICAL = "categorical"
    DATE = "date"
    BOOLEAN = "boolean"


class Bucket(BaseModel):
    """One fixed numeric range. ``max_value`` of None means open-ended."""

    label: str
    min_value: float
    max_value: Optional[float] = None

    def contains(self, value: float) -> bool:
        if value < self.min_value:
            return False
        return self.max_value is None or value < self.max_value


class FieldMetadata(BaseModel):
    """Static catalog entry for one queryable field."""

    name: str
    type: FieldType
    display_name: str
    description: str = ""
    unit: Optional[str] = None
    can_group_by: bool = False
    can_aggregate: bool = False
    can_bucket: bool = False
    buckets: List[Bucket] = Field(default_factory=list)


class DerivedMetricSpec(BaseModel):
    """Ratio metric computed as sum(numerator) / sum(denominator)."""

    name: str
    display_name: str
    formula: str
    numerator: str
    denominator: Optional[str] = None
    unit: str

    @property
    def requires(self) -> List[str]:
        return [field for field in (self.numerator, self.denominator) if field]


class UnknownField(BaseModel):
    """Lookup miss returned to the reasoning service as a correction hint."""

    error: str
    field_name: str
    available_fields: List[str] = Field(default_factory=list)
