"""Declarative registry of shipment fields and derived metrics."""
from __future__ import annotations

from typing import Dict, List, Optional, Union

from freightlens.models.schema import (
    Bucket,
    DerivedMetricSpec,
    FieldMetadata,
    FieldType,
    UnknownField,
)


def _buckets(*bounds: tuple) -> List[Bucket]:
    return [Bucket(label=label, min_value=lo, max_value=hi) for label, lo, hi in bounds]


class SchemaRegistry:
    """Read-only catalog consumed by the query engine and the get_field_info tool."""

    def __init__(
        self,
        fields: Optional[List[FieldMetadata]] = None,
        derived_metrics: Optional[List[DerivedMetricSpec]] = None,
    ) -> None:
        self._fields: Dict[str, FieldMetadata] = {f.name: f for f in (fields or DEFAULT_FIELDS)}
        self._derived: Dict[str, DerivedMetricSpec] = {
            d.name: d for d in (derived_metrics or DEFAULT_DERIVED_METRICS)
        }

    def field_names(self) -> List[str]:
        return list(self._fields)

    def has_field(self, name: str) -> bool:
        return name in self._fields

    def get(self, name: str) -> Optional[FieldMetadata]:
        return self._fields.get(name)

    def list_fields(self, category: Optional[Union[FieldType, str]] = None) -> List[FieldMetadata]:
        """Enumerate fields in declaration order, optionally filtered by type."""
        if category is None:
            return list(self._fields.values())
        wanted = FieldType(category)
        return [f for f in self._fields.values() if f.type == wanted]

    def describe_field(self, name: str) -> Union[FieldMetadata, UnknownField]:
        """Return one field's metadata, or an UnknownField hint for the model."""
        metadata = self._fields.get(name)
        if metadata is None:
            return UnknownField(
                error=f"Unknown field: {name}",
                field_name=name,
                available_fields=self.field_names(),
            )
        return metadata

    def list_derived_metrics(self) -> List[DerivedMetricSpec]:
        return list(self._derived.values())

    def get_derived(self, name: str) -> Optional[DerivedMetricSpec]:
        return self._derived.get(name)

    def is_bucketable(self, name: str) -> bool:
        metadata = self._fields.get(name)
        return bool(metadata and metadata.type == FieldType.NUMERIC and metadata.can_bucket)

    def buckets_for(self, name: str) -> List[Bucket]:
        metadata = self._fields.get(name)
        return list(metadata.buckets) if metadata else []

    def display_name(self, name: str) -> str:
        """Human label for a field or derived metric; title-cases unknown names."""
        derived = self._derived.get(name)
        if derived:
            return derived.display_name
        metadata = self._fields.get(name)
        if metadata:
            return metadata.display_name
        return " ".join(part.capitalize() for part in name.replace("_", " ").split())


DEFAULT_FIELDS: List[FieldMetadata] = [
    FieldMetadata(
        name="retail",
        type=FieldType.NUMERIC,
        unit="USD",
        display_name="Cost",
        description="Shipment cost/retail price",
        can_aggregate=True,
        can_bucket=True,
        buckets=_buckets(
            ("$0-$500", 0, 500),
            ("$500-$1,000", 500, 1000),
            ("$1,000-$2,500", 1000, 2500),
            ("$2,500-$5,000", 2500, 5000),
            ("$5,000+", 5000, None),
        ),
    ),
    FieldMetadata(
        name="miles",
        type=FieldType.NUMERIC,
        unit="miles",
        display_name="Miles",
        description="Shipment distance",
        can_aggregate=True,
        can_bucket=True,
        buckets=_buckets(
            ("0-250 mi", 0, 250),
            ("250-500 mi", 250, 500),
            ("500-1,000 mi", 500, 1000),
            ("1,000-1,500 mi", 1000, 1500),
            ("1,500+ mi", 1500, None),
        ),
    ),
    FieldMetadata(
        name="total_weight",
        type=FieldType.NUMERIC,
        unit="lbs",
        display_name="Weight",
        description="Total shipment weight",
        can_aggregate=True,
        can_bucket=True,
        buckets=_buckets(
            ("0-500 lbs", 0, 500),
            ("500-1,000 lbs", 500, 1000),
            ("1,000-2,500 lbs", 1000, 2500),
            ("2,500-5,000 lbs", 2500, 5000),
            ("5,000+ lbs", 5000, None),
        ),
    ),
    FieldMetadata(name="carrier_name", type=FieldType.CATEGORICAL, display_name="Carrier",
                  description="Shipping carrier name", can_group_by=True),
    FieldMetadata(name="origin_state", type=FieldType.CATEGORICAL, display_name="Origin State",
                  description="Shipment origin state", can_group_by=True),
    FieldMetadata(name="destination_state", type=FieldType.CATEGORICAL, display_name="Destination State",
                  description="Shipment destination state", can_group_by=True),
    FieldMetadata(name="mode_name", type=FieldType.CATEGORICAL, display_name="Mode",
                  description="Shipping mode (LTL, FTL, etc.)", can_group_by=True),
    FieldMetadata(name="equipment_name", type=FieldType.CATEGORICAL, display_name="Equipment",
                  description="Equipment type", can_group_by=True),
    FieldMetadata(name="status_name", type=FieldType.CATEGORICAL, display_name="Status",
                  description="Shipment status", can_group_by=True),
    FieldMetadata(name="origin_city", type=FieldType.CATEGORICAL, display_name="Origin City", can_group_by=True),
    FieldMetadata(name="destination_city", type=FieldType.CATEGORICAL, display_name="Destination City",
                  can_group_by=True),
    FieldMetadata(name="created_date", type=FieldType.DATE, display_name="Created Date", can_group_by=True),
    FieldMetadata(name="pickup_date", type=FieldType.DATE, display_name="Pickup Date", can_group_by=True),
    FieldMetadata(name="delivery_date", type=FieldType.DATE, display_name="Delivery Date", can_group_by=True),
    FieldMetadata(name="is_late", type=FieldType.BOOLEAN, display_name="Late Status", can_group_by=True),
    FieldMetadata(name="is_completed", type=FieldType.BOOLEAN, display_name="Completed", can_group_by=True),
    FieldMetadata(name="has_hazmat", type=FieldType.BOOLEAN, display_name="Hazmat", can_group_by=True),
]

DEFAULT_DERIVED_METRICS: List[DerivedMetricSpec] = [
    DerivedMetricSpec(
        name="cost_per_mile",
        display_name="Cost per Mile",
        formula="retail / miles",
        numerator="retail",
        denominator="miles",
        unit="$/mile",
    ),
    DerivedMetricSpec(
        name="cost_per_pound",
        display_name="Cost per Pound",
        formula="retail / total_weight",
        numerator="retail",
        denominator="total_weight",
        unit="$/lb",
    ),
    DerivedMetricSpec(
        name="avg_cost",
        display_name="Average Cost",
        formula="avg(retail)",
        numerator="retail",
        unit="USD",
    ),
]


schema_registry = SchemaRegistry()
