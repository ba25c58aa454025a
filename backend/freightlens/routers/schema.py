"""API routes exposing the schema registry."""
from typing import List, Optional

from fastapi import APIRouter, HTTPException

from freightlens.models.schema import DerivedMetricSpec, FieldMetadata, FieldType, UnknownField
from freightlens.services.schema_registry import schema_registry

router = APIRouter(prefix="/schema", tags=["schema"])


@router.get("/fields", response_model=List[FieldMetadata])
async def list_fields(category: Optional[FieldType] = None) -> List[FieldMetadata]:
    """List queryable fields, optionally filtered by type."""
    return schema_registry.list_fields(category)


@router.get("/fields/{field_name}", response_model=FieldMetadata)
async def describe_field(field_name: str) -> FieldMetadata:
    described = schema_registry.describe_field(field_name)
    if isinstance(described, UnknownField):
        raise HTTPException(status_code=404, detail=described.model_dump())
    return described


@router.get("/derived-metrics", response_model=List[DerivedMetricSpec])
async def list_derived_metrics() -> List[DerivedMetricSpec]:
    return schema_registry.list_derived_metrics()
