"""Models for shipment seeding routes."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class SyntheticSeedRequest(BaseModel):
    """Generate deterministic synthetic shipments for demos and tests."""

    seed: int = 42
    shipments: int = Field(default=500, ge=1, le=20000)
    days_back: int = Field(default=180, ge=1, le=1095)


class SyntheticSeedResponse(BaseModel):
    tenant_id: str
    shipments_created: int
    earliest: Optional[str] = None
    latest: Optional[str] = None
