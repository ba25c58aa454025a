"""API routes for the tenant shipment store."""
import asyncio

from fastapi import APIRouter, Depends

from freightlens.core.logging import logger
from freightlens.core.tenancy import TenantContext, get_tenant_context
from freightlens.models.shipments import SyntheticSeedRequest, SyntheticSeedResponse
from freightlens.services.shipment_store import shipment_store

router = APIRouter(prefix="/shipments", tags=["shipments"])


@router.post("/seed/synthetic", response_model=SyntheticSeedResponse)
async def seed_synthetic(
    request: SyntheticSeedRequest,
    context: TenantContext = Depends(get_tenant_context),
) -> SyntheticSeedResponse:
    """Replace the tenant's shipments with a deterministic synthetic set."""
    result = await asyncio.to_thread(
        shipment_store.seed_synthetic,
        context.tenant_id,
        seed=request.seed,
        shipments=request.shipments,
        days_back=request.days_back,
    )
    logger.info("Synthetic seed requested", tenant_id=context.tenant_id, shipments=request.shipments)
    return SyntheticSeedResponse(**result)


@router.get("/count")
async def shipment_count(context: TenantContext = Depends(get_tenant_context)) -> dict:
    return {"tenant_id": context.tenant_id, "shipments": shipment_store.count(context.tenant_id)}
