"""Tenant resolution for routes that do not carry a customer id in the body."""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import Header, HTTPException, status

from freightlens.core.config import get_settings


@dataclass
class TenantContext:
    tenant_id: str


def get_tenant_context(
    x_tenant_id: str | None = Header(default=None, alias="X-Tenant-ID"),
) -> TenantContext:
    """Use the X-Tenant-ID header, falling back to the configured default tenant."""
    settings = get_settings()
    tenant_id = (x_tenant_id or settings.default_tenant_id or "").strip()
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header required",
        )
    return TenantContext(tenant_id=tenant_id)
