"""Tenant context API endpoints.

These read the resolved tenant only; none of them acquires a connection
from the pool.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from schema_tenancy.api.deps import DirectoryDep, TenantDep
from schema_tenancy.api.schemas import TenantContextResponse, TenantOptionResponse
from schema_tenancy.tenancy.models import thaw

router = APIRouter(tags=["tenant"])


@router.get("/tenants")
async def list_tenants(directory: DirectoryDep) -> list[TenantOptionResponse]:
    """Tenant selection list, ordered by name."""
    options = await directory.list_active()
    return [TenantOptionResponse.model_validate(option) for option in options]


@router.get("/tenant/context")
async def get_tenant_context(tenant: TenantDep) -> TenantContextResponse:
    """Context of the tenant the request resolved to."""
    return TenantContextResponse.from_tenant(tenant)


@router.get("/tenant/features")
async def get_tenant_features(tenant: TenantDep) -> dict[str, Any]:
    """Feature flags of the resolved tenant (empty if none configured)."""
    return dict(thaw(tenant.features))
