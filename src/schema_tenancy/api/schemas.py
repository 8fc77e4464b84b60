"""Request/response schemas for the API layer.

Tenant responses carry the slug as the only identifier clients route by;
the schema name is internal and never part of any response model.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from schema_tenancy.tenancy.models import TenantInfo, thaw

# --- Tenant ---


class TenantOptionResponse(BaseModel):
    """Entry of ``GET /tenants`` (tenant selection list)."""

    model_config = ConfigDict(from_attributes=True)

    slug: str
    name: str


class TenantContextResponse(BaseModel):
    """Response for ``GET /tenant/context``."""

    id: uuid.UUID
    slug: str
    name: str
    features: dict[str, Any] = Field(default_factory=dict)
    settings: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_tenant(cls, tenant: TenantInfo) -> TenantContextResponse:
        return cls(
            id=tenant.id,
            slug=tenant.slug,
            name=tenant.name,
            features=thaw(tenant.features),
            settings=thaw(tenant.settings),
        )


# --- System settings ---


class SystemSettingUpdateRequest(BaseModel):
    """Request body for ``PUT /tenant/settings/{key}``."""

    value: Any


class SystemSettingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    value: Any
    updated_at: datetime | None = None
