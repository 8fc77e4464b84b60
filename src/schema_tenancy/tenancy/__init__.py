"""Tenant resolution, lookup and request-scoped connection binding."""

from schema_tenancy.tenancy.directory import TenantDirectory
from schema_tenancy.tenancy.models import TenantInfo, TenantOption
from schema_tenancy.tenancy.registry import TenantRegistry
from schema_tenancy.tenancy.resolver import (
    ResolutionSource,
    TenantResolution,
    resolve_tenant,
    resolve_tenant_slug,
)
from schema_tenancy.tenancy.scope import RequestScope, ScopeManager, ScopeState

__all__ = [
    "RequestScope",
    "ResolutionSource",
    "ScopeManager",
    "ScopeState",
    "TenantDirectory",
    "TenantInfo",
    "TenantOption",
    "TenantRegistry",
    "TenantResolution",
    "resolve_tenant",
    "resolve_tenant_slug",
]
