"""FastAPI dependency injection.

The request scope is threaded explicitly: ``get_request_scope`` yields a
bound :class:`RequestScope` for the lifetime of the request and releases it
on every exit path, and ``get_repositories`` builds the scoped repository
factory on top of it. Handlers receive these through their signatures.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated, cast

import structlog
from fastapi import Depends, Request

from schema_tenancy.config import Settings
from schema_tenancy.errors import TenantRequiredError
from schema_tenancy.storage.repositories import RepositoryFactory, TenantEntityRegistry
from schema_tenancy.tenancy.directory import TenantDirectory
from schema_tenancy.tenancy.models import TenantInfo
from schema_tenancy.tenancy.resolver import extract_bearer_token, resolve_tenant
from schema_tenancy.tenancy.scope import RequestScope, ScopeManager

__all__ = [
    "get_app_settings",
    "get_entity_registry",
    "get_repositories",
    "get_request_scope",
    "get_scope_manager",
    "get_tenant",
    "get_tenant_directory",
]

logger = structlog.get_logger()


async def get_app_settings(request: Request) -> Settings:
    """Retrieve Settings from app state."""
    return cast(Settings, request.app.state.settings)


async def get_tenant_directory(request: Request) -> TenantDirectory:
    """Retrieve TenantDirectory from app state.

    Initialized during lifespan startup.
    """
    return cast(TenantDirectory, request.app.state.tenant_directory)


async def get_scope_manager(request: Request) -> ScopeManager:
    """Retrieve ScopeManager from app state.

    Initialized during lifespan startup.
    """
    return cast(ScopeManager, request.app.state.scope_manager)


async def get_entity_registry(request: Request) -> TenantEntityRegistry:
    """Retrieve the tenant-scoped entity registry from app state."""
    return cast(TenantEntityRegistry, request.app.state.entity_registry)


SettingsDep = Annotated[Settings, Depends(get_app_settings)]
DirectoryDep = Annotated[TenantDirectory, Depends(get_tenant_directory)]
ScopeManagerDep = Annotated[ScopeManager, Depends(get_scope_manager)]
EntitiesDep = Annotated[TenantEntityRegistry, Depends(get_entity_registry)]


async def get_tenant(
    request: Request,
    settings: SettingsDep,
    directory: DirectoryDep,
) -> TenantInfo:
    """Resolve the request's tenant and look it up in the directory.

    Raises:
        TenantRequiredError: no tenant signal and default fallback disabled.
        TenantNotFoundError: resolved slug is not registered.
    """
    resolution = resolve_tenant(
        request.headers.get(settings.tenant_header),
        extract_bearer_token(request.headers.get("authorization")),
        request.headers.get("host"),
        default_slug=settings.default_tenant_slug,
    )
    if resolution.is_fallback and not settings.allow_default_tenant_fallback:
        raise TenantRequiredError()

    request.state.tenant_slug = resolution.slug
    tenant = await directory.find_by_slug(resolution.slug)
    logger.debug("tenant_resolved", slug=tenant.slug, source=str(resolution.source))
    return tenant


TenantDep = Annotated[TenantInfo, Depends(get_tenant)]


async def get_request_scope(
    tenant: TenantDep,
    manager: ScopeManagerDep,
) -> AsyncIterator[RequestScope]:
    """Bound request scope, released when the request finishes."""
    async with manager.scope(tenant) as scope:
        yield scope


RequestScopeDep = Annotated[RequestScope, Depends(get_request_scope)]


async def get_repositories(
    scope: RequestScopeDep,
    entities: EntitiesDep,
) -> RepositoryFactory:
    """Scoped repository factory for the current request."""
    return RepositoryFactory(scope, entities)


RepositoriesDep = Annotated[RepositoryFactory, Depends(get_repositories)]
