"""Tenant registry: read access to the shared ``tenants`` table."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from schema_tenancy.errors import (
    DefaultTenantMissingError,
    InvalidIdentifierError,
    ResourceUnavailableError,
    TenantMisconfiguredError,
    TenantNotFoundError,
    TenantRegistryEmptyError,
)
from schema_tenancy.storage.database import is_connection_unavailable
from schema_tenancy.storage.orm import REGISTRY_SCHEMA, TenantRecord
from schema_tenancy.tenancy.models import TenantInfo, TenantOption, validate_schema_name

logger = structlog.get_logger()


def to_tenant_info(record: TenantRecord) -> TenantInfo:
    """Project a registry row to a TenantInfo value.

    Raises:
        TenantMisconfiguredError: stored schema name is not a safe identifier.
    """
    try:
        validate_schema_name(record.schema_name)
    except InvalidIdentifierError as e:
        raise TenantMisconfiguredError(
            record.slug, record.schema_name, "schema name is not a valid identifier"
        ) from e
    return TenantInfo(
        id=record.id,
        slug=record.slug,
        schema_name=record.schema_name,
        name=record.name,
        settings=record.settings or {},
    )


class TenantRegistry:
    """Read-only access to the tenant registry.

    Every call opens its own short-lived session on the shared pool, so the
    registry is safe for any number of concurrent callers. Writes to the
    registry happen out of band (admin CLI, migrations).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        shared_schema: str = REGISTRY_SCHEMA,
    ) -> None:
        self._session_factory = session_factory
        self._execution_options: dict[str, Any] = {}
        if shared_schema != REGISTRY_SCHEMA:
            self._execution_options["schema_translate_map"] = {
                REGISTRY_SCHEMA: validate_schema_name(shared_schema)
            }

    @asynccontextmanager
    async def _session(self, slug: str | None = None) -> AsyncIterator[AsyncSession]:
        # Registry reads share the request pool, so overload surfaces here too.
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            if not is_connection_unavailable(e):
                raise
            logger.warning("registry_unavailable", slug=slug, error=type(e).__name__)
            raise ResourceUnavailableError(slug, type(e).__name__) from e

    async def find_by_slug(self, slug: str) -> TenantInfo:
        """Look up a tenant by slug.

        Raises:
            TenantNotFoundError: no registry row for ``slug``.
            TenantMisconfiguredError: row has an unusable schema name.
            ResourceUnavailableError: no pooled connection for the lookup.
        """
        stmt = select(TenantRecord).where(TenantRecord.slug == slug)
        async with self._session(slug) as session:
            result = await session.execute(
                stmt, execution_options=self._execution_options
            )
            record = result.scalar_one_or_none()

        if record is None:
            raise TenantNotFoundError(slug)
        return to_tenant_info(record)

    async def list_active(self) -> list[TenantOption]:
        """All tenants for the selection UI, ordered by name."""
        stmt = select(TenantRecord.slug, TenantRecord.name).order_by(
            TenantRecord.name, TenantRecord.slug
        )
        async with self._session() as session:
            result = await session.execute(
                stmt, execution_options=self._execution_options
            )
            rows = result.all()
        return [TenantOption(slug=row.slug, name=row.name) for row in rows]

    async def count(self) -> int:
        stmt = select(func.count()).select_from(TenantRecord)
        async with self._session() as session:
            result = await session.execute(
                stmt, execution_options=self._execution_options
            )
            return int(result.scalar_one())

    async def verify_bootstrap(self, default_slug: str) -> None:
        """Fail at startup if the registry was never bootstrapped.

        Raises:
            TenantRegistryEmptyError: no tenant records at all.
            DefaultTenantMissingError: no record for ``default_slug``.
        """
        total = await self.count()
        if total == 0:
            raise TenantRegistryEmptyError()
        try:
            default = await self.find_by_slug(default_slug)
        except TenantNotFoundError as e:
            raise DefaultTenantMissingError(default_slug) from e
        logger.info(
            "tenant_registry_verified",
            tenant_count=total,
            default_slug=default.slug,
        )
