"""Shared fixtures for integration tests requiring live PostgreSQL."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator

import pytest
from sqlalchemy import delete, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from schema_tenancy.config import get_settings
from schema_tenancy.storage.orm import Base, TenantRecord, TenantScopedBase
from schema_tenancy.tenancy.models import TenantInfo

# ── Engine (small pool so reuse and exhaustion are observable) ─────


@pytest.fixture()
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """Engine with a single pooled connection and a short checkout timeout."""
    engine = create_async_engine(
        get_settings().database_url,
        pool_size=1,
        max_overflow=0,
        pool_timeout=0.5,
    )
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(
    async_engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ── Provisioned tenants (real schemas + registry rows) ─────────────


async def _provision(engine: AsyncEngine, slug: str) -> TenantInfo:
    schema_name = f"tenant_{slug.replace('-', '_')}"
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text(f'CREATE SCHEMA "{schema_name}"'))
        scoped = await conn.execution_options(
            schema_translate_map={None: schema_name}
        )
        await scoped.run_sync(TenantScopedBase.metadata.create_all)
        record_id = uuid.uuid4()
        await conn.execute(
            TenantRecord.__table__.insert().values(
                id=record_id,
                slug=slug,
                schema_name=schema_name,
                name=slug.title(),
                settings={"features": {}},
            )
        )
    return TenantInfo(
        id=record_id, slug=slug, schema_name=schema_name, name=slug.title()
    )


async def _deprovision(engine: AsyncEngine, tenant: TenantInfo) -> None:
    async with engine.begin() as conn:
        await conn.execute(
            delete(TenantRecord).where(TenantRecord.slug == tenant.slug)
        )
        await conn.execute(
            text(f'DROP SCHEMA IF EXISTS "{tenant.schema_name}" CASCADE')
        )


@pytest.fixture()
async def tenant_pair(
    async_engine: AsyncEngine,
) -> AsyncGenerator[tuple[TenantInfo, TenantInfo]]:
    """Two freshly provisioned tenants, removed after the test."""
    suffix = uuid.uuid4().hex[:8]
    first = await _provision(async_engine, f"it-a-{suffix}")
    second = await _provision(async_engine, f"it-b-{suffix}")

    yield first, second

    await _deprovision(async_engine, first)
    await _deprovision(async_engine, second)
