"""End-to-end isolation checks against a live PostgreSQL instance.

Uses a one-connection pool so every scope reuses the same physical
connection, which is exactly where leaked schema bindings would surface.
"""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from schema_tenancy.errors import (
    ResourceUnavailableError,
    TenantMisconfiguredError,
    TenantNotFoundError,
)
from schema_tenancy.storage.orm import SystemSetting
from schema_tenancy.storage.repositories import RepositoryFactory, TenantEntityRegistry
from schema_tenancy.tenancy.directory import TenantDirectory
from schema_tenancy.tenancy.models import TenantInfo
from schema_tenancy.tenancy.registry import TenantRegistry
from schema_tenancy.tenancy.scope import ScopeManager

pytestmark = pytest.mark.requires_db

TenantPair = tuple[TenantInfo, TenantInfo]


@pytest.fixture()
def manager(async_engine: AsyncEngine) -> ScopeManager:
    return ScopeManager(async_engine)


@pytest.fixture()
def entities() -> TenantEntityRegistry:
    return TenantEntityRegistry()


async def _current_schema(manager: ScopeManager, tenant: TenantInfo) -> str:
    async with manager.scope(tenant) as scope:
        result = await scope.session.execute(text("SELECT current_schema()"))
        return str(result.scalar_one())


class TestIsolation:
    async def test_writes_are_invisible_to_other_tenants(
        self,
        manager: ScopeManager,
        entities: TenantEntityRegistry,
        tenant_pair: TenantPair,
    ) -> None:
        first, second = tenant_pair

        async with manager.scope(first) as scope:
            repo = RepositoryFactory(scope, entities).get(SystemSetting)
            await repo.add(SystemSetting(key="theme", value="dark"))
            await repo.commit()

        async with manager.scope(second) as scope:
            repo = RepositoryFactory(scope, entities).get(SystemSetting)
            assert await repo.get("theme") is None
            assert await repo.count() == 0

        async with manager.scope(first) as scope:
            repo = RepositoryFactory(scope, entities).get(SystemSetting)
            setting = await repo.get("theme")
            assert setting is not None
            assert setting.value == "dark"

    async def test_reused_connection_reflects_only_new_tenant(
        self, manager: ScopeManager, tenant_pair: TenantPair
    ) -> None:
        first, second = tenant_pair
        for _ in range(3):
            assert await _current_schema(manager, first) == first.schema_name
            assert await _current_schema(manager, second) == second.schema_name

    async def test_released_connection_has_default_search_path(
        self, async_engine: AsyncEngine, manager: ScopeManager, tenant_pair: TenantPair
    ) -> None:
        first, _ = tenant_pair
        async with manager.scope(first):
            pass

        async with async_engine.connect() as conn:
            path = (await conn.execute(text("SHOW search_path"))).scalar_one()
        assert first.schema_name not in path

    async def test_uncommitted_work_is_rolled_back(
        self,
        manager: ScopeManager,
        entities: TenantEntityRegistry,
        tenant_pair: TenantPair,
    ) -> None:
        first, _ = tenant_pair
        with pytest.raises(RuntimeError):
            async with manager.scope(first) as scope:
                repo = RepositoryFactory(scope, entities).get(SystemSetting)
                await repo.add(SystemSetting(key="draft", value=1))
                raise RuntimeError("handler failed")

        async with manager.scope(first) as scope:
            repo = RepositoryFactory(scope, entities).get(SystemSetting)
            assert await repo.get("draft") is None


class TestFailures:
    async def test_missing_schema(
        self, async_engine: AsyncEngine, manager: ScopeManager, tenant_pair: TenantPair
    ) -> None:
        first, _ = tenant_pair
        broken = TenantInfo(
            id=first.id,
            slug=first.slug,
            schema_name="tenant_does_not_exist",
            name=first.name,
        )
        with pytest.raises(TenantMisconfiguredError):
            async with manager.scope(broken):
                pytest.fail("body must not run")
        assert async_engine.pool.checkedout() == 0  # type: ignore[attr-defined]

    async def test_pool_exhaustion(
        self, async_engine: AsyncEngine, manager: ScopeManager, tenant_pair: TenantPair
    ) -> None:
        first, second = tenant_pair
        async with manager.scope(first):
            with pytest.raises(ResourceUnavailableError):
                async with manager.scope(second):
                    pytest.fail("body must not run")
        assert async_engine.pool.checkedout() == 0  # type: ignore[attr-defined]

    async def test_cancellation_returns_connection(
        self, async_engine: AsyncEngine, manager: ScopeManager, tenant_pair: TenantPair
    ) -> None:
        first, second = tenant_pair
        bound = asyncio.Event()

        async def handler() -> None:
            async with manager.scope(first):
                bound.set()
                await asyncio.sleep(60)

        task = asyncio.create_task(handler())
        await bound.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert async_engine.pool.checkedout() == 0  # type: ignore[attr-defined]
        assert await _current_schema(manager, second) == second.schema_name


class TestRegistry:
    async def test_find_and_list(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tenant_pair: TenantPair,
    ) -> None:
        first, second = tenant_pair
        directory = TenantDirectory(TenantRegistry(session_factory))

        info = await directory.find_by_slug(first.slug)
        assert info.schema_name == first.schema_name

        slugs = [option.slug for option in await directory.list_active()]
        assert first.slug in slugs
        assert second.slug in slugs

        with pytest.raises(TenantNotFoundError):
            await directory.find_by_slug("it-nonexistent")
