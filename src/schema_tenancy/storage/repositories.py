"""Scoped repositories over a request scope's bound connection.

Repositories never pool, connect or switch schemas themselves: every call
goes through ``RequestScope.session`` and therefore fails loudly when the
scope is not (or no longer) bound.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any, Generic, TypeVar

from sqlalchemy import Executable, Result, func, select

from schema_tenancy.errors import UnknownEntityError
from schema_tenancy.storage.orm import TENANT_SCOPED_ENTITIES, TenantScopedBase
from schema_tenancy.tenancy.scope import RequestScope

ModelT = TypeVar("ModelT", bound=TenantScopedBase)


class TenantEntityRegistry:
    """Fixed list of tenant-scoped entity kinds, known at startup."""

    def __init__(
        self, entities: Iterable[type[TenantScopedBase]] = TENANT_SCOPED_ENTITIES
    ) -> None:
        self._entities: tuple[type[TenantScopedBase], ...] = tuple(entities)

    def __contains__(self, entity: object) -> bool:
        return entity in self._entities

    def __iter__(self) -> Iterator[type[TenantScopedBase]]:
        return iter(self._entities)

    def __len__(self) -> int:
        return len(self._entities)


class ScopedRepository(Generic[ModelT]):
    """CRUD operations for one entity kind inside one request scope."""

    def __init__(self, scope: RequestScope, model: type[ModelT]) -> None:
        self._scope = scope
        self._model = model

    @property
    def model(self) -> type[ModelT]:
        return self._model

    async def get(self, pk: Any) -> ModelT | None:
        """Get entity by primary key, None if absent."""
        return await self._scope.session.get(self._model, pk)

    async def list_all(self, *, limit: int = 50, offset: int = 0) -> list[ModelT]:
        """List entities in primary-key order.

        Args:
            limit: Maximum number of results.
            offset: Number of results to skip.
        """
        pk_columns = list(self._model.__mapper__.primary_key)
        stmt = select(self._model).order_by(*pk_columns).limit(limit).offset(offset)
        result = await self._scope.session.execute(stmt)
        return list(result.scalars().all())

    async def count(self) -> int:
        stmt = select(func.count()).select_from(self._model)
        result = await self._scope.session.execute(stmt)
        return int(result.scalar_one())

    async def add(self, entity: ModelT) -> ModelT:
        """Stage ``entity`` and flush it to the tenant schema."""
        session = self._scope.session
        session.add(entity)
        await session.flush()
        return entity

    async def delete(self, entity: ModelT) -> None:
        session = self._scope.session
        await session.delete(entity)
        await session.flush()

    async def execute(self, stmt: Executable) -> Result[Any]:
        """Run a custom statement on the scope's connection."""
        return await self._scope.session.execute(stmt)

    async def commit(self) -> None:
        await self._scope.session.commit()


class RepositoryFactory:
    """Hands out repositories bound to a single request scope.

    Handles are cached per factory, so one request gets one repository
    instance per entity kind.
    """

    def __init__(self, scope: RequestScope, entities: TenantEntityRegistry) -> None:
        self._scope = scope
        self._entities = entities
        self._repositories: dict[type[TenantScopedBase], ScopedRepository[Any]] = {}

    @property
    def scope(self) -> RequestScope:
        return self._scope

    def get(self, model: type[ModelT]) -> ScopedRepository[ModelT]:
        """Repository for ``model`` over the scope's bound connection.

        Raises:
            ScopeNotReadyError: scope has not reached BOUND.
            ScopeClosedError: scope was released.
            UnknownEntityError: ``model`` is not tenant-scoped.
        """
        self._scope.ensure_bound()
        if model not in self._entities:
            raise UnknownEntityError(model)
        repository = self._repositories.get(model)
        if repository is None:
            repository = ScopedRepository(self._scope, model)
            self._repositories[model] = repository
        return repository
