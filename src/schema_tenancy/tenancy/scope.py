"""Request scopes: one pooled connection bound to one tenant schema.

Lifecycle of a :class:`RequestScope`::

    UNBOUND ──acquire()──▶ ACQUIRING ──search path set──▶ BOUND
       │                      │                             │
       └──────────────────────┴────────release()────────────┴──▶ RELEASED

RELEASED is terminal. Release runs exactly once whatever the exit path:
normal return, an exception at any stage, or cancellation of the request
task (client disconnect). Before the connection goes back to the pool its
search path is reset; if that fails the connection is invalidated instead,
so a pooled connection never carries another tenant's schema binding.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import StrEnum

import anyio
import structlog
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession

from schema_tenancy.errors import (
    InvalidIdentifierError,
    ResourceUnavailableError,
    ScopeClosedError,
    ScopeNotReadyError,
    ScopeStateError,
    TenantMisconfiguredError,
)
from schema_tenancy.storage.database import is_disconnect
from schema_tenancy.storage.orm import REGISTRY_SCHEMA
from schema_tenancy.tenancy.models import TenantInfo, build_search_path

logger = structlog.get_logger()

SessionFactory = Callable[[AsyncConnection], AsyncSession]

SCHEMA_EXISTS_SQL = text("SELECT 1 FROM pg_namespace WHERE nspname = :schema")
# set_config takes the search path as a bound parameter; the value itself is
# built only from validated, quoted identifiers.
SET_SEARCH_PATH_SQL = text("SELECT set_config('search_path', :search_path, false)")
RESET_SEARCH_PATH_SQL = text("RESET search_path")


class ScopeState(StrEnum):
    UNBOUND = "unbound"
    ACQUIRING = "acquiring"
    BOUND = "bound"
    RELEASED = "released"


def _default_session_factory(connection: AsyncConnection) -> AsyncSession:
    return AsyncSession(bind=connection, expire_on_commit=False, autoflush=False)


class RequestScope:
    """Exclusive ownership of one pooled connection for one request.

    Never shared between requests and never reused after release. Business
    code reaches the bound connection only through :attr:`session`, usually
    via the scoped repository factory.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        tenant: TenantInfo,
        *,
        shared_schema: str = REGISTRY_SCHEMA,
        session_factory: SessionFactory = _default_session_factory,
    ) -> None:
        self._engine = engine
        self._tenant = tenant
        self._shared_schema = shared_schema
        self._session_factory = session_factory
        self._state = ScopeState.UNBOUND
        self._connection: AsyncConnection | None = None
        self._session: AsyncSession | None = None
        self._bound_at: float | None = None
        self._release_task: asyncio.Future[None] | None = None

    @property
    def tenant(self) -> TenantInfo:
        return self._tenant

    @property
    def state(self) -> ScopeState:
        return self._state

    @property
    def session(self) -> AsyncSession:
        """Session bound to this scope's connection.

        Raises:
            ScopeNotReadyError: scope has not reached BOUND.
            ScopeClosedError: scope was released.
        """
        self.ensure_bound()
        assert self._session is not None
        return self._session

    def ensure_bound(self) -> None:
        """Raise unless the scope is in the BOUND window."""
        if self._state == ScopeState.BOUND:
            return
        if self._state == ScopeState.RELEASED:
            raise ScopeClosedError(
                f"Request scope for tenant {self._tenant.slug} is already released",
                slug=self._tenant.slug,
            )
        raise ScopeNotReadyError(
            f"Request scope for tenant {self._tenant.slug} is not bound "
            f"(state: {self._state})",
            slug=self._tenant.slug,
        )

    async def acquire(self) -> None:
        """Check out a connection and bind it to the tenant schema.

        Raises:
            ScopeStateError: scope was already used.
            ResourceUnavailableError: no connection within the pool timeout, or
                the connection dropped while binding.
            TenantMisconfiguredError: tenant schema cannot be activated.
        """
        if self._state != ScopeState.UNBOUND:
            raise ScopeStateError(
                f"Request scope cannot be acquired twice (state: {self._state})",
                slug=self._tenant.slug,
            )
        slug = self._tenant.slug
        schema_name = self._tenant.schema_name
        self._state = ScopeState.ACQUIRING

        try:
            search_path = build_search_path(schema_name, self._shared_schema)
        except InvalidIdentifierError as e:
            self._state = ScopeState.RELEASED
            error = TenantMisconfiguredError(slug, schema_name, str(e))
            logger.error("tenant_misconfigured", **error.context(), reason=str(e))
            raise error from e

        started = time.perf_counter()
        connection = self._engine.connect()
        try:
            await connection.start()
        except (PoolTimeoutError, DBAPIError) as e:
            self._state = ScopeState.RELEASED
            logger.warning(
                "scope_acquire_failed",
                slug=slug,
                error=type(e).__name__,
                wait_ms=int((time.perf_counter() - started) * 1000),
            )
            raise ResourceUnavailableError(slug, type(e).__name__) from e
        except BaseException:
            # Cancelled (or failed) mid-checkout: return whatever was checked out.
            self._state = ScopeState.RELEASED
            if connection.sync_connection is not None:
                with anyio.CancelScope(shield=True):
                    await connection.close()
            raise

        self._connection = connection
        self._bound_at = time.perf_counter()
        wait_ms = int((self._bound_at - started) * 1000)

        try:
            await self._bind(connection, search_path)
            self._session = self._session_factory(connection)
        except TenantMisconfiguredError as e:
            logger.error("tenant_misconfigured", **e.context(), reason=e.reason)
            await self.release(outcome="misconfigured")
            raise
        except ResourceUnavailableError as e:
            logger.warning("scope_bind_failed", slug=slug, error=e.reason)
            await self.release(outcome="disconnected")
            raise
        except BaseException:
            await self.release(outcome="bind_failed")
            raise

        self._state = ScopeState.BOUND
        logger.debug("scope_bound", slug=slug, wait_ms=wait_ms)

    async def _bind(self, connection: AsyncConnection, search_path: str) -> None:
        slug = self._tenant.slug
        schema_name = self._tenant.schema_name
        try:
            result = await connection.execute(
                SCHEMA_EXISTS_SQL, {"schema": schema_name}
            )
            if result.scalar_one_or_none() is None:
                raise TenantMisconfiguredError(slug, schema_name, "schema does not exist")
            await connection.execute(SET_SEARCH_PATH_SQL, {"search_path": search_path})
            # End the implicit transaction so the session starts its own.
            await connection.commit()
        except SQLAlchemyError as e:
            if is_disconnect(e):
                raise ResourceUnavailableError(slug, type(e).__name__) from e
            raise TenantMisconfiguredError(
                slug, schema_name, f"schema switch failed: {type(e).__name__}"
            ) from e

    async def release(self, outcome: str = "ok") -> None:
        """Return the connection to the pool. Idempotent.

        The release work runs in its own task and is shielded, so cancelling
        the caller cannot interrupt it halfway.
        """
        if self._release_task is None:
            previous = self._state
            self._state = ScopeState.RELEASED
            if self._connection is None:
                if previous != ScopeState.RELEASED:
                    logger.debug("scope_released", slug=self._tenant.slug, held_ms=0)
                return
            self._release_task = asyncio.ensure_future(self._release(outcome))

        with anyio.CancelScope(shield=True):
            await asyncio.shield(self._release_task)

    async def _release(self, outcome: str) -> None:
        connection = self._connection
        session = self._session
        self._connection = None
        self._session = None
        assert connection is not None

        try:
            if session is not None:
                await session.close()
            await connection.rollback()
            await connection.execute(RESET_SEARCH_PATH_SQL)
            await connection.commit()
        except SQLAlchemyError as e:
            # Tainted or broken: retire it rather than pool it.
            logger.warning(
                "search_path_reset_failed",
                slug=self._tenant.slug,
                error=type(e).__name__,
            )
            await connection.invalidate()
        finally:
            await connection.close()

        held_ms = 0
        if self._bound_at is not None:
            held_ms = int((time.perf_counter() - self._bound_at) * 1000)
        logger.debug(
            "scope_released",
            slug=self._tenant.slug,
            held_ms=held_ms,
            outcome=outcome,
        )


@dataclass(frozen=True)
class PoolStatus:
    size: int
    checked_out: int
    overflow: int


class ScopeManager:
    """Creates request scopes over the shared engine.

    Example::

        async with manager.scope(tenant) as scope:
            repos = RepositoryFactory(scope, entities)
            await repos.get(SystemSetting).list_all()
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        shared_schema: str = REGISTRY_SCHEMA,
        session_factory: SessionFactory = _default_session_factory,
    ) -> None:
        self._engine = engine
        self._shared_schema = shared_schema
        self._session_factory = session_factory

    def create_scope(self, tenant: TenantInfo) -> RequestScope:
        """New UNBOUND scope; the caller owns acquire() and release()."""
        return RequestScope(
            self._engine,
            tenant,
            shared_schema=self._shared_schema,
            session_factory=self._session_factory,
        )

    @asynccontextmanager
    async def scope(self, tenant: TenantInfo) -> AsyncIterator[RequestScope]:
        """Acquire a bound scope for ``tenant`` and release it on exit.

        Raises:
            ResourceUnavailableError: pool exhausted within the timeout.
            TenantMisconfiguredError: tenant schema cannot be activated.
        """
        request_scope = self.create_scope(tenant)
        structlog.contextvars.bind_contextvars(tenant=tenant.slug)
        outcome = "ok"
        try:
            await request_scope.acquire()
            yield request_scope
        except asyncio.CancelledError:
            outcome = "cancelled"
            raise
        except BaseException:
            outcome = "error"
            raise
        finally:
            await request_scope.release(outcome=outcome)
            structlog.contextvars.unbind_contextvars("tenant")

    def pool_status(self) -> PoolStatus:
        pool = self._engine.pool
        return PoolStatus(
            size=pool.size(),  # type: ignore[attr-defined]
            checked_out=pool.checkedout(),  # type: ignore[attr-defined]
            overflow=pool.overflow(),  # type: ignore[attr-defined]
        )
