"""FastAPI application with lifespan management."""

import asyncio
from collections.abc import AsyncGenerator, Callable, Iterable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import UTC, datetime

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from schema_tenancy import __version__
from schema_tenancy.api.middleware import RequestLoggingMiddleware
from schema_tenancy.api.routes.settings import router as settings_router
from schema_tenancy.api.routes.tenant import router as tenant_router
from schema_tenancy.config import Settings, get_settings
from schema_tenancy.errors import (
    ResourceUnavailableError,
    ScopeStateError,
    TenantMisconfiguredError,
    TenantNotFoundError,
    TenantRequiredError,
)
from schema_tenancy.logging_config import configure_logging
from schema_tenancy.storage.database import (
    create_engine_from_settings,
    create_session_factory,
)
from schema_tenancy.storage.orm import TENANT_SCOPED_ENTITIES, TenantScopedBase
from schema_tenancy.storage.repositories import TenantEntityRegistry
from schema_tenancy.tenancy.directory import TenantDirectory
from schema_tenancy.tenancy.registry import TenantRegistry
from schema_tenancy.tenancy.scope import ScopeManager

logger = structlog.get_logger()

HEALTH_CHECK_TIMEOUT = 5.0
RETRY_AFTER_SECONDS = 1


def _lifespan(
    settings: Settings, entities: Iterable[type[TenantScopedBase]]
) -> Callable[[FastAPI], AbstractAsyncContextManager[None]]:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        """Manage application startup and shutdown.

        Startup:
            - Create the shared engine (one pool for all tenants).
            - Build registry, directory, entity registry and scope manager.
            - Verify the registry was bootstrapped (fails startup otherwise).
        Shutdown:
            - Dispose database engine (close connection pool).
        """
        configure_logging(
            environment=str(settings.environment),
            log_level=settings.log_level,
        )
        engine = create_engine_from_settings(settings)
        registry = TenantRegistry(
            create_session_factory(engine), shared_schema=settings.shared_schema
        )
        app.state.settings = settings
        app.state.engine = engine
        app.state.tenant_directory = TenantDirectory(
            registry, ttl_seconds=settings.tenant_cache_ttl_seconds
        )
        app.state.entity_registry = TenantEntityRegistry(entities)
        app.state.scope_manager = ScopeManager(
            engine, shared_schema=settings.shared_schema
        )

        try:
            await registry.verify_bootstrap(settings.default_tenant_slug)
        except BaseException:
            await engine.dispose()
            raise

        logger.info("app_started", environment=str(settings.environment))
        yield

        await engine.dispose()
        logger.info("app_stopped")

    return lifespan


async def tenant_not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, TenantNotFoundError)
    logger.info("tenant_not_found", slug=exc.slug, path=request.url.path)
    return JSONResponse(
        status_code=404,
        content={"detail": "Tenant not found", "tenant": exc.slug},
    )


async def tenant_required_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.info("tenant_required", path=request.url.path)
    return JSONResponse(status_code=400, content={"detail": "Tenant is required"})


async def resource_unavailable_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    assert isinstance(exc, ResourceUnavailableError)
    logger.warning(
        "resource_unavailable", slug=exc.slug, reason=exc.reason, path=request.url.path
    )
    return JSONResponse(
        status_code=503,
        content={"detail": "Service temporarily unavailable"},
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )


async def tenant_misconfigured_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    assert isinstance(exc, TenantMisconfiguredError)
    logger.error(
        "tenant_misconfigured_request",
        **exc.context(),
        reason=exc.reason,
        path=request.url.path,
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


async def scope_state_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, ScopeStateError)
    logger.error(
        "scope_state_violation",
        exc_info=exc,
        slug=exc.slug,
        error=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Catch-all handler for unhandled exceptions."""
    logger.error("unhandled_exception", exc_info=exc, path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


async def health(request: Request) -> JSONResponse:
    """Deep health check: verifies DB connectivity and reports pool usage."""
    checks: dict[str, str] = {}
    overall = "ok"

    try:
        async with request.app.state.engine.connect() as conn:
            await asyncio.wait_for(
                conn.execute(text("SELECT 1")),
                timeout=HEALTH_CHECK_TIMEOUT,
            )
        checks["db"] = "ok"
    except (TimeoutError, SQLAlchemyError) as e:
        logger.warning("health_check_db_error", error=type(e).__name__)
        checks["db"] = f"error: {type(e).__name__}"
        overall = "degraded"

    pool = request.app.state.scope_manager.pool_status()
    status_code = 200 if overall == "ok" else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": overall,
            "checks": checks,
            "pool": {
                "size": pool.size,
                "checked_out": pool.checked_out,
                "overflow": pool.overflow,
            },
            "timestamp": datetime.now(UTC).isoformat(timespec="seconds"),
        },
    )


def create_app(
    settings: Settings | None = None,
    entities: Iterable[type[TenantScopedBase]] = TENANT_SCOPED_ENTITIES,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Application settings; defaults to ``get_settings()``.
        entities: Tenant-scoped entity kinds exposed through repositories.
    """
    settings = settings or get_settings()
    app = FastAPI(
        title="Schema Tenancy",
        description="Schema-per-tenant data-access core",
        version=__version__,
        lifespan=_lifespan(settings, tuple(entities)),
        debug=settings.is_dev,
    )
    app.state.settings = settings

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allowed_methods,
        allow_headers=settings.cors_allowed_headers,
    )

    app.add_exception_handler(TenantNotFoundError, tenant_not_found_handler)
    app.add_exception_handler(TenantRequiredError, tenant_required_handler)
    app.add_exception_handler(ResourceUnavailableError, resource_unavailable_handler)
    app.add_exception_handler(TenantMisconfiguredError, tenant_misconfigured_handler)
    app.add_exception_handler(ScopeStateError, scope_state_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_api_route("/health", health, methods=["GET"])
    app.include_router(tenant_router, prefix="/api/v1")
    app.include_router(settings_router, prefix="/api/v1")
    return app


app = create_app()
