"""Tests for structured logging configuration and request middleware."""

import json
import logging
import re
from io import StringIO
from unittest.mock import patch

import pytest
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from httpx import ASGITransport, AsyncClient

from schema_tenancy.api.middleware import RequestLoggingMiddleware
from schema_tenancy.errors import ResourceUnavailableError, TenantMisconfiguredError
from schema_tenancy.logging_config import (
    _add_tenancy_error_context,
    _drop_schema_below_warning,
    configure_logging,
)


@pytest.fixture(autouse=True)
def _reset_structlog() -> None:
    """Reset structlog state after each test."""
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)


def _capture_log_output(
    environment: str, log_level: str = "DEBUG", level: str = "info", **event: object
) -> str:
    """Configure logging, emit a message, return captured output."""
    configure_logging(environment=environment, log_level=log_level)

    stream = StringIO()
    root = logging.getLogger()
    if not root.handlers or not isinstance(root.handlers[0], logging.StreamHandler):
        raise RuntimeError("Expected configure_logging to set up a StreamHandler")

    original_stream = root.handlers[0].stream
    root.handlers[0].stream = stream

    logger = structlog.get_logger()
    getattr(logger, level)("test_event", key="value", **event)

    root.handlers[0].stream = original_stream
    return stream.getvalue()


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_configure_production_json(self) -> None:
        """Production environment produces valid JSON output."""
        output = _capture_log_output("production")
        parsed = json.loads(output)
        assert parsed["event"] == "test_event"
        assert parsed["key"] == "value"
        assert parsed["level"] == "info"

    def test_configure_development_console(self) -> None:
        """Development environment produces human-readable console output."""
        output = _capture_log_output("development")
        plain = re.sub(r"\x1b\[[0-9;]*m", "", output)
        assert "test_event" in plain
        assert "key=value" in plain

    def test_configure_sets_log_level(self) -> None:
        """Root logger level is set to the specified value."""
        configure_logging(log_level="WARNING")
        assert logging.getLogger().level == logging.WARNING

    def test_configure_includes_timestamp(self) -> None:
        """Production JSON output contains ISO timestamp."""
        output = _capture_log_output("production")
        parsed = json.loads(output)
        assert "T" in parsed["timestamp"]

    def test_sensitive_keys_redacted(self) -> None:
        """Tokens and passwords never reach the log output."""
        output = _capture_log_output(
            "production", token="eyJhbGciOi.secret", password="hunter2"
        )
        parsed = json.loads(output)
        assert parsed["token"] == "***REDACTED***"
        assert parsed["password"] == "***REDACTED***"
        assert "hunter2" not in output

    def test_tenant_context_merged(self) -> None:
        """Tenant slug bound in contextvars appears on every event."""
        structlog.contextvars.bind_contextvars(tenant="acme")
        output = _capture_log_output("production")
        assert json.loads(output)["tenant"] == "acme"

    def test_schema_name_dropped_from_routine_events(self) -> None:
        output = _capture_log_output("production", schema_name="tenant_acme")
        parsed = json.loads(output)
        assert "schema_name" not in parsed
        assert "tenant_acme" not in output

    def test_schema_name_kept_on_warnings(self) -> None:
        output = _capture_log_output(
            "production", level="warning", schema_name="tenant_acme"
        )
        assert json.loads(output)["schema_name"] == "tenant_acme"


class TestTenancyProcessors:
    """Processors that shape tenancy fields on log events."""

    def test_error_context_copied_from_exc_info(self) -> None:
        error = TenantMisconfiguredError("acme", "tenant_acme", "schema does not exist")
        event = _add_tenancy_error_context(
            logging.getLogger(), "error", {"event": "failed", "exc_info": error}
        )
        assert event["slug"] == "acme"
        assert event["schema_name"] == "tenant_acme"

    def test_explicit_fields_win_and_none_is_skipped(self) -> None:
        error = ResourceUnavailableError(None, "TimeoutError")
        event = _add_tenancy_error_context(
            logging.getLogger(),
            "warning",
            {"event": "failed", "exc_info": error, "slug": "beta"},
        )
        assert event["slug"] == "beta"
        assert "schema_name" not in event

    def test_other_exceptions_untouched(self) -> None:
        event = _add_tenancy_error_context(
            logging.getLogger(), "error", {"event": "x", "exc_info": ValueError()}
        )
        assert set(event) == {"event", "exc_info"}

    @pytest.mark.parametrize(
        ("method_name", "kept"),
        [("debug", False), ("info", False), ("warning", True), ("error", True)],
    )
    def test_schema_keys_by_level(self, method_name: str, kept: bool) -> None:
        event = _drop_schema_below_warning(
            logging.getLogger(),
            method_name,
            {"event": "x", "schema_name": "tenant_a", "previous_schema": "tenant_b"},
        )
        assert ("schema_name" in event) is kept
        assert ("previous_schema" in event) is kept


class TestRequestLoggingMiddleware:
    """Tests for HTTP request logging middleware."""

    @pytest.fixture()
    def test_app(self) -> FastAPI:
        """Create a minimal FastAPI app with middleware for isolated testing."""
        app = FastAPI()
        app.add_middleware(RequestLoggingMiddleware)

        @app.get("/test-endpoint")
        async def _test_endpoint(request: Request) -> dict[str, str]:
            request.state.tenant_slug = "acme"
            return {"ok": "true"}

        @app.get("/no-tenant")
        async def _no_tenant() -> dict[str, str]:
            return {"ok": "true"}

        @app.get("/unavailable")
        async def _unavailable() -> JSONResponse:
            return JSONResponse(status_code=503, content={"detail": "busy"})

        @app.get("/health")
        async def _health() -> dict[str, str]:
            return {"status": "ok"}

        return app

    async def _get(self, app: FastAPI, path: str) -> None:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as client:
            await client.get(path)

    async def test_middleware_logs_request(self, test_app: FastAPI) -> None:
        """Middleware logs method, path, tenant, status_code, latency_ms."""
        with patch("schema_tenancy.api.middleware.logger") as mock_logger:
            await self._get(test_app, "/test-endpoint")

        mock_logger.info.assert_called_once()
        call_args = mock_logger.info.call_args
        assert call_args[0][0] == "http_request"
        assert call_args[1]["method"] == "GET"
        assert call_args[1]["path"] == "/test-endpoint"
        assert call_args[1]["tenant"] == "acme"
        assert call_args[1]["status_code"] == 200
        assert "latency_ms" in call_args[1]

    async def test_middleware_without_tenant(self, test_app: FastAPI) -> None:
        with patch("schema_tenancy.api.middleware.logger") as mock_logger:
            await self._get(test_app, "/no-tenant")

        assert mock_logger.info.call_args[1]["tenant"] is None

    async def test_middleware_skips_health(self, test_app: FastAPI) -> None:
        """Middleware does not log requests to /health."""
        with patch("schema_tenancy.api.middleware.logger") as mock_logger:
            await self._get(test_app, "/health")

        mock_logger.info.assert_not_called()

    async def test_server_errors_log_at_warning(self, test_app: FastAPI) -> None:
        with patch("schema_tenancy.api.middleware.logger") as mock_logger:
            await self._get(test_app, "/unavailable")

        mock_logger.info.assert_not_called()
        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args[1]["status_code"] == 503
