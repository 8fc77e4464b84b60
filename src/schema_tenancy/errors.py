"""Domain-specific exceptions for schema-tenancy.

Every error carries the slug and schema it was raised for (when known)
so operators can diagnose a failure from the log line alone.
"""

from __future__ import annotations


class TenancyError(Exception):
    """Base class for all errors raised by the tenancy core."""

    def __init__(
        self,
        message: str,
        *,
        slug: str | None = None,
        schema_name: str | None = None,
    ) -> None:
        self.slug = slug
        self.schema_name = schema_name
        super().__init__(message)

    def context(self) -> dict[str, str | None]:
        """Structured context for log events."""
        return {"slug": self.slug, "schema_name": self.schema_name}


class TenantNotFoundError(TenancyError):
    """Resolved slug has no registry entry. Client-addressable, not a fault."""

    def __init__(self, slug: str) -> None:
        super().__init__(f"Tenant not found: {slug}", slug=slug)


class TenantRequiredError(TenancyError):
    """No tenant signal was present and default fallback is disabled."""

    def __init__(self) -> None:
        super().__init__("Tenant could not be determined from the request")


class TenantMisconfiguredError(TenancyError):
    """Registry entry exists but its schema cannot be activated."""

    def __init__(self, slug: str, schema_name: str, reason: str) -> None:
        self.reason = reason
        super().__init__(
            f"Tenant {slug} is misconfigured (schema {schema_name}): {reason}",
            slug=slug,
            schema_name=schema_name,
        )


class ResourceUnavailableError(TenancyError):
    """No usable pooled connection within the acquisition timeout.

    Raised for request scopes and for registry reads alike (``slug`` is None
    when the read was not for one tenant). Retryable by the caller.
    """

    def __init__(self, slug: str | None, reason: str) -> None:
        self.reason = reason
        target = f" for tenant {slug}" if slug is not None else ""
        super().__init__(
            f"No database connection available{target}: {reason}",
            slug=slug,
        )


class ScopeStateError(TenancyError):
    """Repository access outside the bound window of a request scope.

    Indicates a defect in integration code; never retried.
    """


class ScopeNotReadyError(ScopeStateError):
    """Scope has not reached BOUND yet."""


class ScopeClosedError(ScopeStateError):
    """Scope was already RELEASED."""


class UnknownEntityError(TenancyError):
    """Model is not in the tenant-scoped entity registration list."""

    def __init__(self, entity: type) -> None:
        self.entity = entity
        super().__init__(f"{entity.__name__} is not a registered tenant-scoped entity")


class InvalidIdentifierError(TenancyError, ValueError):
    """Slug or schema name does not match the allowed identifier pattern."""


class TenantRegistryEmptyError(TenancyError):
    """The registry holds no tenant records at all (startup fault)."""

    def __init__(self) -> None:
        super().__init__("Tenant registry is empty; run migrations to bootstrap it")


class DefaultTenantMissingError(TenancyError):
    """The registry has no record for the configured default slug (startup fault)."""

    def __init__(self, slug: str) -> None:
        super().__init__(f"Default tenant record is missing: {slug}", slug=slug)
