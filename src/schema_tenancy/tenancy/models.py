"""Value objects shared by the tenancy components."""

from __future__ import annotations

import re
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from schema_tenancy.errors import InvalidIdentifierError

# Unquoted PostgreSQL identifier, lowercase only, max 63 bytes.
SCHEMA_NAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")
SLUG_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
RESERVED_SCHEMAS: frozenset[str] = frozenset({"public", "information_schema"})

_EMPTY: Mapping[str, Any] = MappingProxyType({})


def validate_schema_name(schema_name: str) -> str:
    """Return ``schema_name`` unchanged if it is safe to interpolate into SQL.

    Raises:
        InvalidIdentifierError: name does not match SCHEMA_NAME_PATTERN.
    """
    if not SCHEMA_NAME_PATTERN.fullmatch(schema_name):
        raise InvalidIdentifierError(
            f"Invalid schema name: {schema_name!r}", schema_name=schema_name
        )
    return schema_name


def validate_tenant_schema(schema_name: str, shared_schema: str) -> str:
    """Like :func:`validate_schema_name`, but also refuse non-tenant namespaces.

    A tenant may not live in the shared schema, ``public``, or a PostgreSQL
    system schema (``information_schema``, ``pg_*``).

    Raises:
        InvalidIdentifierError: name is malformed or reserved.
    """
    validate_schema_name(schema_name)
    reserved = RESERVED_SCHEMAS | {shared_schema}
    if schema_name in reserved or schema_name.startswith("pg_"):
        raise InvalidIdentifierError(
            f"Reserved schema name: {schema_name!r}", schema_name=schema_name
        )
    return schema_name


def validate_slug(slug: str) -> str:
    """Return ``slug`` unchanged if it is a well-formed tenant slug.

    Raises:
        InvalidIdentifierError: slug does not match SLUG_PATTERN.
    """
    if not SLUG_PATTERN.fullmatch(slug):
        raise InvalidIdentifierError(f"Invalid tenant slug: {slug!r}", slug=slug)
    return slug


def build_search_path(schema_name: str, shared_schema: str) -> str:
    """Search path value scoping a connection to one tenant plus the shared schema."""
    tenant = validate_schema_name(schema_name)
    shared = validate_schema_name(shared_schema)
    return f'"{tenant}", "{shared}"'


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Plain (JSON-serializable) copy of a value frozen by TenantInfo."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class TenantInfo:
    """Resolved, read-only view of a tenant registry row.

    A value, not a resource: constructed fresh on every registry read and
    safe to share between concurrent requests. ``schema_name`` is internal
    to the core and must never be exposed to clients.
    """

    id: uuid.UUID
    slug: str
    schema_name: str
    name: str
    settings: Mapping[str, Any] = field(default=_EMPTY)

    def __post_init__(self) -> None:
        object.__setattr__(self, "settings", _freeze(self.settings or {}))

    @property
    def features(self) -> Mapping[str, bool]:
        """Feature flags stored under ``settings["features"]``."""
        features = self.settings.get("features")
        if isinstance(features, Mapping):
            return features
        return _EMPTY


@dataclass(frozen=True)
class TenantOption:
    """Entry of the tenant selection list."""

    slug: str
    name: str
