"""Tenant resolution from inbound request metadata.

Pure and total: no I/O, never raises. Precedence, first match wins:

1. Explicit tenant header (trimmed, lowercased).
2. ``tenantSlug`` claim of the bearer token, decoded WITHOUT signature
   verification. Routing only; verifying identity is the auth layer's job.
3. First DNS label of the Host header, unless it is ``www`` or ``api``.
4. The default slug.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from enum import StrEnum

from jose import jwt
from jose.exceptions import JOSEError

DEFAULT_TENANT_SLUG = "default"
TOKEN_CLAIM = "tenantSlug"
IGNORED_SUBDOMAINS: frozenset[str] = frozenset({"www", "api"})


class ResolutionSource(StrEnum):
    HEADER = "header"
    TOKEN = "token"
    HOST = "host"
    DEFAULT = "default"


@dataclass(frozen=True)
class TenantResolution:
    slug: str
    source: ResolutionSource

    @property
    def is_fallback(self) -> bool:
        return self.source == ResolutionSource.DEFAULT


def _normalize(value: str | None) -> str | None:
    if not value:
        return None
    normalized = value.strip().lower()
    return normalized or None


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token of an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def slug_from_token(bearer_token: str | None) -> str | None:
    """Read the tenant claim from an unverified JWT; None on any failure."""
    if not bearer_token:
        return None
    try:
        claims = jwt.get_unverified_claims(bearer_token)
    except (JOSEError, ValueError, TypeError):
        return None
    if not isinstance(claims, dict):
        return None
    claim = claims.get(TOKEN_CLAIM)
    if not isinstance(claim, str):
        return None
    return _normalize(claim)


def _strip_port(host: str) -> str:
    if host.startswith("["):
        # [::1]:8000
        return host[1:].partition("]")[0]
    if host.count(":") == 1:
        return host.partition(":")[0]
    return host


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def slug_from_host(host_header: str | None) -> str | None:
    """First label of the Host header if it names a tenant subdomain."""
    host = _normalize(host_header)
    if host is None:
        return None
    host = _strip_port(host)
    if _is_ip_literal(host):
        return None
    labels = host.split(".")
    if len(labels) < 2:
        return None
    subdomain = labels[0]
    if not subdomain or subdomain in IGNORED_SUBDOMAINS:
        return None
    return subdomain


def resolve_tenant(
    explicit_header: str | None = None,
    bearer_token: str | None = None,
    host_header: str | None = None,
    *,
    default_slug: str = DEFAULT_TENANT_SLUG,
) -> TenantResolution:
    """Resolve the tenant slug for a request and report which signal won."""
    slug = _normalize(explicit_header)
    if slug is not None:
        return TenantResolution(slug, ResolutionSource.HEADER)

    slug = slug_from_token(bearer_token)
    if slug is not None:
        return TenantResolution(slug, ResolutionSource.TOKEN)

    slug = slug_from_host(host_header)
    if slug is not None:
        return TenantResolution(slug, ResolutionSource.HOST)

    return TenantResolution(default_slug, ResolutionSource.DEFAULT)


def resolve_tenant_slug(
    explicit_header: str | None = None,
    bearer_token: str | None = None,
    host_header: str | None = None,
    *,
    default_slug: str = DEFAULT_TENANT_SLUG,
) -> str:
    """Slug-only form of :func:`resolve_tenant`."""
    return resolve_tenant(
        explicit_header, bearer_token, host_header, default_slug=default_slug
    ).slug
