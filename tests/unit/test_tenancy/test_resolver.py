"""Tests for tenant slug resolution from request metadata."""

import pytest
from jose import jwt

from schema_tenancy.tenancy.resolver import (
    ResolutionSource,
    TenantResolution,
    extract_bearer_token,
    resolve_tenant,
    resolve_tenant_slug,
    slug_from_host,
    slug_from_token,
)


def _token(claims: dict[str, object]) -> str:
    # Signature is irrelevant: resolution never verifies it.
    return jwt.encode(claims, "not-the-real-key", algorithm="HS256")


class TestPrecedence:
    """Header > token claim > subdomain > default."""

    def test_header_wins_over_token_and_host(self) -> None:
        result = resolve_tenant(
            "acme", _token({"tenantSlug": "other"}), "zzz.example.com"
        )
        assert result == TenantResolution("acme", ResolutionSource.HEADER)

    def test_token_wins_over_host(self) -> None:
        result = resolve_tenant(None, _token({"tenantSlug": "acme"}), "zzz.example.com")
        assert result == TenantResolution("acme", ResolutionSource.TOKEN)

    def test_undecodable_token_falls_through_to_host(self) -> None:
        result = resolve_tenant(None, "not-a-jwt", "acme.example.com")
        assert result == TenantResolution("acme", ResolutionSource.HOST)

    def test_nothing_yields_default(self) -> None:
        result = resolve_tenant()
        assert result == TenantResolution("default", ResolutionSource.DEFAULT)
        assert result.is_fallback is True

    def test_custom_default_slug(self) -> None:
        assert resolve_tenant_slug(default_slug="main") == "main"

    def test_blank_header_is_ignored(self) -> None:
        result = resolve_tenant("   ", None, "acme.example.com")
        assert result.source == ResolutionSource.HOST

    def test_token_without_claim_falls_through(self) -> None:
        result = resolve_tenant(None, _token({"sub": "user-1"}), "acme.example.com")
        assert result.slug == "acme"

    def test_resolve_tenant_slug_returns_plain_slug(self) -> None:
        assert resolve_tenant_slug("ACME") == "acme"


class TestHeader:
    def test_trimmed_and_lowercased(self) -> None:
        assert resolve_tenant("  AcMe  ").slug == "acme"

    def test_not_fallback(self) -> None:
        assert resolve_tenant("acme").is_fallback is False


class TestToken:
    def test_claim_is_normalized(self) -> None:
        assert slug_from_token(_token({"tenantSlug": " ACME "})) == "acme"

    @pytest.mark.parametrize(
        "token",
        [
            None,
            "",
            "garbage",
            "a.b.c",
            "eyJhbGciOiJIUzI1NiJ9.bm90LWpzb24.c2ln",
        ],
    )
    def test_malformed_tokens_yield_none(self, token: str | None) -> None:
        assert slug_from_token(token) is None

    def test_non_string_claim_ignored(self) -> None:
        assert slug_from_token(_token({"tenantSlug": 42})) is None

    def test_empty_claim_ignored(self) -> None:
        assert slug_from_token(_token({"tenantSlug": "  "})) is None


class TestBearerExtraction:
    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            ("bearer abc", "abc"),
            ("  Bearer   abc  ", "abc"),
            ("Basic dXNlcjpwYXNz", None),
            ("Bearer", None),
            ("", None),
            (None, None),
        ],
    )
    def test_extract(self, header: str | None, expected: str | None) -> None:
        assert extract_bearer_token(header) == expected


class TestHost:
    @pytest.mark.parametrize(
        ("host", "expected"),
        [
            ("acme.example.com", "acme"),
            ("ACME.Example.com", "acme"),
            ("acme.example.com:8443", "acme"),
            ("www.example.com", None),
            ("api.example.com", None),
            ("localhost", None),
            ("localhost:8000", None),
            ("127.0.0.1", None),
            ("127.0.0.1:8000", None),
            ("[::1]:8000", None),
            ("", None),
            (None, None),
        ],
    )
    def test_slug_from_host(self, host: str | None, expected: str | None) -> None:
        assert slug_from_host(host) == expected
