"""CLI for tenant registry management.

Usage::

    uv run python -m scripts.manage_tenant <command> [options]

Commands:
    create-tenant       Register a tenant and create its schema
    list-tenants        List all tenants
    show-tenant         Show one tenant's registry record
    update-settings     Replace a tenant's settings document

There is deliberately no delete command: slugs are never reused.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Callable

from sqlalchemy import create_engine, or_, select, text
from sqlalchemy.orm import Session

from schema_tenancy.config import get_settings
from schema_tenancy.errors import InvalidIdentifierError
from schema_tenancy.storage.orm import TenantRecord, TenantScopedBase
from schema_tenancy.tenancy.models import validate_slug, validate_tenant_schema


def get_sync_session() -> Session:
    """Create sync session for CLI operations.

    Uses the same database URL as the async app (psycopg v3
    handles both sync and async natively).
    """
    engine = create_engine(get_settings().database_url)
    return Session(engine)


def default_schema_name(slug: str) -> str:
    """Schema name derived from a slug: ``acme-east`` → ``tenant_acme_east``."""
    return "tenant_" + slug.replace("-", "_")


def _find_tenant(session: Session, slug: str) -> TenantRecord | None:
    return session.execute(
        select(TenantRecord).where(TenantRecord.slug == slug)
    ).scalar_one_or_none()


def create_tenant(args: argparse.Namespace) -> None:
    """Register a tenant, create its schema and tenant-scoped tables."""
    slug = args.slug.strip().lower()
    schema_name = args.schema or default_schema_name(slug)
    try:
        validate_slug(slug)
        validate_tenant_schema(schema_name, get_settings().shared_schema)
    except InvalidIdentifierError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    with get_sync_session() as session:
        existing = session.execute(
            select(TenantRecord).where(
                or_(
                    TenantRecord.slug == slug,
                    TenantRecord.schema_name == schema_name,
                )
            )
        ).scalars().first()
        if existing is not None:
            print(
                f"Tenant already exists: {existing.slug} ({existing.schema_name})",
                file=sys.stderr,
            )
            sys.exit(1)

        # schema_name is validated against the identifier pattern above.
        session.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{schema_name}"'))
        connection = session.connection().execution_options(
            schema_translate_map={None: schema_name}
        )
        TenantScopedBase.metadata.create_all(connection)

        tenant = TenantRecord(
            slug=slug,
            schema_name=schema_name,
            name=args.name,
            settings={"features": {}},
        )
        session.add(tenant)
        session.commit()
        print(f"Tenant created: {slug} (schema: {schema_name}, id: {tenant.id})")


def list_tenants(_args: argparse.Namespace) -> None:
    """List all tenants ordered by name."""
    with get_sync_session() as session:
        rows = (
            session.execute(
                select(TenantRecord).order_by(TenantRecord.name, TenantRecord.slug)
            )
            .scalars()
            .all()
        )

        if not rows:
            print("No tenants found.")
            return

        print("Tenants:")
        for i, row in enumerate(rows, 1):
            print(f"  {i}. {row.slug} [{row.name}] schema={row.schema_name}")


def show_tenant(args: argparse.Namespace) -> None:
    """Print one tenant's registry record as JSON."""
    with get_sync_session() as session:
        tenant = _find_tenant(session, args.slug)
        if tenant is None:
            print(f"Tenant not found: {args.slug}", file=sys.stderr)
            sys.exit(1)

        print(
            json.dumps(
                {
                    "id": str(tenant.id),
                    "slug": tenant.slug,
                    "schema_name": tenant.schema_name,
                    "name": tenant.name,
                    "created_at": (
                        tenant.created_at.isoformat() if tenant.created_at else None
                    ),
                    "settings": tenant.settings,
                },
                indent=2,
            )
        )


def update_settings(args: argparse.Namespace) -> None:
    """Replace a tenant's settings document."""
    try:
        settings = json.loads(args.settings)
    except json.JSONDecodeError as e:
        print(f"Invalid settings JSON: {e}", file=sys.stderr)
        sys.exit(1)
    if not isinstance(settings, dict):
        print("Settings must be a JSON object", file=sys.stderr)
        sys.exit(1)

    with get_sync_session() as session:
        tenant = _find_tenant(session, args.slug)
        if tenant is None:
            print(f"Tenant not found: {args.slug}", file=sys.stderr)
            sys.exit(1)

        tenant.settings = settings
        session.commit()
        print(f"Settings updated: {args.slug}")


def main() -> None:
    """Parse arguments and dispatch to command handler."""
    parser = argparse.ArgumentParser(description="Tenant registry CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    # create-tenant
    p = sub.add_parser("create-tenant", help="Register a tenant and its schema")
    p.add_argument("--slug", required=True, help="Routing slug (lowercase)")
    p.add_argument("--name", required=True, help="Display name")
    p.add_argument("--schema", default=None, help="Schema name (default: tenant_<slug>)")

    # list-tenants
    sub.add_parser("list-tenants", help="List all tenants")

    # show-tenant
    p = sub.add_parser("show-tenant", help="Show a tenant's registry record")
    p.add_argument("--slug", required=True, help="Tenant slug")

    # update-settings
    p = sub.add_parser("update-settings", help="Replace a tenant's settings")
    p.add_argument("--slug", required=True, help="Tenant slug")
    p.add_argument("--settings", required=True, help="Settings as a JSON object")

    args = parser.parse_args()
    commands: dict[str, Callable[[argparse.Namespace], None]] = {
        "create-tenant": create_tenant,
        "list-tenants": list_tenants,
        "show-tenant": show_tenant,
        "update-settings": update_settings,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
