"""create_tenant_registry

Creates the shared tenant registry, the first tenant schema and its
registry row. The default tenant must exist before the application starts.

Revision ID: 3f9a1c2b7d10
Revises:
Create Date: 2026-02-17 10:12:41.203318

"""

import uuid
from typing import Sequence, Union

import sqlalchemy as sa
import uuid_utils as uuid7_lib
from alembic import op
from sqlalchemy.dialects import postgresql

from schema_tenancy.storage.orm import TenantScopedBase

# revision identifiers, used by Alembic.
revision: str = "3f9a1c2b7d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

DEFAULT_SLUG = "default"
DEFAULT_SCHEMA = "tenant_default"


def _uuid7() -> uuid.UUID:
    """Generate a UUIDv7 for data migration."""
    return uuid.UUID(bytes=uuid7_lib.uuid7().bytes)


def upgrade() -> None:
    """Create public.tenants, schema tenant_default and the default tenant."""
    op.create_table(
        "tenants",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("slug", sa.String(length=63), nullable=False),
        sa.Column("schema_name", sa.String(length=63), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("settings", postgresql.JSONB(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
        sa.UniqueConstraint("schema_name"),
        schema="public",
    )

    op.execute(f"CREATE SCHEMA IF NOT EXISTS {DEFAULT_SCHEMA}")
    conn = op.get_bind()
    TenantScopedBase.metadata.create_all(
        conn.execution_options(schema_translate_map={None: DEFAULT_SCHEMA})
    )

    conn.execute(
        sa.text(
            "INSERT INTO public.tenants (id, slug, schema_name, name, settings) "
            "VALUES (:id, :slug, :schema_name, :name, CAST(:settings AS jsonb)) "
            "ON CONFLICT (slug) DO NOTHING"
        ),
        {
            "id": str(_uuid7()),
            "slug": DEFAULT_SLUG,
            "schema_name": DEFAULT_SCHEMA,
            "name": "Default",
            "settings": '{"features": {}}',
        },
    )


def downgrade() -> None:
    """Drop the default tenant schema and the registry."""
    op.execute(f"DROP SCHEMA IF EXISTS {DEFAULT_SCHEMA} CASCADE")
    op.drop_table("tenants", schema="public")
