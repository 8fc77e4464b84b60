"""SQLAlchemy ORM models.

Two metadata collections:

* ``Base``: shared tables living in the public schema (the tenant registry).
  Always schema-qualified so they resolve the same way on any connection.
* ``TenantScopedBase``: tables that exist once per tenant schema. They carry
  no schema of their own and resolve through the connection's search path,
  which the request scope points at exactly one tenant.
"""

import uuid
from datetime import datetime
from typing import Any

import uuid_utils as uuid7_lib
from sqlalchemy import DateTime, String, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

REGISTRY_SCHEMA = "public"


def _uuid7() -> uuid.UUID:
    """Generate a UUIDv7 (time-ordered) for use as default PK value."""
    return uuid.UUID(bytes=uuid7_lib.uuid7().bytes)


class Base(DeclarativeBase):
    """Base class for shared (public schema) ORM models."""


class TenantScopedBase(DeclarativeBase):
    """Base class for ORM models stored inside each tenant schema."""


# ──────────────────────────────────────────────
# Shared: tenant registry
# ──────────────────────────────────────────────


class TenantRecord(Base):
    __tablename__ = "tenants"
    __table_args__ = {"schema": REGISTRY_SCHEMA}

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    slug: Mapped[str] = mapped_column(String(63), unique=True)
    schema_name: Mapped[str] = mapped_column(String(63), unique=True)
    name: Mapped[str] = mapped_column(String(200))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    settings: Mapped[dict[str, Any] | None] = mapped_column(JSONB)


# ──────────────────────────────────────────────
# Tenant-scoped
# ──────────────────────────────────────────────


class SystemSetting(TenantScopedBase):
    """Tenant-owned key/value configuration stored in the tenant schema."""

    __tablename__ = "system_settings"
    # RETURNING server-side timestamps so they are readable after commit.
    __mapper_args__ = {"eager_defaults": True}

    key: Mapped[str] = mapped_column(String(200), primary_key=True)
    value: Mapped[Any] = mapped_column(JSONB)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# Registration list for the scoped repository factory. Business modules
# add their TenantScopedBase models to this tuple.
TENANT_SCOPED_ENTITIES: tuple[type[TenantScopedBase], ...] = (SystemSetting,)
