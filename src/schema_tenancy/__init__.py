"""Schema-per-tenant data-access core."""

__version__ = "0.1.0"
