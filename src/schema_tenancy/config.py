"""Centralized application configuration via environment variables."""

from enum import StrEnum
from functools import lru_cache

from pydantic import SecretStr, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    The database password uses SecretStr to prevent accidental logging.
    Database URL is assembled from individual components to match
    the official PostgreSQL Docker image environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- App ---
    environment: Environment = Environment.DEVELOPMENT
    log_level: str = "DEBUG"
    # --- CORS ---
    cors_allowed_origins: list[str] = []
    cors_allow_credentials: bool = False
    cors_allowed_methods: list[str] = ["GET", "POST", "PUT"]
    cors_allowed_headers: list[str] = ["Content-Type", "Authorization", "X-Tenant"]

    # --- PostgreSQL ---
    postgres_user: str = "schema_tenancy"
    postgres_password: SecretStr = SecretStr("secret")
    postgres_db: str = "schema_tenancy"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    # --- Connection pool ---
    # pool_timeout bounds how long a request waits for a free connection
    # before failing with ResourceUnavailableError.
    db_pool_size: int = 10
    db_max_overflow: int = 5
    db_pool_timeout: float = 10.0
    db_pool_recycle: int = 1800

    @computed_field  # type: ignore[prop-decorator]
    @property
    def database_url(self) -> str:
        """Assemble database URL from components.

        Uses psycopg v3 driver which supports both sync (create_engine)
        and async (create_async_engine) modes natively.
        """
        password = self.postgres_password.get_secret_value()
        return (
            f"postgresql+psycopg://{self.postgres_user}:{password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # --- Tenancy ---
    tenant_header: str = "X-Tenant"
    default_tenant_slug: str = "default"
    # When False, a request carrying no tenant signal at all is rejected
    # instead of being routed to the default tenant.
    allow_default_tenant_fallback: bool = True
    shared_schema: str = "public"
    # 0 disables the directory cache.
    tenant_cache_ttl_seconds: float = 30.0

    @field_validator("default_tenant_slug")
    @classmethod
    def _normalize_default_slug(cls, value: str) -> str:
        return value.strip().lower()

    # --- Convenience properties ---
    @property
    def is_dev(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton.

    Usage::

        from schema_tenancy.config import get_settings
        settings = get_settings()

    Or for dependency injection in FastAPI::

        @app.get("/")
        def root(settings: Settings = Depends(get_settings)):
            ...
    """
    return Settings()
