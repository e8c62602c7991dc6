# opportunity_api/config.py
"""
Centralized configuration with validation.

Uses pydantic-settings to load and validate all environment variables at startup.
Fail fast with clear error messages if required config is missing.

Cleanup and access *policies* are not settings: they live in the database and
are read through the PolicyStore. This module only covers process-level knobs.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = Field(
        ...,
        description="PostgreSQL connection URL",
    )

    # Authentication
    ADMIN_API_KEY: str | None = Field(
        default=None,
        description="API key for admin endpoints (admin routes fail closed when unset)",
    )

    # Application
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment: development, staging, production",
    )
    CORS_ORIGINS: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins",
    )

    # Logging
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Root log level: DEBUG, INFO, WARNING, ERROR",
    )
    LOG_JSON: bool = Field(
        default=True,
        description="Emit single-line JSON logs (disable for local development)",
    )

    # Policy store
    POLICY_CACHE_TTL_SECONDS: int = Field(
        default=30,
        ge=0,
        le=300,
        description="How long a loaded policy document may be served from memory. 0 disables caching.",
    )

    # Lifecycle execution
    CLEANUP_BATCH_SIZE: int = Field(
        default=500,
        ge=1,
        le=10000,
        description="Max opportunities deleted per statement during a cleanup run",
    )
    CLEANUP_TIMEOUT_SECONDS: float = Field(
        default=120.0,
        gt=0,
        description="Time budget for one cleanup run before it stops between batches",
    )
    BULK_DELETE_TIMEOUT_SECONDS: float = Field(
        default=60.0,
        gt=0,
        description="Time budget for one bulk-delete execution before it stops between steps",
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def fix_database_url(cls, v: str) -> str:
        """Railway provides postgresql:// but SQLAlchemy needs postgresql+psycopg2://"""
        if v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+psycopg2://", 1)
        return v

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings. Call at startup to validate config."""
    return Settings()
