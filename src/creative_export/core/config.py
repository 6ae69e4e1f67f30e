"""Configuration management for the creative export pipeline.

Provides Pydantic-based configuration classes for type-safe, validated configuration
management using environment variables.
"""

import os

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DispatchConfig(BaseSettings):
    """Outbound HTTP dispatch defaults."""

    timeout_ms: int = Field(default=30000, description="Per-attempt request timeout in milliseconds")
    user_agent: str = Field(default="CreativeExport/0.4 (+integrations)", description="User-Agent header")
    default_max_attempts: int = Field(default=3, description="Attempts used when an integration has no retry policy")
    default_initial_interval_ms: int = Field(default=1000, description="First retry delay in milliseconds")
    default_max_interval_ms: int = Field(default=30000, description="Upper bound for retry delays in milliseconds")
    default_backoff_multiplier: float = Field(default=2.0, description="Geometric backoff multiplier")

    model_config = SettingsConfigDict(env_prefix="DISPATCH_", case_sensitive=False)

    @field_validator("timeout_ms", "default_max_attempts")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v


class CacheConfig(BaseSettings):
    """Time-to-live settings for process-wide caches."""

    integration_ttl_seconds: float = Field(default=60.0, description="Integration config cache TTL")
    oauth_expiry_skew_seconds: float = Field(default=5.0, description="Refresh OAuth tokens this long before expiry")

    model_config = SettingsConfigDict(env_prefix="CACHE_", case_sensitive=False)


class CompassConfig(BaseSettings):
    """Compass AdLog endpoints. Legacy ADLOG_* variables are accepted as fallbacks."""

    export_endpoint: str = Field(
        default="", validation_alias=AliasChoices("COMPASS_EXPORT_ENDPOINT", "ADLOG_EXPORT_ENDPOINT")
    )
    export_endpoint_staging: str = Field(
        default="",
        validation_alias=AliasChoices("COMPASS_EXPORT_ENDPOINT_STAGING", "ADLOG_EXPORT_ENDPOINT_STAGING"),
    )
    export_endpoint_prod: str = Field(
        default="", validation_alias=AliasChoices("COMPASS_EXPORT_ENDPOINT_PROD", "ADLOG_EXPORT_ENDPOINT_PROD")
    )

    model_config = SettingsConfigDict(case_sensitive=False)


class ExportWorkerConfig(BaseSettings):
    """Shared secret guarding the export job trigger endpoint."""

    secret: str = Field(default="", validation_alias=AliasChoices("EXPORT_WORKER_SECRET", "RUN_EXPORT_JOB_SECRET"))

    model_config = SettingsConfigDict(case_sensitive=False)

    @field_validator("secret")
    @classmethod
    def strip_secret(cls, v):
        return (v or "").strip()


class SecretsConfig(BaseSettings):
    """Secret resolution settings."""

    env_prefix: str = Field(default="INTEGRATION_SECRET_", description="Prefix of secret environment variables")
    project: str = Field(
        default="projects/your-gcp-project",
        validation_alias=AliasChoices("GCP_SECRET_MANAGER_PROJECT", "SECRETS_PROJECT"),
    )
    encryption_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("ENCRYPTION_KEY", "SECRETS_ENCRYPTION_KEY"),
        description="Fernet key used to decrypt encrypted secret values",
    )

    model_config = SettingsConfigDict(env_prefix="SECRETS_", case_sensitive=False)


class DatabaseConfig(BaseSettings):
    """Database configuration for the SQL document store."""

    url: str | None = Field(default=None, description="SQLAlchemy database URL")

    model_config = SettingsConfigDict(env_prefix="DATABASE_", case_sensitive=False)


class AppConfig(BaseSettings):
    """Main application configuration."""

    environment: str = Field(default="development", description="Environment: production, staging, or development")
    debug: bool = Field(default=False, description="Enable debug mode")

    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    compass: CompassConfig = Field(default_factory=CompassConfig)
    export_worker: ExportWorkerConfig = Field(default_factory=ExportWorkerConfig)
    secrets: SecretsConfig = Field(default_factory=SecretsConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)


# Global configuration instance
_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next call re-reads the environment."""
    global _config
    _config = None


def is_production() -> bool:
    """Check if running in production environment.

    Returns:
        bool: True if ENVIRONMENT=production, False otherwise
    """
    return os.getenv("ENVIRONMENT", "development").lower() == "production"
