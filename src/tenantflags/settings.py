from __future__ import annotations

"""Centralized configuration using pydantic-settings.

All configuration is loaded from environment variables and .env files.
This is the single source of truth for feature flag service configuration.
"""

from enum import Enum

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment. The set is closed."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentOverrides(BaseModel):
    """Overridable parts of one environment's compiled configuration."""

    namespace: str | None = Field(None, description="Isolated namespace identifier")
    region: str | None = Field(None, description="Region")
    endpoint: str | None = Field(None, description="Endpoint for local emulation")
    max_cache_ttl: float | None = Field(None, gt=0, description="Cache TTL ceiling in seconds")
    cache_enabled: bool | None = Field(None, description="Enable evaluation cache")


class EnvironmentsSettings(BaseModel):
    """Overrides keyed by environment name.

    Example: ENVIRONMENTS__PRODUCTION__NAMESPACE=flags-prod-eu
    """

    development: EnvironmentOverrides = EnvironmentOverrides()  # type: ignore[call-arg]
    staging: EnvironmentOverrides = EnvironmentOverrides()  # type: ignore[call-arg]
    production: EnvironmentOverrides = EnvironmentOverrides()  # type: ignore[call-arg]

    def for_environment(self, environment: Environment) -> EnvironmentOverrides:
        """Overrides for one environment."""
        return getattr(self, environment.value)


class Settings(BaseSettings):
    """Main service settings.

    All settings can be overridden via environment variables.
    For nested settings, use double underscore: CACHE__DEFAULT_TTL=120
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    # ============================================================
    # Core Settings
    # ============================================================

    app_name: str = Field("tenant-flags", description="Application name")
    app_version: str = Field("1.0.0", description="Application version")
    environment: Environment = Field(
        Environment.PRODUCTION, description="Environment evaluated by this process"
    )
    region: str | None = Field(None, description="Default region for every environment")

    # ============================================================
    # Evaluation Cache
    # ============================================================

    class CacheSettings(BaseModel):
        """In-process evaluation cache configuration."""

        default_ttl: float = Field(300.0, gt=0, description="Default TTL in seconds")
        shards: int = Field(16, ge=1, le=1024, description="Number of lock shards")
        max_entries_per_shard: int = Field(10_000, gt=0, description="Max entries per shard")
        sweep_interval: float = Field(
            60.0, gt=0, description="Seconds between background sweeps of expired entries"
        )

    cache: CacheSettings = CacheSettings()  # type: ignore[call-arg]

    # ============================================================
    # Flag Store
    # ============================================================

    class StoreSettings(BaseModel):
        """Flag store selection and limits."""

        backend: str = Field(
            "memory",
            pattern="^(memory|redis|sql)$",
            description="Store backend: memory, redis, or sql",
        )
        timeout: float = Field(2.0, gt=0, description="Timeout for every store call in seconds")
        batch_size: int = Field(50, ge=1, le=50, description="Keys per batch read")

    store: StoreSettings = StoreSettings()  # type: ignore[call-arg]

    # ============================================================
    # Redis Configuration
    # ============================================================

    class RedisSettings(BaseModel):
        """Redis configuration."""

        url: str | None = Field(None, description="Full Redis URL")
        host: str = Field("localhost", description="Redis host")
        port: int = Field(6379, description="Redis port")
        password: str = Field("", description="Redis password")
        db: int = Field(0, description="Redis database number")
        key_prefix: str = Field("ff:", description="Prefix for every flag store key")
        max_connections: int = Field(50, description="Max connections in pool")

        @property
        def redis_url(self) -> str:
            """Build Redis URL."""
            if self.url:
                return str(self.url)
            if self.password:
                return f"redis://:{self.password}@{self.host}:{self.port}/{self.db}"
            return f"redis://{self.host}:{self.port}/{self.db}"

    redis: RedisSettings = RedisSettings()  # type: ignore[call-arg]

    # ============================================================
    # Database Configuration
    # ============================================================

    class DatabaseSettings(BaseModel):
        """Database configuration for the SQL flag store."""

        url: str = Field(
            "sqlite+aiosqlite:///./tenant_flags.sqlite", description="Async SQLAlchemy URL"
        )
        echo: bool = Field(False, description="Echo SQL statements")
        pool_pre_ping: bool = Field(True, description="Test connections before use")

    database: DatabaseSettings = DatabaseSettings()  # type: ignore[call-arg]

    # ============================================================
    # Observability
    # ============================================================

    class ObservabilitySettings(BaseModel):
        """Logging configuration."""

        log_level: LogLevel = Field(LogLevel.INFO, description="Log level")
        log_format: str = Field("json", description="Log format (json or console)")

    observability: ObservabilitySettings = ObservabilitySettings()  # type: ignore[call-arg]

    # ============================================================
    # Per-environment Overrides
    # ============================================================

    environments: EnvironmentsSettings = EnvironmentsSettings()  # type: ignore[call-arg]

    # ============================================================
    # Validation & Helpers
    # ============================================================

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: object) -> object:
        """Normalize case; unknown names fail at startup."""
        if isinstance(v, str):
            return Environment(v.strip().lower())
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == Environment.DEVELOPMENT


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get global settings instance (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore
    return _settings


def reset_settings() -> None:
    """Reset settings (mainly for testing)."""
    global _settings
    _settings = None


# Convenience export
settings = get_settings()
