"""Centralized configuration using pydantic-settings.

All configuration is loaded from environment variables and .env files.
This is the single source of truth for all service configuration.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "change-me"


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Main application settings.

    All settings can be overridden via environment variables.
    For nested settings, use double underscore: DISTRIBUTION__REFRESH_INTERVAL_SECONDS=30
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    # ============================================================
    # Core Application Settings
    # ============================================================

    app_name: str = Field("flagdeck", description="Application name")
    app_version: str = Field("1.0.0", description="Application version")
    environment: Environment = Field(Environment.DEVELOPMENT, description="Deployment environment")
    debug: bool = Field(False, description="Debug mode")

    host: str = Field(
        "0.0.0.0", description="Server host"
    )  # nosec B104 - deployments sit behind a proxy
    port: int = Field(4000, description="Server port")

    # ============================================================
    # Database Configuration
    # ============================================================

    class DatabaseSettings(BaseModel):
        """Database configuration."""

        url: str = Field(
            "sqlite+aiosqlite:///./flagdeck.sqlite",
            description="Async SQLAlchemy database URL",
        )

        # Connection pool (ignored for SQLite)
        pool_size: int = Field(10, description="Connection pool size")
        max_overflow: int = Field(20, description="Max overflow connections")
        pool_timeout: int = Field(30, description="Pool timeout in seconds")
        pool_recycle: int = Field(3600, description="Recycle connections after seconds")
        pool_pre_ping: bool = Field(True, description="Test connections before use")

        echo: bool = Field(False, description="Echo SQL statements")

        @property
        def is_sqlite(self) -> bool:
            return self.url.startswith("sqlite")

        @property
        def sync_url(self) -> str:
            """Driver-less URL for tools that need a synchronous engine (alembic)."""
            return self.url.replace("+aiosqlite", "").replace("+asyncpg", "")

    database: DatabaseSettings = DatabaseSettings()  # type: ignore[call-arg]

    # ============================================================
    # JWT & Authentication
    # ============================================================

    class JWTSettings(BaseModel):
        """JWT configuration."""

        secret_key: str = Field(DEFAULT_JWT_SECRET, description="JWT secret key")
        algorithm: str = Field("HS256", description="JWT algorithm")
        access_token_expire_minutes: int = Field(15, description="Access token expiration")
        issuer: str = Field("flagdeck", description="JWT issuer")
        admin_role: str = Field("admin", description="Role granting access to every application")

    jwt: JWTSettings = JWTSettings()  # type: ignore[call-arg]

    # ============================================================
    # Flag Distribution Cache
    # ============================================================

    class DistributionSettings(BaseModel):
        """Flag distribution cache configuration."""

        refresh_enabled: bool = Field(True, description="Run the periodic refresh sweep")
        refresh_interval_seconds: float = Field(
            60.0, gt=0, description="Seconds between refresh sweeps"
        )
        warm_up_on_startup: bool = Field(True, description="Preload every application at startup")
        max_entries: int = Field(10_000, ge=1, description="Maximum cached applications")
        entry_ttl_seconds: float | None = Field(
            None,
            gt=0,
            description="Age after which an entry is reloaded on the next read (None disables)",
        )

    distribution: DistributionSettings = DistributionSettings()  # type: ignore[call-arg]

    # ============================================================
    # CORS Configuration
    # ============================================================

    class CORSSettings(BaseModel):
        """CORS configuration."""

        enabled: bool = Field(True, description="Enable CORS")
        origins: list[str] = Field(
            default_factory=lambda: [
                "http://localhost:3000",  # Dashboard dev server
                "http://localhost:5173",
                "http://127.0.0.1:3000",
            ],
            description="Allowed origins for CORS",
        )
        credentials: bool = Field(True, description="Allow credentials")

    cors: CORSSettings = CORSSettings()  # type: ignore[call-arg]

    # ============================================================
    # Observability
    # ============================================================

    class ObservabilitySettings(BaseModel):
        """Logging configuration."""

        log_level: LogLevel = Field(LogLevel.INFO, description="Root log level")
        log_format: str = Field("console", description="Log output: json or console")

        @field_validator("log_format")
        @classmethod
        def validate_log_format(cls, v: str) -> str:
            v = v.lower()
            if v not in ("json", "console"):
                raise ValueError("log_format must be 'json' or 'console'")
            return v

    observability: ObservabilitySettings = ObservabilitySettings()  # type: ignore[call-arg]

    # ============================================================
    # Helpers
    # ============================================================

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    def validate_production_security(self) -> None:
        """Refuse to run in production with placeholder secrets."""
        if self.is_production and self.jwt.secret_key == DEFAULT_JWT_SECRET:
            raise ValueError("JWT__SECRET_KEY must be set in production")


settings = Settings()  # type: ignore[call-arg]
