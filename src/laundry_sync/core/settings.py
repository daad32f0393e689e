"""Application settings and configuration.

This module defines all configuration options for the Laundry Sync service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Laundry Sync", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    service_name: str = Field(default="laundry-sync", alias="SERVICE_NAME")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./laundry.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")
    seed_default_appliances: bool = Field(default=True, alias="SEED_DEFAULT_APPLIANCES")

    # Redis backs the shared-storage channel when tabs live in separate processes
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    shared_channel_prefix: str = Field(default="laundry", alias="SHARED_CHANNEL_PREFIX")

    # Reservation rules
    max_reservation_minutes: int = Field(
        default=120,
        ge=1,
        le=1440,
        alias="MAX_RESERVATION_MINUTES",
    )
    reservation_history_enabled: bool = Field(
        default=True,
        alias="RESERVATION_HISTORY_ENABLED",
    )

    # Expiration sweeper
    sweeper_enabled: bool = Field(default=True, alias="SWEEPER_ENABLED")
    sweep_interval_seconds: float = Field(default=30.0, ge=1.0, alias="SWEEP_INTERVAL_SECONDS")

    # Push transport
    push_queue_size: int = Field(default=100, ge=1, alias="PUSH_QUEUE_SIZE")
    push_keepalive_seconds: float = Field(default=30.0, gt=0, alias="PUSH_KEEPALIVE_SECONDS")

    # Cross-tab synchronization
    sync_event_max_age_seconds: int = Field(
        default=300,
        ge=1,
        alias="SYNC_EVENT_MAX_AGE_SECONDS",
    )
    sync_event_cleanup_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        alias="SYNC_EVENT_CLEANUP_INTERVAL_SECONDS",
    )

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides.

        Returns:
            The active database URL (test database if in testing mode, otherwise production)
        """
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling such as Alembic."""
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url


settings = Settings()
