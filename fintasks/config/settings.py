"""
Configuration Management for fintasks

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every tunable (database URL, scheduler timing, validation ceilings) is
declared once and validated at startup.
"""

from functools import lru_cache

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Task and expense storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FINTASKS_DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite+aiosqlite:///./fintasks.db",
        description="SQLAlchemy async database URL"
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements to the log"
    )
    connect_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="How many times to try the initial connection check"
    )

    @field_validator('url')
    @classmethod
    def validate_async_driver(cls, v: str) -> str:
        """The store runs on SQLAlchemy's asyncio engine, so the URL needs an async driver."""
        if "+" not in v.split("://", 1)[0]:
            raise ValueError(
                f"Database URL must name an async driver (e.g. sqlite+aiosqlite://), got: {v}"
            )
        return v


class SchedulerSettings(BaseSettings):
    """
    Monthly generation trigger configuration.

    Defaults fire on the 1st of every month at 00:01 local time.
    """

    model_config = SettingsConfigDict(
        env_prefix="FINTASKS_SCHEDULER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    enabled: bool = Field(
        default=True,
        description="Run the monthly trigger when the scheduler command starts"
    )
    # Capped at 28 so every month has the configured day
    day_of_month: int = Field(
        default=1,
        ge=1,
        le=28,
        description="Day of the month the trigger fires"
    )
    hour: int = Field(
        default=0,
        ge=0,
        le=23,
        description="Hour of day the trigger fires"
    )
    minute: int = Field(
        default=1,
        ge=0,
        le=59,
        description="Minute of the hour the trigger fires"
    )
    per_user_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Generation for a single user is abandoned after this long"
    )
    run_on_startup: bool = Field(
        default=False,
        description="Generate the current month once when the scheduler starts"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for the structured log"
    )

    # Expense defaults and sanity limits
    default_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="Currency used when an expense does not name one"
    )
    max_expense_amount: float = Field(
        default=1000000.0,
        gt=0,
        description="Maximum reasonable expense amount (for sanity checking)"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator('default_currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def scheduler(self) -> SchedulerSettings:
        return SchedulerSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool | str]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries for groups that failed to load.
    Backs the `fintasks check` command.
    """
    results = {}

    settings = get_settings()

    for name in ("database", "scheduler", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except ValidationError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
