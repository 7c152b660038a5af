"""
Settings

Typed configuration read from the environment and an optional .env file.
Each concern has its own class and env prefix. Services get their
settings through the constructor; only the orchestrator calls
get_settings().
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Relational store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FINTRACK_DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite:///fintrack.db",
        description="SQLAlchemy database URL"
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements to the log"
    )
    connect_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts made when connecting and creating the schema"
    )

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Reject obviously malformed URLs early."""
        if "://" not in v:
            raise ValueError(f"Not a database URL: {v}")
        return v


class LedgerSettings(BaseSettings):
    """Ledger, obligation and aggregation policy knobs."""

    model_config = SettingsConfigDict(
        env_prefix="FINTRACK_LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    due_soon_window_days: int = Field(
        default=7,
        ge=0,
        le=366,
        description="Lookahead window for the 'due soon' list"
    )
    fees_category_id: str = Field(
        default="tuition-fees",
        min_length=1,
        description="Category reference used for aggregated fee income"
    )
    aggregate_description_prefix: str = Field(
        default="Monthly Tuition Fees Aggregate",
        description="Description prefix of the aggregated income entry"
    )
    note_separator: str = Field(
        default="; ",
        description="Separator used when appending payment notes"
    )
    min_period_year: int = Field(
        default=2020,
        ge=1900,
        description="Earliest year accepted for an obligation period"
    )


class AppSettings(BaseSettings):
    """Process-wide switches (environment name, debug, log level)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Deployment name, e.g. development or production"
    )
    debug_mode: bool = Field(
        default=False,
        description="Verbose diagnostics"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for structured logs"
    )


class Settings(BaseSettings):
    """Entry point for every settings group."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Each group is read on access, so a broken group only fails where it is used

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """Process-wide Settings; get_settings.cache_clear() forces a reload."""
    return Settings()


def validate_all_settings(settings: Optional[Settings] = None) -> dict:
    """
    Load every settings group and report which ones failed.

    Returns {group: bool} plus {group_error: message} for each failure,
    for use in startup checks.
    """
    results = {}

    settings = settings or get_settings()

    for name in ("database", "ledger", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
