"""
Configuration Management for Finora

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    transactions_sheet_name: str = Field(
        default="Transactions",
        description="Name of the sheet holding templates and occurrences"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class RecurringSettings(BaseSettings):
    """
    Recurring transactions engine configuration.

    The default schedule is once a day at local midnight.
    """

    model_config = SettingsConfigDict(
        env_prefix="RECURRING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    enabled: bool = Field(
        default=True,
        description="Start the daily scheduler with the service"
    )
    run_hour: int = Field(
        default=0,
        ge=0,
        le=23,
        description="Local hour of the daily trigger"
    )
    run_minute: int = Field(
        default=0,
        ge=0,
        le=59,
        description="Local minute of the daily trigger"
    )
    timezone: Optional[str] = Field(
        default=None,
        description="IANA timezone for the trigger (default: system local time)"
    )
    store_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Upper bound for a single store call during a pass"
    )
    max_concurrency: int = Field(
        default=1,
        ge=1,
        le=32,
        description="Templates processed at once (1 = strictly sequential)"
    )
    match_by_template_id: bool = Field(
        default=False,
        description="Resolve last occurrence by template_id instead of field matching"
    )

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        """Reject unknown timezone names early."""
        if v:
            try:
                ZoneInfo(v)
            except (ZoneInfoNotFoundError, ValueError):
                raise ValueError(f"Unknown timezone: {v}")
        return v or None

    @property
    def tzinfo(self) -> Optional[ZoneInfo]:
        """Timezone object, or None for system local time."""
        return ZoneInfo(self.timezone) if self.timezone else None


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Log level name (DEBUG, INFO, WARNING, ERROR)"
    )
    storage_backend: str = Field(
        default="sheets",
        pattern="^(sheets|memory)$",
        description="Transaction store backend"
    )

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level


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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def recurring(self) -> RecurringSettings:
        return RecurringSettings()

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


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries for the groups that failed.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    groups = {
        "google_sheets": lambda: settings.google_sheets,
        "recurring": lambda: settings.recurring,
        "app": lambda: settings.app,
    }
    for name, load in groups.items():
        try:
            load()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
