"""Configuration package."""

from finora.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    RecurringSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "RecurringSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
