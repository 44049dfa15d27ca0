"""Configuration package."""

from finance_tracker.config.settings import (
    AppSettings,
    AuthSettings,
    DEVELOPMENT_JWT_SECRET,
    MongoSettings,
    Settings,
    check_production_secrets,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "AuthSettings",
    "DEVELOPMENT_JWT_SECRET",
    "MongoSettings",
    "Settings",
    "check_production_secrets",
    "get_settings",
    "validate_all_settings",
]
