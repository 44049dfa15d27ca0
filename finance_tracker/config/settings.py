"""
Configuration Management for the Finance Tracker

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
Every field has a development default so the test suite and a local
in-memory run need no environment at all. The one exception is the
JWT secret: outside development it must come from the environment.
"""

from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Only acceptable while app_environment is "development"
DEVELOPMENT_JWT_SECRET = "dev-secret-change-me-in-production-0123456789"


class MongoSettings(BaseSettings):
    """MongoDB document store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MONGO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection string"
    )
    database: str = Field(
        default="finance_tracker",
        description="Database holding the Users and Expenses collections"
    )

    # Collection names within the database
    users_collection: str = Field(
        default="Users",
        description="Collection of user documents (with embedded expense summaries)"
    )
    expenses_collection: str = Field(
        default="Expenses",
        description="Collection of canonical expense records"
    )
    audit_collection: str = Field(
        default="AuditLog",
        description="Collection for persisted audit events"
    )

    # Driver timeouts; the engine adds no timeout layer of its own
    server_selection_timeout_ms: int = Field(
        default=5000,
        ge=100,
        description="How long the driver waits to find a usable server"
    )
    socket_timeout_ms: int = Field(
        default=10000,
        ge=100,
        description="Per-operation socket timeout"
    )


class AuthSettings(BaseSettings):
    """Password hashing and bearer token configuration."""

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    jwt_secret: str = Field(
        default=DEVELOPMENT_JWT_SECRET,
        min_length=32,
        description="HMAC secret used to sign access tokens"
    )
    jwt_algorithm: str = Field(
        default="HS256",
        description="JWT signing algorithm"
    )
    token_expire_minutes: int = Field(
        default=60 * 24,
        ge=1,
        description="Access token lifetime in minutes"
    )
    bcrypt_rounds: int = Field(
        default=12,
        ge=4,
        le=16,
        description="bcrypt work factor"
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
    app_name: str = Field(
        default="Finance Tracker",
        description="Name reported by the API root"
    )
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
        description="Minimum level for structured logs"
    )

    # Storage
    storage_backend: Literal["mongo", "memory"] = Field(
        default="mongo",
        description="Which storage backend the components are built on"
    )
    persist_audit_events: bool = Field(
        default=True,
        description="Also write audit events to the audit collection"
    )

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept any casing for the level name."""
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
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
    def mongo(self) -> MongoSettings:
        return MongoSettings()

    @property
    def auth(self) -> AuthSettings:
        return AuthSettings()

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


def check_production_secrets(settings: Settings) -> None:
    """
    Refuse to run outside development on the built-in JWT secret.

    Anyone can read the default, so tokens signed with it can be forged.

    Raises:
        ValueError: If AUTH_JWT_SECRET was left unset outside development
    """
    environment = settings.app.app_environment
    if environment != "development" and settings.auth.jwt_secret == DEVELOPMENT_JWT_SECRET:
        raise ValueError(
            f"AUTH_JWT_SECRET must be set when app_environment is '{environment}'"
        )


def validate_all_settings() -> dict[str, Any]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("mongo", "auth", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    if results["auth"] and results["app"]:
        try:
            check_production_secrets(settings)
        except ValueError as e:
            results["auth"] = False
            results["auth_error"] = str(e)

    return results
