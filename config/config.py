"""
Configuration management system for the SFT tracker.
Provides centralized configuration with environment variable overrides and feature flags.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env early so all os.getenv calls see variables
load_dotenv()


class PersistenceSettings(BaseSettings):
    """
    Persistence-related flags.

    single_writer:
        Asserts that only one client writes to the store. Startup migrations
        refuse to run when this is False.
    legacy_owner_email:
        Owner stamped onto training records that predate per-user ownership.
        When unset, ownerless records are only claimed if exactly one profile
        is registered.
    """

    model_config = SettingsConfigDict(env_prefix="PERSISTENCE_")

    single_writer: bool = True
    legacy_owner_email: str | None = None


@dataclass
class StorageConfig:
    """Key-value store configuration."""

    backend: str = "sql"  # sql, memory
    database_url: str = "sqlite+aiosqlite:///./sft_tracker.db"
    echo: bool = False

    def __post_init__(self):
        if env_backend := os.getenv("SFT_STORAGE_BACKEND"):
            self.backend = env_backend.lower()
        if env_url := os.getenv("SFT_DATABASE_URL"):
            self.database_url = env_url
        if env_echo := os.getenv("SFT_DATABASE_ECHO"):
            self.echo = env_echo.lower() == "true"


@dataclass
class SecurityConfig:
    """Credential handling configuration."""

    password_min_length: int = 1

    def __post_init__(self):
        if env_min := os.getenv("SFT_PASSWORD_MIN_LENGTH"):
            self.password_min_length = int(env_min)


@dataclass
class HealthConfig:
    """Health declaration configuration."""

    freshness_minutes: int = 10

    def __post_init__(self):
        if env_minutes := os.getenv("SFT_HEALTH_FRESHNESS_MINUTES"):
            self.freshness_minutes = int(env_minutes)


@dataclass
class ReportingConfig:
    """Admin reporting configuration."""

    timezone: str | None = None  # IANA name; None uses the system local zone

    def __post_init__(self):
        if env_tz := os.getenv("SFT_TIMEZONE"):
            self.timezone = env_tz


@dataclass
class FeatureFlags:
    """Feature flags for controlling system behavior."""

    enable_audit_logging: bool = True
    enable_startup_migrations: bool = True
    enable_legacy_profile_fallback: bool = True

    def __post_init__(self):
        """Override feature flags from environment variables."""
        for flag_name in self.__dataclass_fields__:
            env_var = f"FEATURE_{flag_name.upper()}"
            if env_value := os.getenv(env_var):
                setattr(self, flag_name, env_value.lower() == "true")


@dataclass
class Config:
    """Main configuration class that aggregates all configuration sections."""

    # Environment
    environment: str = "development"
    debug: bool = True

    # Configuration sections
    storage: StorageConfig = field(default_factory=StorageConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    reporting: ReportingConfig = field(default_factory=ReportingConfig)
    persistence: PersistenceSettings = field(default_factory=PersistenceSettings)
    feature_flags: FeatureFlags = field(default_factory=FeatureFlags)

    # Application settings
    app_name: str = "SFT Tracker"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    def __post_init__(self):
        """Override main config from environment variables."""
        if env_environment := os.getenv("ENVIRONMENT"):
            self.environment = env_environment
            self.debug = env_environment == "development"

        if env_log_level := os.getenv("LOG_LEVEL"):
            self.log_level = env_log_level

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    def validate(self) -> None:
        """Validate configuration settings."""
        errors = []
        if self.storage.backend not in {"sql", "memory"}:
            errors.append(f"unsupported storage backend '{self.storage.backend}'")
        if self.storage.backend == "sql" and not self.storage.database_url:
            errors.append("database_url is required for the sql backend")
        if self.health.freshness_minutes < 1:
            errors.append("health freshness window must be at least 1 minute")
        if self.security.password_min_length < 1:
            errors.append("password_min_length must be at least 1")
        if self.is_production and self.storage.backend == "memory":
            errors.append("the memory backend cannot be used in production")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

    def apply_environment_overrides(self) -> None:
        """Apply environment-specific configuration overrides."""
        if self.environment == "testing":
            self.storage.backend = "memory"
        elif self.environment == "production":
            self.debug = False
            self.feature_flags.enable_audit_logging = True


def initialize_config() -> Config:
    """Initialize configuration with environment-specific settings."""
    base_config = Config()
    base_config.apply_environment_overrides()
    base_config.validate()
    return base_config


# Global configuration instance
config = initialize_config()
