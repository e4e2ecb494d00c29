"""
Configuration package for the SFT tracker.
Provides centralized configuration management with environment overrides and feature flags.
"""

from .config import (
    Config,
    FeatureFlags,
    HealthConfig,
    PersistenceSettings,
    ReportingConfig,
    SecurityConfig,
    StorageConfig,
    config,
    initialize_config,
)


__all__ = [
    # Main configuration
    "config",
    "Config",
    "initialize_config",
    "StorageConfig",
    "SecurityConfig",
    "HealthConfig",
    "ReportingConfig",
    "PersistenceSettings",
    "FeatureFlags",
]
