"""
Pytest configuration and fixtures for SFT tracker tests.
"""

import sys
from datetime import timezone
from pathlib import Path

import pytest

# Add project root to path for imports
sys.path.append(str(Path(__file__).parent.parent))

from config.config import Config, FeatureFlags, PersistenceSettings
from sft_tracker.data.store import InMemoryKeyValueStore
from sft_tracker.services.startup_service import build_application
from tests.factories.sft_factories import FIT_ANSWERS, FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_config():
    """Provide a test configuration instance."""
    config = Config()
    config.environment = "testing"
    config.debug = True
    config.storage.backend = "memory"
    config.security.password_min_length = 1
    config.health.freshness_minutes = 10
    config.reporting.timezone = None
    config.feature_flags = FeatureFlags(
        enable_audit_logging=True,
        enable_startup_migrations=True,
        enable_legacy_profile_fallback=True,
    )
    config.persistence = PersistenceSettings(single_writer=True, legacy_owner_email=None)
    return config


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
async def app(test_config, store, clock):
    """Fully wired application over the in-memory store."""
    application = await build_application(test_config, store=store, clock=clock)
    # Reporting days are computed in UTC so tests do not depend on the host zone
    application.reporting.tz = timezone.utc
    yield application
    await application.close()


@pytest.fixture
def fit_answers():
    return list(FIT_ANSWERS)
