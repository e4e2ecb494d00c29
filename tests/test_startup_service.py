"""
Tests for application wiring and the startup migrations of legacy data.
"""

from datetime import timedelta

import pytest

from config.config import PersistenceSettings
from sft_tracker.data.store import InMemoryKeyValueStore, SqlKeyValueStore, StorageKeys
from sft_tracker.exceptions import ConfigurationError
from sft_tracker.logic.authentication import hash_password, is_credential_hash
from sft_tracker.services.startup_service import StartupService, build_application
from tests.factories.sft_factories import create_record, seed_profile


async def run_migrations(app):
    return await StartupService(app).run_startup_migrations()


class TestProfileMigrations:
    async def test_directory_is_rewritten_in_canonical_form(self, app, store):
        await store.set_json(
            StorageKeys.PROFILES,
            [
                {"email": " Alice@X.com ", "password": hash_password("pw"), "name": "Alice", "unit": "Alpha", "parent": "HQ"},
                {"email": "alice@x.com", "password": hash_password("other")},
            ],
        )

        report = await run_migrations(app)

        stored = await store.get_json(StorageKeys.PROFILES)
        assert len(stored) == 1
        assert stored[0]["email"] == "alice@x.com"
        assert stored[0]["fullName"] == "Alice"
        assert stored[0]["subUnit"] == "Alpha"
        assert stored[0]["parentUnit"] == "HQ"
        assert "name" not in stored[0]
        assert report.profiles_normalized == 2

    async def test_second_run_changes_nothing(self, app, store):
        await store.set_json(StorageKeys.PROFILES, [{"email": "A@x.com", "password": "plain"}])
        await run_migrations(app)

        report = await run_migrations(app)

        assert report.profiles_normalized == 0
        assert report.credentials_migrated == 0

    async def test_legacy_profile_is_folded(self, app, store):
        await store.set_json(StorageKeys.LEGACY_PROFILE, {"email": "old@x.com", "password": hash_password("pw")})

        report = await run_migrations(app)

        assert report.legacy_profile_folded is True
        assert (await app.profile_repository.get_by_email("old@x.com")) is not None

    async def test_plaintext_credentials_are_hashed(self, app, store):
        await store.set_json(
            StorageKeys.PROFILES,
            [{"email": "a@x.com", "password": "plain"}, {"email": "b@x.com", "password": hash_password("pw")}],
        )

        report = await run_migrations(app)

        assert report.credentials_migrated == 1
        stored = await store.get_json(StorageKeys.PROFILES)
        assert all(is_credential_hash(p["password"]) for p in stored)
        await app.auth.login("a@x.com", "plain")

    async def test_unparseable_entries_survive(self, app, store):
        await store.set_json(StorageKeys.PROFILES, [{"email": "a@x.com", "password": "x"}, {"rank": "no email"}])

        await run_migrations(app)

        stored = await store.get_json(StorageKeys.PROFILES)
        assert {"rank": "no email"} in stored


class TestRecordOwnership:
    async def test_sole_profile_claims_ownerless_records(self, app, clock):
        await seed_profile(app, "only@x.com")
        await app.record_repository.upsert(create_record(None, clock.now - timedelta(hours=1)))

        report = await run_migrations(app)

        assert report.records_stamped == 1
        assert (await app.record_repository.list_all())[0].owner_email == "only@x.com"

    async def test_configured_owner_wins(self, app, clock):
        app.config.persistence = PersistenceSettings(legacy_owner_email=" Legacy@X.com ")
        await seed_profile(app, "a@x.com")
        await seed_profile(app, "b@x.com")
        await app.record_repository.upsert(create_record(None, clock.now - timedelta(hours=1)))

        report = await run_migrations(app)

        assert report.records_stamped == 1
        assert (await app.record_repository.list_all())[0].owner_email == "legacy@x.com"

    async def test_ambiguous_owner_leaves_records_alone(self, app, store, clock):
        await seed_profile(app, "a@x.com")
        await seed_profile(app, "b@x.com")
        await app.record_repository.upsert(create_record(None, clock.now - timedelta(hours=2)))
        await app.record_repository.upsert(create_record("a@x.com", clock.now - timedelta(hours=1)))

        report = await run_migrations(app)

        assert report.records_stamped == 0
        assert report.ownerless_records_left == 1
        owners = [entry["ownerEmail"] for entry in await store.get_json(StorageKeys.TRAINING_RECORDS)]
        assert None in owners


class TestMigrationGuards:
    async def test_skipped_without_single_writer(self, app, store):
        app.config.persistence = PersistenceSettings(single_writer=False)
        await store.set_json(StorageKeys.PROFILES, [{"email": "A@x.com", "password": "plain"}])

        report = await run_migrations(app)

        assert report.skipped is True
        assert (await store.get_json(StorageKeys.PROFILES))[0]["password"] == "plain"

    async def test_skipped_when_flag_disabled(self, app, store):
        app.config.feature_flags.enable_startup_migrations = False
        await store.set_json(StorageKeys.LEGACY_PROFILE, {"email": "old@x.com", "password": "pw"})

        report = await run_migrations(app)

        assert report.skipped is True
        assert await store.get_item(StorageKeys.PROFILES) is None


class TestBuildApplication:
    async def test_sql_backend_persists_between_runs(self, test_config, clock, tmp_path):
        test_config.storage.backend = "sql"
        test_config.storage.database_url = f"sqlite+aiosqlite:///{tmp_path / 'sft.db'}"

        app = await build_application(test_config, clock=clock)
        try:
            assert isinstance(app.store, SqlKeyValueStore)
            await app.auth.register({"email": "a@x.com", "password": "pw"})
            await app.auth.login("a@x.com", "pw")
        finally:
            await app.close()

        reopened = await build_application(test_config, clock=clock)
        try:
            assert reopened.session.email == "a@x.com"
            assert (await reopened.profile_repository.get_by_email("a@x.com")) is not None
        finally:
            await reopened.close()

    async def test_persisted_session_is_restored(self, test_config, clock):
        store = InMemoryKeyValueStore(
            {StorageKeys.ACTIVE_PROFILE: '{"email": "a@x.com", "password": "", "isAdmin": true}'}
        )

        app = await build_application(test_config, store=store, clock=clock)

        assert app.session.email == "a@x.com"
        assert app.session.is_admin is True

    async def test_unknown_backend(self, test_config):
        test_config.storage.backend = "redis"

        with pytest.raises(ConfigurationError) as exc_info:
            await build_application(test_config)

        assert exc_info.value.details["setting"] == "storage.backend"

    async def test_unknown_timezone(self, test_config):
        test_config.reporting.timezone = "Mars/Olympus_Mons"

        with pytest.raises(ConfigurationError):
            await build_application(test_config, store=InMemoryKeyValueStore())

    async def test_configured_timezone(self, test_config):
        test_config.reporting.timezone = "Asia/Singapore"

        app = await build_application(test_config, store=InMemoryKeyValueStore())

        assert str(app.reporting.tz) == "Asia/Singapore"
