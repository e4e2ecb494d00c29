"""
Tests for operations whose store writes fail: nothing is half-applied and the
boundary reports the storage message.
"""

import pytest

from sft_tracker.data.store import StorageKeys
from sft_tracker.exceptions import StorageUnavailableError
from sft_tracker.utils.error_handler import ErrorHandler, run_operation
from tests.factories.sft_factories import login_as, seed_profile

STORAGE_MESSAGE = "Failed to access storage. Please try again."


def fail_writes(monkeypatch, store):
    async def set_item(key, value):
        raise StorageUnavailableError("set", key)

    async def remove_item(key):
        raise StorageUnavailableError("remove", key)

    monkeypatch.setattr(store, "set_item", set_item)
    monkeypatch.setattr(store, "remove_item", remove_item)


class TestTrainingWrites:
    async def test_failed_start_leaves_no_session(self, app, store, monkeypatch, fit_answers):
        await login_as(app, "a@x.com")
        await app.health.submit(fit_answers)
        fail_writes(monkeypatch, store)

        result = await run_operation(app.training.start("Swim"), handler=ErrorHandler())

        assert not result.ok
        assert result.message == STORAGE_MESSAGE
        assert app.training.state.is_running is False
        monkeypatch.undo()
        assert await app.record_repository.list_all() == []

    async def test_failed_end_keeps_record_active(self, app, store, clock, monkeypatch, fit_answers):
        await login_as(app, "a@x.com")
        await app.health.submit(fit_answers)
        await app.training.start()
        clock.advance(minutes=5)
        fail_writes(monkeypatch, store)

        result = await run_operation(app.training.end(), handler=ErrorHandler())

        assert result.message == STORAGE_MESSAGE
        monkeypatch.undo()
        active = await app.record_repository.find_active("a@x.com")
        assert active is not None
        assert active.end_time is None


class TestProfileWrites:
    async def test_failed_grant_leaves_flag_unchanged(self, app, store, monkeypatch):
        await login_as(app, "boss@x.com", is_admin=True)
        await seed_profile(app, "a@x.com")
        fail_writes(monkeypatch, store)

        result = await run_operation(app.profiles.grant_admin("a@x.com"), handler=ErrorHandler())

        assert result.message == STORAGE_MESSAGE
        monkeypatch.undo()
        assert (await app.profile_repository.get_by_email("a@x.com")).is_admin is False
        assert await store.get_item(StorageKeys.ADMIN_AUDIT_LOG) is None

    async def test_failed_self_revoke_keeps_session_admin(self, app, store, monkeypatch):
        await login_as(app, "boss@x.com", is_admin=True)
        fail_writes(monkeypatch, store)

        with pytest.raises(StorageUnavailableError):
            await app.profiles.revoke_admin("boss@x.com")

        assert app.session.is_admin is True


class TestSessionWrites:
    async def test_failed_login_does_not_start_session(self, app, store, monkeypatch):
        await seed_profile(app, "a@x.com")
        fail_writes(monkeypatch, store)

        result = await run_operation(app.auth.login("a@x.com", "secret123"), handler=ErrorHandler())

        assert result.message == STORAGE_MESSAGE
        assert app.session.profile is None

    async def test_failed_plaintext_migration_does_not_start_session(self, app, store, monkeypatch):
        await store.set_json(StorageKeys.PROFILES, [{"email": "a@x.com", "password": "secret123"}])
        fail_writes(monkeypatch, store)

        with pytest.raises(StorageUnavailableError):
            await app.auth.login("a@x.com", "secret123")

        assert app.session.profile is None
        monkeypatch.undo()
        stored = await store.get_json(StorageKeys.PROFILES)
        assert stored[0]["password"] == "secret123"

    async def test_logout_ends_session_when_snapshot_removal_fails(self, app, store, monkeypatch):
        await login_as(app, "a@x.com")
        fail_writes(monkeypatch, store)

        with pytest.raises(StorageUnavailableError):
            await app.auth.logout()

        assert app.session.profile is None
        assert app.session.is_authenticated is False

    async def test_login_after_failed_session_end(self, app, store, monkeypatch):
        await login_as(app, "a@x.com")
        await seed_profile(app, "b@x.com")

        async def remove_item(key):
            raise StorageUnavailableError("remove", key)

        monkeypatch.setattr(store, "remove_item", remove_item)
        with pytest.raises(StorageUnavailableError):
            await app.session.end()
        assert app.session.profile is None
        monkeypatch.undo()

        await app.auth.login("b@x.com", "secret123")

        assert app.session.email == "b@x.com"
