"""
Tests for registration, login, logout and credential migration.
"""

import hashlib

import pytest

from sft_tracker.data.store import StorageKeys
from sft_tracker.exceptions import (
    DuplicateEmailError,
    InvalidCredentialError,
    MissingRequiredFieldError,
    NoSuchUserError,
    UnauthorizedError,
    ValidationError,
)
from sft_tracker.logic.authentication import hash_password, is_credential_hash
from tests.factories.sft_factories import login_as, seed_profile


class TestCredentialHash:
    def test_hash_is_sha256_of_trimmed_password(self):
        expected = hashlib.sha256(b"secret").hexdigest()
        assert hash_password("  secret ") == expected
        assert len(expected) == 64

    @pytest.mark.parametrize(
        "value,expected",
        [
            (hashlib.sha256(b"x").hexdigest(), True),
            (hashlib.sha256(b"x").hexdigest().upper(), True),
            ("a" * 63, False),
            ("g" * 64, False),
            ("plaintext", False),
            ("", False),
            (None, False),
        ],
    )
    def test_is_credential_hash(self, value, expected):
        assert is_credential_hash(value) is expected


class TestRegistration:
    async def test_register_normalizes_email_and_hashes_password(self, app):
        profile = await app.auth.register(
            {"email": "  Alice@Example.COM ", "password": " pw1 ", "fullName": "Alice Tan", "isAdmin": True}
        )

        assert profile.email == "alice@example.com"
        assert profile.password_hash == hash_password("pw1")
        assert profile.password_hash != "pw1"
        assert profile.is_admin is False
        assert profile.full_name == "Alice Tan"

    async def test_register_does_not_log_in(self, app):
        await app.auth.register({"email": "a@x.com", "password": "pw"})

        assert app.session.profile is None
        assert await app.store.get_item(StorageKeys.ACTIVE_PROFILE) is None

    async def test_register_stores_legacy_password_key(self, app):
        await app.auth.register({"email": "a@x.com", "password": "pw"})

        stored = await app.store.get_json(StorageKeys.PROFILES)
        assert stored[0]["email"] == "a@x.com"
        assert stored[0]["password"] == hash_password("pw")
        assert stored[0]["isAdmin"] is False

    async def test_duplicate_email_is_rejected(self, app):
        await app.auth.register({"email": "a@x.com", "password": "pw"})

        with pytest.raises(DuplicateEmailError):
            await app.auth.register({"email": " A@X.com", "password": "other"})

        assert len(await app.profile_repository.list_all()) == 1

    @pytest.mark.parametrize("draft,field", [({"email": " ", "password": "pw"}, "email"), ({"email": "a@x.com", "password": "  "}, "password")])
    async def test_missing_fields(self, app, draft, field):
        with pytest.raises(MissingRequiredFieldError) as exc_info:
            await app.auth.register(draft)

        assert exc_info.value.details["field"] == field
        assert await app.profile_repository.list_all() == []

    async def test_password_min_length(self, app):
        app.auth.password_min_length = 6

        with pytest.raises(ValidationError):
            await app.auth.register({"email": "a@x.com", "password": "12345"})


class TestLogin:
    async def test_login_sets_active_session(self, app):
        await seed_profile(app, "a@x.com", "pw", rank="CPL")

        profile = await app.auth.login(" A@X.COM ", " pw ")

        assert profile.email == "a@x.com"
        assert app.session.email == "a@x.com"
        stored = await app.store.get_json(StorageKeys.ACTIVE_PROFILE)
        assert stored["email"] == "a@x.com"
        assert stored["rank"] == "CPL"

    async def test_unknown_email(self, app):
        await seed_profile(app, "a@x.com", "pw")

        with pytest.raises(NoSuchUserError):
            await app.auth.login("b@x.com", "pw")

    async def test_wrong_password(self, app):
        await seed_profile(app, "a@x.com", "pw")

        with pytest.raises(InvalidCredentialError):
            await app.auth.login("a@x.com", "nope")
        assert app.session.profile is None

    async def test_typing_the_hash_itself_is_rejected(self, app):
        await seed_profile(app, "a@x.com", "pw")

        with pytest.raises(InvalidCredentialError):
            await app.auth.login("a@x.com", hash_password("pw"))

    async def test_plaintext_credential_is_migrated(self, app, store):
        await store.set_json(StorageKeys.PROFILES, [{"email": "a@x.com", "password": "legacy"}])

        await app.auth.login("a@x.com", "legacy")

        stored = await store.get_json(StorageKeys.PROFILES)
        assert stored[0]["password"] == hashlib.sha256(b"legacy").hexdigest()
        assert is_credential_hash(stored[0]["password"])

    async def test_plaintext_migration_persists_even_on_wrong_password(self, app, store):
        await store.set_json(StorageKeys.PROFILES, [{"email": "a@x.com", "password": "legacy"}])

        with pytest.raises(InvalidCredentialError):
            await app.auth.login("a@x.com", "wrong")

        stored = await store.get_json(StorageKeys.PROFILES)
        assert is_credential_hash(stored[0]["password"])

    async def test_legacy_single_profile_fallback(self, app, store):
        await store.set_json(
            StorageKeys.LEGACY_PROFILE, {"email": "Old@X.com", "password": hash_password("pw"), "name": "Old Timer"}
        )

        profile = await app.auth.login("old@x.com", "pw")

        assert profile.full_name == "Old Timer"
        directory = await store.get_json(StorageKeys.PROFILES)
        assert [p["email"] for p in directory] == ["old@x.com"]

    async def test_legacy_fallback_can_be_disabled(self, app, store):
        app.auth.legacy_profile_fallback = False
        await store.set_json(StorageKeys.LEGACY_PROFILE, {"email": "old@x.com", "password": hash_password("pw")})

        with pytest.raises(NoSuchUserError):
            await app.auth.login("old@x.com", "pw")

    async def test_empty_stored_password_never_matches(self, app, store):
        await store.set_json(StorageKeys.PROFILES, [{"email": "a@x.com", "password": ""}])

        with pytest.raises(InvalidCredentialError):
            await app.auth.login("a@x.com", "")


class TestLogout:
    async def test_logout_clears_session(self, app):
        await login_as(app, "a@x.com")

        previous = await app.auth.logout()

        assert previous.email == "a@x.com"
        assert app.session.profile is None
        assert await app.store.get_item(StorageKeys.ACTIVE_PROFILE) is None
        assert await app.store.get_json(StorageKeys.ADMIN_AUDIT_LOG) is None

    async def test_admin_logout_is_audited(self, app):
        await login_as(app, "boss@x.com", is_admin=True)

        await app.auth.logout()

        log = await app.store.get_json(StorageKeys.ADMIN_AUDIT_LOG)
        assert log[0]["action"] == "admin_logout"
        assert log[0]["adminEmail"] == "boss@x.com"

    async def test_logout_without_session(self, app):
        assert await app.auth.logout() is None


class TestBootstrapAdmin:
    async def test_first_admin_can_be_created(self, app):
        profile = await app.auth.bootstrap_admin("Root@X.com", "pw")

        assert profile.is_admin is True
        assert (await app.profile_repository.get_by_email("root@x.com")).is_admin is True

    async def test_existing_user_must_present_password(self, app):
        await seed_profile(app, "a@x.com", "pw")

        with pytest.raises(InvalidCredentialError):
            await app.auth.bootstrap_admin("a@x.com", "wrong")

    async def test_refused_once_an_admin_exists(self, app):
        await seed_profile(app, "boss@x.com", is_admin=True)

        with pytest.raises(UnauthorizedError):
            await app.auth.bootstrap_admin("a@x.com", "pw")
