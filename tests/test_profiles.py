"""
Tests for the profile directory: search, admin role changes, deletion and edits.
"""

import pytest

from sft_tracker.data.store import StorageKeys
from sft_tracker.exceptions import (
    AuthenticationRequiredError,
    MissingRequiredFieldError,
    NoSuchUserError,
    UnauthorizedError,
)
from sft_tracker.logic.authentication import hash_password
from tests.factories.sft_factories import create_record, login_as, seed_profile


async def audit_actions(app) -> list[str]:
    return [entry["action"] for entry in await app.store.get_json(StorageKeys.ADMIN_AUDIT_LOG, default=[])]


class TestSearch:
    async def test_search_matches_email_and_name_sorted_by_email(self, app):
        await login_as(app, "admin@x.com", is_admin=True)
        await seed_profile(app, "zed@x.com", full_name="Tan Ah Kow")
        await seed_profile(app, "bob@x.com", full_name="Bob Lim")
        await seed_profile(app, "tanya@x.com", full_name="Tanya")

        results = await app.profiles.search("TAN")

        assert [p.email for p in results] == ["tanya@x.com", "zed@x.com"]

    async def test_blank_term_is_rejected(self, app):
        await login_as(app, "admin@x.com", is_admin=True)

        with pytest.raises(MissingRequiredFieldError):
            await app.profiles.search("   ")

    async def test_search_requires_admin(self, app):
        await login_as(app, "user@x.com")

        with pytest.raises(UnauthorizedError):
            await app.profiles.search("user")

    async def test_list_users_sorted(self, app):
        await seed_profile(app, "c@x.com")
        await login_as(app, "a@x.com", is_admin=True)

        assert [p.email for p in await app.profiles.list_users()] == ["a@x.com", "c@x.com"]

    async def test_find_by_email_is_case_insensitive(self, app):
        await seed_profile(app, "a@x.com")

        assert (await app.profiles.find_by_email(" A@X.COM")).email == "a@x.com"
        assert await app.profiles.find_by_email("b@x.com") is None


class TestAdminFlag:
    async def test_grant_then_revoke(self, app):
        await login_as(app, "admin@x.com", is_admin=True)
        await seed_profile(app, "a@x.com")

        await app.profiles.grant_admin("A@x.com")
        assert (await app.profile_repository.get_by_email("a@x.com")).is_admin is True

        await app.profiles.revoke_admin("a@x.com")
        assert (await app.profile_repository.get_by_email("a@x.com")).is_admin is False

        assert await audit_actions(app) == ["revoke_admin_a@x.com", "grant_admin_a@x.com"]

    async def test_self_change_refreshes_active_session(self, app):
        await login_as(app, "admin@x.com", is_admin=True)
        await seed_profile(app, "other@x.com", is_admin=True)

        await app.profiles.revoke_admin("admin@x.com")

        assert app.session.is_admin is False
        stored = await app.store.get_json(StorageKeys.ACTIVE_PROFILE)
        assert stored["isAdmin"] is False

    async def test_change_to_other_user_leaves_session_alone(self, app):
        admin = await login_as(app, "admin@x.com", is_admin=True)
        await seed_profile(app, "a@x.com")

        await app.profiles.grant_admin("a@x.com")

        assert app.session.profile == admin

    async def test_unknown_user(self, app):
        await login_as(app, "admin@x.com", is_admin=True)

        with pytest.raises(NoSuchUserError):
            await app.profiles.grant_admin("ghost@x.com")

    async def test_non_admin_has_no_side_effects(self, app):
        await login_as(app, "user@x.com")
        await seed_profile(app, "a@x.com")

        with pytest.raises(UnauthorizedError):
            await app.profiles.grant_admin("a@x.com")

        assert (await app.profile_repository.get_by_email("a@x.com")).is_admin is False
        assert await audit_actions(app) == []

    async def test_no_session_is_rejected(self, app):
        await seed_profile(app, "a@x.com")

        with pytest.raises(AuthenticationRequiredError):
            await app.profiles.grant_admin("a@x.com")


class TestDeleteUser:
    async def test_delete_keeps_records_and_clears_hide_flag(self, app):
        await login_as(app, "admin@x.com", is_admin=True)
        await seed_profile(app, "a@x.com")
        await app.record_repository.upsert(create_record("a@x.com"))
        await app.record_repository.set_hidden("a@x.com", True)

        await app.profiles.delete_user("a@x.com")

        assert await app.profile_repository.get_by_email("a@x.com") is None
        assert await app.store.get_item(StorageKeys.hide_records("a@x.com")) is None
        assert len(await app.record_repository.list_by_owner("a@x.com")) == 1
        assert await audit_actions(app) == ["delete_user_a@x.com"]

    async def test_deleting_active_user_ends_session(self, app):
        await login_as(app, "admin@x.com", is_admin=True)
        await seed_profile(app, "other@x.com", is_admin=True)

        await app.profiles.delete_user("admin@x.com")

        assert app.session.profile is None
        assert await app.store.get_item(StorageKeys.ACTIVE_PROFILE) is None
        log = await app.store.get_json(StorageKeys.ADMIN_AUDIT_LOG)
        assert log[0]["adminEmail"] == "admin@x.com"

    async def test_delete_unknown_user(self, app):
        await login_as(app, "admin@x.com", is_admin=True)

        with pytest.raises(NoSuchUserError):
            await app.profiles.delete_user("ghost@x.com")


class TestUpdateOwnProfile:
    async def test_update_fields_and_session(self, app):
        await login_as(app, "a@x.com", rank="PTE")

        updated = await app.profiles.update_own_profile(
            {"rank": "CPL", "unit": "Alpha", "nric": "S1234567A", "contact": "+65 9123 4567"}
        )

        assert updated.rank == "CPL"
        assert updated.sub_unit == "Alpha"
        assert updated.nric == "567A"
        assert updated.contact_number == "+65 9123 4567"
        assert app.session.profile.rank == "CPL"
        assert (await app.profile_repository.get_by_email("a@x.com")).sub_unit == "Alpha"

    async def test_email_and_admin_flag_cannot_change(self, app):
        await login_as(app, "a@x.com")

        updated = await app.profiles.update_own_profile({"email": "b@x.com", "isAdmin": True, "rank": "SGT"})

        assert updated.email == "a@x.com"
        assert updated.is_admin is False

    async def test_new_password_is_hashed(self, app):
        await login_as(app, "a@x.com", "old")

        updated = await app.profiles.update_own_profile({"password": " new "})

        assert updated.password_hash == hash_password("new")
        await app.auth.logout()
        await app.auth.login("a@x.com", "new")

    async def test_requires_login(self, app):
        with pytest.raises(AuthenticationRequiredError):
            await app.profiles.update_own_profile({"rank": "CPL"})


class TestEditAs:
    async def test_edit_as_switches_session_and_audits(self, app):
        await login_as(app, "admin@x.com", is_admin=True)
        await seed_profile(app, "a@x.com", full_name="Alice")

        await app.profiles.edit_as("a@x.com")

        assert app.session.email == "a@x.com"
        log = await app.store.get_json(StorageKeys.ADMIN_AUDIT_LOG)
        assert log[0] == {"action": "edit_as_a@x.com", "adminEmail": "admin@x.com", "timestamp": log[0]["timestamp"]}

    async def test_edit_as_requires_admin(self, app):
        await login_as(app, "user@x.com")
        await seed_profile(app, "a@x.com")

        with pytest.raises(UnauthorizedError):
            await app.profiles.edit_as("a@x.com")
        assert app.session.email == "user@x.com"
