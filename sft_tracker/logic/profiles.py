"""
Profile directory logic for the SFT tracker.
Handles lookup and search, admin role changes, user deletion and profile edits.
"""

import logging
from typing import Any

from sft_tracker.data.repositories import ProfileRepository, TrainingRecordRepository
from sft_tracker.data.schemas import ProfileUpdate, UserProfile, normalize_email
from sft_tracker.exceptions import MissingRequiredFieldError, NoSuchUserError, ValidationError
from sft_tracker.logic.audit import AuditLogic
from sft_tracker.logic.authentication import hash_password
from sft_tracker.services.session_context import SessionContext

logger = logging.getLogger(__name__)


class ProfileLogic:
    """Profile directory business logic."""

    def __init__(
        self,
        profiles: ProfileRepository,
        records: TrainingRecordRepository,
        session: SessionContext,
        audit: AuditLogic,
        password_min_length: int = 1,
    ):
        self.profiles = profiles
        self.records = records
        self.session = session
        self.audit = audit
        self.password_min_length = password_min_length

    async def find_by_email(self, email: str) -> UserProfile | None:
        return await self.profiles.get_by_email(email)

    async def list_users(self) -> list[UserProfile]:
        """All profiles sorted by email. Admin only."""
        self.session.require_admin()
        return sorted(await self.profiles.list_all(), key=lambda p: p.email)

    async def search(self, term: str) -> list[UserProfile]:
        """
        Case-insensitive substring search over email and full name.

        Args:
            term: Search term

        Returns:
            list[UserProfile]: Matches sorted by email

        Raises:
            MissingRequiredFieldError: If the term is blank
            UnauthorizedError: If the session is not an admin
        """
        self.session.require_admin()
        needle = (term or "").strip().lower()
        if not needle:
            raise MissingRequiredFieldError("term")

        matches = [
            p for p in await self.profiles.list_all()
            if needle in p.email or needle in p.full_name.lower()
        ]
        return sorted(matches, key=lambda p: p.email)

    async def set_admin_flag(self, email: str, value: bool) -> UserProfile:
        """
        Grant or revoke admin rights.

        If the target is the logged-in user, the active session is refreshed
        immediately.

        Raises:
            UnauthorizedError: If the session is not an admin
            NoSuchUserError: If no profile matches the email
        """
        self.session.require_admin()
        target = normalize_email(email)
        profile = await self.profiles.get_by_email(target)
        if profile is None:
            raise NoSuchUserError(target)

        profile.is_admin = bool(value)
        await self.profiles.upsert(profile)
        await self.session.refresh(profile)
        await self.audit.record(f"{'grant' if value else 'revoke'}_admin_{target}")

        logger.info(f"Admin flag for {target} set to {profile.is_admin}")
        return profile

    async def grant_admin(self, email: str) -> UserProfile:
        return await self.set_admin_flag(email, True)

    async def revoke_admin(self, email: str) -> UserProfile:
        return await self.set_admin_flag(email, False)

    async def delete_user(self, email: str) -> UserProfile:
        """
        Remove a profile and its hide flag.

        Training records and health declarations are kept; they can be removed
        with a records clear. If the deleted user is logged in, the session ends.

        Raises:
            UnauthorizedError: If the session is not an admin
            NoSuchUserError: If no profile matches the email
        """
        self.session.require_admin()
        target = normalize_email(email)
        profile = await self.profiles.get_by_email(target)
        if profile is None:
            raise NoSuchUserError(target)

        await self.profiles.delete(target)
        await self.records.set_hidden(target, False)
        await self.audit.record(f"delete_user_{target}")
        if self.session.is_current(target):
            await self.session.end()

        logger.info(f"Deleted user {target}")
        return profile

    async def update_own_profile(self, changes: ProfileUpdate | dict[str, Any]) -> UserProfile:
        """
        Edit the logged-in user's own profile.

        Email and admin flag cannot be changed here. A new password is hashed.

        Args:
            changes: Fields to change

        Returns:
            UserProfile: The updated profile, also stored in the active session

        Raises:
            AuthenticationRequiredError: If nobody is logged in
            NoSuchUserError: If the session's profile has been deleted
        """
        if not isinstance(changes, ProfileUpdate):
            changes = ProfileUpdate.model_validate(changes)

        user = self.session.require_user()
        current = await self.profiles.get_by_email(user.email)
        if current is None:
            raise NoSuchUserError(user.email)

        updated = UserProfile.model_validate({**current.model_dump(), **changes.changed_fields()})
        if changes.password is not None and changes.password.strip():
            password = changes.password.strip()
            if len(password) < self.password_min_length:
                raise ValidationError(
                    f"Password shorter than {self.password_min_length} characters",
                    field="password",
                    user_message=f"Password must be at least {self.password_min_length} characters.",
                )
            updated.password_hash = hash_password(password)

        await self.profiles.upsert(updated)
        await self.session.start(updated)
        logger.info(f"Profile updated for {updated.email}", extra={"user": updated.email})
        return updated

    async def edit_as(self, email: str) -> UserProfile:
        """
        Switch the active session to another user's profile.

        Raises:
            UnauthorizedError: If the session is not an admin
            NoSuchUserError: If no profile matches the email
        """
        self.session.require_admin()
        target = normalize_email(email)
        profile = await self.profiles.get_by_email(target)
        if profile is None:
            raise NoSuchUserError(target)

        await self.audit.record(f"edit_as_{target}")
        await self.session.start(profile)
        return profile
