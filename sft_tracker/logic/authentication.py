"""
Authentication logic for the SFT tracker.
Handles registration, login with legacy credential migration, logout and admin bootstrap.
"""

import hashlib
import logging
import re
from typing import Any

from sft_tracker.data.repositories import ProfileRepository
from sft_tracker.data.schemas import ProfileDraft, UserProfile, normalize_email
from sft_tracker.exceptions import (
    DuplicateEmailError,
    InvalidCredentialError,
    MissingRequiredFieldError,
    NoSuchUserError,
    UnauthorizedError,
    ValidationError,
)
from sft_tracker.logic.audit import AuditLogic
from sft_tracker.services.session_context import SessionContext

logger = logging.getLogger(__name__)

_CREDENTIAL_HASH = re.compile(r"[0-9a-fA-F]{64}")


def hash_password(password: str) -> str:
    """SHA-256 hex digest of the trimmed password."""
    return hashlib.sha256(password.strip().encode("utf-8")).hexdigest()


def is_credential_hash(value: str | None) -> bool:
    """True if the value is exactly 64 hex characters, i.e. not legacy plaintext."""
    return bool(value) and _CREDENTIAL_HASH.fullmatch(value) is not None


class AuthenticationLogic:
    """Authentication business logic."""

    def __init__(
        self,
        profiles: ProfileRepository,
        session: SessionContext,
        audit: AuditLogic,
        password_min_length: int = 1,
        legacy_profile_fallback: bool = True,
    ):
        self.profiles = profiles
        self.session = session
        self.audit = audit
        self.password_min_length = password_min_length
        self.legacy_profile_fallback = legacy_profile_fallback

    async def register(self, draft: ProfileDraft | dict[str, Any]) -> UserProfile:
        """
        Register a new user.

        The active session is left untouched and any submitted admin flag is ignored.

        Args:
            draft: Registration data

        Returns:
            UserProfile: The stored profile

        Raises:
            MissingRequiredFieldError: If email or password is empty
            ValidationError: If the password is too short
            DuplicateEmailError: If the email is already registered
        """
        if not isinstance(draft, ProfileDraft):
            draft = ProfileDraft.model_validate(draft)

        email = normalize_email(draft.email)
        password = draft.password.strip()
        if not email:
            raise MissingRequiredFieldError("email")
        if not password:
            raise MissingRequiredFieldError("password")
        self._check_password_length(password)

        if await self.profiles.get_by_email(email):
            raise DuplicateEmailError(email)

        profile = UserProfile(
            **draft.model_dump(exclude={"email", "password"}),
            email=email,
            password_hash=hash_password(password),
            is_admin=False,
        )
        await self.profiles.upsert(profile)

        logger.info(f"User registered successfully: {email}", extra={"user": email})
        return profile

    async def login(self, email: str, password: str) -> UserProfile:
        """
        Authenticate a user and make them the active session.

        Stored plaintext credentials are migrated to hashes on the way.

        Args:
            email: Login email, normalized before lookup
            password: Password as typed

        Returns:
            UserProfile: The authenticated profile

        Raises:
            NoSuchUserError: If no profile matches the email
            InvalidCredentialError: If the password does not match
        """
        lookup = normalize_email(email)
        typed = (password or "").strip()

        directory = await self.profiles.list_all()
        if not directory and self.legacy_profile_fallback:
            if await self.profiles.fold_legacy():
                directory = await self.profiles.list_all()

        profile = next((p for p in directory if p.email == lookup), None)
        if profile is None:
            raise NoSuchUserError(lookup)

        stored = profile.password_hash
        plaintext = None
        if stored and not is_credential_hash(stored):
            plaintext = stored
            profile.password_hash = hashlib.sha256(stored.encode("utf-8")).hexdigest()
            await self.profiles.upsert(profile)
            logger.info(f"Migrated plaintext credential to hash for {lookup}")

        hash_match = bool(profile.password_hash) and profile.password_hash.lower() == hash_password(typed)
        plaintext_match = plaintext is not None and plaintext == typed
        if not (hash_match or plaintext_match):
            logger.warning(f"Failed login attempt for {lookup}", extra={"user": lookup})
            raise InvalidCredentialError()

        await self.session.start(profile)
        logger.info(f"User logged in successfully: {lookup}", extra={"user": lookup})
        return profile

    async def logout(self) -> UserProfile | None:
        """
        Clear the active session unconditionally.

        Returns:
            UserProfile | None: The profile that was logged in, if any
        """
        if self.session.is_admin:
            await self.audit.record("admin_logout")
        return await self.session.end()

    async def bootstrap_admin(self, email: str, password: str) -> UserProfile:
        """
        Promote a user to admin while the directory has no admin at all.

        An unregistered email is registered first; an existing one must present
        its password.

        Raises:
            UnauthorizedError: If an admin already exists
            InvalidCredentialError: If the password does not match an existing profile
        """
        if any(p.is_admin for p in await self.profiles.list_all()):
            raise UnauthorizedError(
                "An admin already exists",
                user_message="An admin account already exists. Ask an admin to grant access.",
            )

        profile = await self.profiles.get_by_email(email)
        if profile is None:
            profile = await self.register({"email": email, "password": password})
        elif profile.password_hash.lower() != hash_password(password or ""):
            raise InvalidCredentialError()

        profile.is_admin = True
        await self.profiles.upsert(profile)
        await self.session.refresh(profile)
        await self.audit.record(f"bootstrap_admin_{profile.email}")
        logger.warning(f"Bootstrapped first admin: {profile.email}", extra={"user": profile.email})
        return profile

    async def migrate_plaintext_credentials(self) -> int:
        """
        Hash every stored credential that is still legacy plaintext.

        Returns:
            int: Number of profiles migrated
        """
        profiles = await self.profiles.list_all()
        migrated = 0
        for profile in profiles:
            if profile.password_hash and not is_credential_hash(profile.password_hash):
                profile.password_hash = hashlib.sha256(profile.password_hash.encode("utf-8")).hexdigest()
                migrated += 1
        if migrated:
            await self.profiles.save_all(profiles)
            logger.info(f"Migrated {migrated} plaintext credential(s) to hashes")
        return migrated

    def _check_password_length(self, password: str) -> None:
        if len(password) < self.password_min_length:
            raise ValidationError(
                f"Password shorter than {self.password_min_length} characters",
                field="password",
                user_message=f"Password must be at least {self.password_min_length} characters.",
            )
