"""
Active session service for the SFT tracker.
Holds the snapshot of who is using the device and persists it under `activeProfile`.
An instance is passed explicitly to every logic component.
"""

import logging

from sft_tracker.data.repositories import ActiveSessionRepository
from sft_tracker.data.schemas import UserProfile, normalize_email
from sft_tracker.exceptions import AuthenticationRequiredError, UnauthorizedError

logger = logging.getLogger(__name__)


class SessionContext:
    """
    The active session: a cached copy of one user profile.

    The snapshot is not kept in sync with the profile directory; callers that
    change the logged-in user's profile refresh it through `refresh`.
    """

    def __init__(self, repository: ActiveSessionRepository, profile: UserProfile | None = None):
        self.repository = repository
        self._profile = profile

    async def load(self) -> UserProfile | None:
        """Restore the persisted snapshot, e.g. on application start."""
        self._profile = await self.repository.get()
        if self._profile:
            logger.info(f"Restored active session for {self._profile.email}")
        return self._profile

    @property
    def profile(self) -> UserProfile | None:
        return self._profile

    @property
    def email(self) -> str | None:
        return self._profile.email if self._profile else None

    @property
    def is_authenticated(self) -> bool:
        return self._profile is not None

    @property
    def is_admin(self) -> bool:
        return bool(self._profile and self._profile.is_admin)

    def is_current(self, email: str) -> bool:
        return self._profile is not None and self._profile.email == normalize_email(email)

    async def start(self, profile: UserProfile) -> None:
        """Replace the session with a snapshot of the given profile."""
        await self.repository.set(profile)
        self._profile = profile
        logger.info(f"Active session set to {profile.email}", extra={"user": profile.email})

    async def refresh(self, profile: UserProfile) -> bool:
        """
        Refresh the snapshot if it refers to the same user.

        Returns:
            bool: True if the session was refreshed
        """
        if not self.is_current(profile.email):
            return False
        await self.start(profile)
        return True

    async def end(self) -> UserProfile | None:
        """Clear the session unconditionally; returns the profile that was active."""
        previous = self._profile
        # The in-memory session ends even if the persisted snapshot cannot be removed
        try:
            await self.repository.clear()
        finally:
            self._profile = None
        if previous:
            logger.info(f"Active session cleared for {previous.email}", extra={"user": previous.email})
        return previous

    def require_user(self) -> UserProfile:
        """
        Require a logged-in user.

        Raises:
            AuthenticationRequiredError: If no session is active
        """
        if self._profile is None:
            raise AuthenticationRequiredError()
        return self._profile

    def require_admin(self) -> UserProfile:
        """
        Require an admin session.

        Raises:
            AuthenticationRequiredError: If no session is active
            UnauthorizedError: If the active user is not an admin
        """
        profile = self.require_user()
        if not profile.is_admin:
            raise UnauthorizedError(details={"email": profile.email})
        return profile
