"""
Health declaration logic for the SFT tracker.
Evaluates the daily screening questionnaire and gates training start on a fresh, fit declaration.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sft_tracker.data.repositories import HealthDeclarationRepository
from sft_tracker.data.schemas import HealthDeclaration, UnfitEvent, UnfitLogEntry, normalize_email
from sft_tracker.exceptions import (
    HealthCheckRequiredError,
    HealthCheckStaleError,
    IncompleteAnswersError,
    SFTError,
)
from sft_tracker.services.session_context import SessionContext
from sft_tracker.utils.timeutils import Clock, utc_now

logger = logging.getLogger(__name__)

YES = "Yes"
NO = "No"

QUESTIONS = (
    "Have you ever experienced a diagnosis of/treatment for heart disease or stroke, or "
    "pain/discomfort/pressure in your chest during activities of daily living or during your "
    "physical activity within the past 6 months?",
    "Have you ever experienced a diagnosis of/treatment for high blood pressure (BP), or a "
    "resting BP of 160/90 mmHg or higher within the past 6 months?",
    "Have you ever experience dizziness or light-headedness during physical activity within "
    "the past 6 months?",
    "Have you ever experienced loss of consciousness/fainting for any reason within the past 6 months?",
    "Do you currently have pain or swelling in any part of your body (e.g. from an injury, acute "
    "flare-up of arthritis, or back pain) that affects your ability to be physically active?",
    "Has a Healthcare provider told you that you should avoid or modify certain types of physical activity?",
    "Do you have any other medical or physical conditions (such as diabetes, cancer, osteoporosis, "
    "asthma, spinal cord injury) that may affect your ability to be physically active?",
    "Have you drank beyond point of thirst?",
    "Do you have any medical excuse, pre-existing medical condition or injury that prevents you "
    "from taking part in the activity?",
    "Are you feeling unwell? Example, flu, diarrhea or vomiting in the past 24 hours?",
    "Do you have at least 7 hours of uninterrupted rest?",
    "Is your temperature 37.5°C or higher?",
    "Do you have underlying medical conditions that require medical aid for you to train safely? "
    "For example, Asthmatic personnel.",
)

REQUIRED_ANSWERS = (NO, NO, NO, NO, NO, NO, NO, YES, NO, NO, YES, NO, NO)

PREVIEW_LIMIT = 3


def normalize_answer(value) -> str | None:
    """Map user input to 'Yes', 'No' or None (unanswered)."""
    if value is None:
        return None
    if isinstance(value, bool):
        return YES if value else NO
    text = str(value).strip().lower()
    if text in ("yes", "y", "true"):
        return YES
    if text in ("no", "n", "false"):
        return NO
    return None


def failed_indices(answers: list[str | None]) -> list[int]:
    """Zero-based positions whose answer differs from the required answer."""
    return [i for i, required in enumerate(REQUIRED_ANSWERS) if i >= len(answers) or answers[i] != required]


def failed_preview(indices: list[int]) -> str:
    return "\n".join(f"{i + 1}. {QUESTIONS[i]}" for i in indices[:PREVIEW_LIMIT])


def progress(answers: list[str | None]) -> int:
    """Percentage of questions answered, rounded."""
    answered = sum(1 for a in answers[: len(QUESTIONS)] if normalize_answer(a) is not None)
    return round(answered / len(QUESTIONS) * 100)


@dataclass
class HealthCheckResult:
    """Outcome of a questionnaire submission."""

    is_fit: bool
    timestamp: datetime
    failed_indices: list[int] = field(default_factory=list)

    @property
    def failed_questions(self) -> list[str]:
        return [QUESTIONS[i] for i in self.failed_indices]

    @property
    def message(self) -> str:
        if self.is_fit:
            return "Your health declaration was saved."
        failed = ", ".join(str(i + 1) for i in self.failed_indices)
        return (
            "Based on your answers you are currently unfit to train today.\n"
            f"Failed checks: {failed}.\nPlease train another day when you are fit."
        )


class HealthLogic:
    """Health declaration business logic."""

    def __init__(
        self,
        repository: HealthDeclarationRepository,
        session: SessionContext,
        clock: Clock = utc_now,
        freshness_minutes: int = 10,
    ):
        self.repository = repository
        self.session = session
        self.clock = clock
        self.freshness_window = timedelta(minutes=freshness_minutes)

    @property
    def freshness_minutes(self) -> int:
        return int(self.freshness_window.total_seconds() // 60)

    async def submit(self, answers: list) -> HealthCheckResult:
        """
        Submit the questionnaire for the logged-in user, or anonymously.

        A fit result overwrites the current declaration. An unfit result only
        adds to the user's unfit history and the global unfit log; failures to
        store those are logged, not raised.

        Args:
            answers: One answer per question

        Returns:
            HealthCheckResult: Fit or unfit with the failed positions

        Raises:
            IncompleteAnswersError: If any question is unanswered
        """
        normalized = [normalize_answer(a) for a in answers]
        normalized += [None] * (len(QUESTIONS) - len(normalized))
        unanswered = [i for i, a in enumerate(normalized) if a is None]
        if unanswered or len(normalized) != len(QUESTIONS):
            raise IncompleteAnswersError(unanswered or list(range(len(QUESTIONS), len(normalized))))

        email = self.session.email
        now = self.clock()
        failed = failed_indices(normalized)

        if failed:
            await self._record_unfit(email, normalized, failed, now)
            logger.info(f"Unfit health declaration, failed checks {[i + 1 for i in failed]}", extra={"user": email or ""})
            return HealthCheckResult(is_fit=False, timestamp=now, failed_indices=failed)

        declaration = HealthDeclaration(timestamp=now, answers=normalized, failed_indices=[], is_fit=True)
        await self.repository.save_current(email, declaration)
        logger.info("Health declaration saved", extra={"user": email or ""})
        return HealthCheckResult(is_fit=True, timestamp=now)

    async def _record_unfit(self, email: str | None, answers: list[str | None], failed: list[int], now: datetime) -> None:
        event = UnfitEvent(timestamp=now, answers=answers, is_fit=False, email=email, failed_indices=failed)
        entry = UnfitLogEntry(
            timestamp=now, email=email or "unknown", failed_indices=failed, preview=failed_preview(failed)
        )
        try:
            await self.repository.add_unfit(email, event)
            await self.repository.add_unfit_log_entry(entry)
        except SFTError as e:
            logger.error(f"Failed to save unfit record: {e}")

    async def current_declaration(self, email: str | None = None) -> HealthDeclaration | None:
        """Latest stored declaration of the given user, defaulting to the logged-in one."""
        target = normalize_email(email) if email else self.session.email
        return await self.repository.get_current(target)

    def is_usable(self, declaration: HealthDeclaration | None, now: datetime | None = None) -> bool:
        """True if the declaration is complete, fit and within the freshness window."""
        if declaration is None or not declaration.is_complete or declaration.timestamp is None:
            return False
        if not declaration.is_fit or failed_indices(declaration.answers):
            return False
        return (now or self.clock()) - declaration.timestamp <= self.freshness_window

    async def assert_ready_for_training(self, email: str, now: datetime | None = None) -> HealthDeclaration:
        """
        Require a usable declaration before a training session starts.

        Raises:
            HealthCheckRequiredError: If no complete, fit declaration exists
            HealthCheckStaleError: If the declaration is older than the window
        """
        now = now or self.clock()
        declaration = await self.current_declaration(email)
        if declaration is None or not declaration.is_complete:
            raise HealthCheckRequiredError()
        if not declaration.is_fit or failed_indices(declaration.answers):
            raise HealthCheckRequiredError(details={"failed_indices": failed_indices(declaration.answers)})
        if declaration.timestamp is None:
            raise HealthCheckStaleError(None, self.freshness_minutes)

        age = now - declaration.timestamp
        if age > self.freshness_window:
            raise HealthCheckStaleError(age.total_seconds(), self.freshness_minutes)
        return declaration

    async def unfit_history(self) -> list[UnfitEvent]:
        """The logged-in user's unfit declarations, newest first."""
        user = self.session.require_user()
        return await self.repository.list_unfit(user.email)

    async def unfit_log(self) -> list[UnfitLogEntry]:
        """Global unfit log, newest first. Admin only."""
        self.session.require_admin()
        return await self.repository.list_unfit_log()

    async def clear_unfit_log(self) -> None:
        admin = self.session.require_admin()
        await self.repository.clear_unfit_log()
        logger.warning(f"Unfit log cleared by {admin.email}", extra={"user": admin.email})
