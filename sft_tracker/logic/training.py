"""
Training session logic for the SFT tracker.
Implements the per-user start/end state machine, record listing and the hide flag.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sft_tracker.data.repositories import TrainingRecordRepository
from sft_tracker.data.schemas import TrainingRecord, TrainingType, normalize_email
from sft_tracker.exceptions import NoActiveSessionError, SessionAlreadyActiveError, ValidationError
from sft_tracker.logic.health import HealthLogic
from sft_tracker.services.session_context import SessionContext
from sft_tracker.utils.timeutils import Clock, utc_now

logger = logging.getLogger(__name__)


def parse_training_type(value: TrainingType | str | None) -> TrainingType:
    """Resolve a training type by value or name, case-insensitively."""
    if isinstance(value, TrainingType):
        return value
    text = str(value or "").strip().lower().replace("_", " ")
    for training_type in TrainingType:
        if text in (training_type.value.lower(), training_type.name.lower().replace("_", " ")):
            return training_type
    raise ValidationError(
        f"Unknown training type: {value!r}",
        field="training_type",
        user_message=f"Training type must be one of: {', '.join(t.value for t in TrainingType)}.",
    )


def format_duration(record: TrainingRecord) -> str | None:
    """Elapsed time of a closed record as HH:MM:SS; None while the record is open."""
    if record.end_time is None or record.start_time is None:
        return None
    seconds = max(0, int((record.end_time - record.start_time).total_seconds()))
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


@dataclass
class TrainingSessionState:
    """Local view of the current session shown by a front end."""

    selected_type: TrainingType = TrainingType.RUN
    start_time: datetime | None = None
    record_timestamp: datetime | None = None
    owner_email: str | None = None

    @property
    def is_running(self) -> bool:
        return self.record_timestamp is not None

    def clear(self) -> None:
        self.start_time = None
        self.record_timestamp = None


class TrainingLogic:
    """
    Training session business logic.

    At most one active record exists per owner. The record's creation
    timestamp identifies it for later updates.
    """

    def __init__(
        self,
        records: TrainingRecordRepository,
        health: HealthLogic,
        session: SessionContext,
        clock: Clock = utc_now,
    ):
        self.records = records
        self.health = health
        self.session = session
        self.clock = clock
        self.state = TrainingSessionState()

    async def start(self, training_type: TrainingType | str | None = None) -> TrainingRecord:
        """
        Start a training session for the logged-in user.

        Args:
            training_type: Activity type; defaults to the current selection

        Returns:
            TrainingRecord: The new active record

        Raises:
            HealthCheckRequiredError: If no complete, fit declaration exists
            HealthCheckStaleError: If the declaration is too old
            SessionAlreadyActiveError: If the user already has an active record
        """
        user = self.session.require_user()
        selected = parse_training_type(training_type) if training_type else self.state.selected_type
        now = self.clock()

        await self.health.assert_ready_for_training(user.email, now)

        if await self.records.find_active(user.email):
            raise SessionAlreadyActiveError(user.email)

        record = TrainingRecord(
            owner_email=user.email,
            training_type=selected.value,
            start_time=now,
            end_time=None,
            timestamp=now,
            is_active=True,
        )
        await self.records.upsert(record)

        self.state = TrainingSessionState(
            selected_type=selected, start_time=now, record_timestamp=now, owner_email=user.email
        )
        logger.info(f"Training session started: {selected.value}", extra={"user": user.email})
        return record

    async def change_type(self, training_type: TrainingType | str) -> TrainingRecord | None:
        """
        Change the selected training type.

        The active record is updated in place when there is one; otherwise
        only the local selection changes.
        """
        selected = parse_training_type(training_type)
        self.state.selected_type = selected

        if not self.session.is_authenticated:
            return None
        active = await self.records.find_active(self.session.email)
        if active is None:
            return None

        active.training_type = selected.value
        await self.records.upsert(active)
        logger.info(f"Active session type changed to {selected.value}", extra={"user": self.session.email})
        return active

    async def end(self) -> TrainingRecord:
        """
        End the logged-in user's active session.

        Raises:
            NoActiveSessionError: If there is no active record
        """
        user = self.session.require_user()
        active = await self.records.find_active(user.email)
        if active is None:
            self.state.clear()
            raise NoActiveSessionError(user.email)

        active.end_time = self.clock()
        active.is_active = False
        await self.records.upsert(active)
        self.state.clear()

        logger.info(f"Training session ended after {format_duration(active)}", extra={"user": user.email})
        return active

    async def resume_on_focus(self) -> TrainingSessionState:
        """
        Rebuild the local state from the store.

        Safe to call any number of times; it never writes.
        """
        email = self.session.email
        if email != self.state.owner_email:
            self.state = TrainingSessionState(owner_email=email)
        if email is None:
            self.state.clear()
            return self.state

        active = await self.records.find_active(email)
        if active is None:
            self.state.clear()
            return self.state

        self.state.start_time = active.start_time or active.timestamp
        self.state.record_timestamp = active.timestamp
        try:
            self.state.selected_type = parse_training_type(active.training_type)
        except ValidationError:
            logger.warning(f"Active record has unknown training type {active.training_type!r}")
        return self.state

    async def list_own(self) -> list[TrainingRecord]:
        """The logged-in user's records, newest first; empty while hidden."""
        user = self.session.require_user()
        if await self.records.is_hidden(user.email):
            return []
        records = await self.records.list_by_owner(user.email)
        return sorted(records, key=lambda r: r.timestamp, reverse=True)

    async def hide(self) -> None:
        user = self.session.require_user()
        await self.records.set_hidden(user.email, True)

    async def unhide(self) -> None:
        user = self.session.require_user()
        await self.records.set_hidden(user.email, False)

    async def migrate_legacy_records(self, owner_email: str) -> int:
        """
        Stamp records that have no owner with the given email.

        Meant to run once at startup; see StartupService.

        Returns:
            int: Number of records stamped
        """
        owner = normalize_email(owner_email)
        stamped = await self.records.stamp_ownerless(owner)
        if stamped:
            logger.info(f"Assigned {stamped} legacy training records to {owner}")
        return stamped
