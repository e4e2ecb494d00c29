"""
Audit and reporting logic for the SFT tracker.
Handles the admin audit log, today's training overview and per-user record clearing.
"""

import logging
import re
from dataclasses import dataclass
from datetime import tzinfo

from sft_tracker.data.repositories import (
    AdminAuditRepository,
    ProfileRepository,
    TrainingRecordRepository,
)
from sft_tracker.data.schemas import AdminAuditEntry, TodayRecordRow, normalize_email
from sft_tracker.exceptions import MissingRequiredFieldError, SFTError
from sft_tracker.services.session_context import SessionContext
from sft_tracker.utils.timeutils import Clock, local_day, utc_now

logger = logging.getLogger(__name__)

SORT_FIELDS = ("start", "end")


def tel_uri(contact: str | None) -> str | None:
    """Dialable `tel:` URI keeping only '+' and digits, or None when nothing remains."""
    digits = re.sub(r"[^+\d]", "", contact or "")
    return f"tel:{digits}" if digits else None


@dataclass
class ClosedSortState:
    """Current ordering of the closed-records view."""

    field: str | None = None
    ascending: bool = True


@dataclass
class TodayOverview:
    """Today's records split by state."""

    open: list[TodayRecordRow]
    closed: list[TodayRecordRow]


class AuditLogic:
    """
    Logic layer for the admin audit log.
    Entries are prepended, so the log reads newest first.
    """

    def __init__(
        self,
        repository: AdminAuditRepository,
        session: SessionContext,
        clock: Clock = utc_now,
        enabled: bool = True,
    ):
        self.repository = repository
        self.session = session
        self.clock = clock
        self.enabled = enabled

    async def record(self, action: str) -> AdminAuditEntry | None:
        """
        Record a privileged action against the current session's email.

        Best effort: failures are logged and never raised.

        Args:
            action: Action tag, e.g. ``grant_admin_<email>``

        Returns:
            AdminAuditEntry | None: The stored entry, or None if nothing was stored
        """
        if not self.enabled:
            logger.debug(f"Audit logging disabled, dropping action {action}")
            return None

        entry = AdminAuditEntry(
            action=action,
            admin_email=self.session.email or "unknown",
            timestamp=self.clock(),
        )
        try:
            await self.repository.add(entry)
        except SFTError as e:
            logger.error(f"Failed to record audit action {action}: {e}", extra={"operation": "audit"})
            return None

        logger.info(f"Audit: {action}", extra={"user": entry.admin_email, "operation": "audit"})
        return entry

    async def entries(self) -> list[AdminAuditEntry]:
        """Audit log, newest first. Admin only."""
        self.session.require_admin()
        return await self.repository.list_all()

    async def clear(self) -> None:
        """Bulk clear of the audit log. Admin only."""
        admin = self.session.require_admin()
        await self.repository.clear()
        logger.warning(f"Admin audit log cleared by {admin.email}", extra={"user": admin.email})


class ReportingLogic:
    """Logic layer for admin reporting over training records."""

    def __init__(
        self,
        records: TrainingRecordRepository,
        profiles: ProfileRepository,
        session: SessionContext,
        audit: AuditLogic,
        clock: Clock = utc_now,
        tz: tzinfo | None = None,
    ):
        self.records = records
        self.profiles = profiles
        self.session = session
        self.audit = audit
        self.clock = clock
        self.tz = tz

    async def today(self) -> TodayOverview:
        """
        Records created during the current local calendar day.

        Rows are enriched with the owner's profile fields as they are now and
        sorted newest first.

        Returns:
            TodayOverview: Open and closed rows
        """
        self.session.require_admin()

        today = local_day(self.clock(), self.tz)
        owners = {p.email: p for p in await self.profiles.list_all()}

        open_rows: list[TodayRecordRow] = []
        closed_rows: list[TodayRecordRow] = []
        for record in await self.records.list_all():
            if local_day(record.timestamp, self.tz) != today:
                continue
            owner = owners.get(record.owner_email or "")
            row = TodayRecordRow(
                **record.model_dump(),
                owner_rank=owner.rank if owner else "",
                owner_name=owner.full_name if owner else "",
                owner_parent_unit=owner.parent_unit if owner else "",
                owner_sub_unit=owner.sub_unit if owner else "",
                owner_contact=owner.contact_number if owner else "",
                owner_contact_uri=tel_uri(owner.contact_number) if owner else None,
            )
            (closed_rows if record.is_closed else open_rows).append(row)

        open_rows.sort(key=lambda r: r.timestamp, reverse=True)
        closed_rows.sort(key=lambda r: r.timestamp, reverse=True)
        return TodayOverview(open=open_rows, closed=closed_rows)

    async def today_open(self) -> list[TodayRecordRow]:
        return (await self.today()).open

    async def today_closed(self) -> list[TodayRecordRow]:
        return (await self.today()).closed

    @staticmethod
    def sort_closed(
        rows: list[TodayRecordRow], field: str, state: ClosedSortState | None = None
    ) -> tuple[list[TodayRecordRow], ClosedSortState]:
        """
        Sort closed rows by start or end time.

        Selecting the field already in effect toggles the direction; selecting
        a new field sorts ascending. Missing times fall back to the record timestamp.

        Args:
            rows: Rows to sort
            field: ``start`` or ``end``
            state: Ordering currently in effect

        Returns:
            tuple: Sorted rows and the new ordering
        """
        if field not in SORT_FIELDS:
            raise ValueError(f"Unsupported sort field: {field}")

        state = state or ClosedSortState()
        if state.field == field:
            new_state = ClosedSortState(field=field, ascending=not state.ascending)
        else:
            new_state = ClosedSortState(field=field, ascending=True)

        def sort_key(row: TodayRecordRow):
            value = row.start_time if field == "start" else row.end_time
            return value or row.timestamp

        return sorted(rows, key=sort_key, reverse=not new_state.ascending), new_state

    async def clear_records_for(self, email: str) -> int:
        """
        Remove every training record of a user and clear their hide flag.

        Args:
            email: Owner email, normalized before matching

        Returns:
            int: Number of records removed

        Raises:
            UnauthorizedError: If the session is not an admin
            MissingRequiredFieldError: If the email is empty
        """
        self.session.require_admin()
        target = normalize_email(email)
        if not target:
            raise MissingRequiredFieldError("email")

        removed = await self.records.delete_by_owner(target)
        await self.records.set_hidden(target, False)
        await self.audit.record(f"clear_records_{target}")
        logger.info(f"Cleared {removed} training records for {target}")
        return removed
