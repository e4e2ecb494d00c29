"""
Repository classes for the data access layer.
One repository per persisted key family. Repositories are the only code that
converts between raw stored JSON and the canonical schemas.

All read-modify-write sequences here are non-atomic: they are correct only
while a single client writes to the store.
"""

import logging
from typing import Any, Generic, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .schemas import (
    AdminAuditEntry,
    HealthDeclaration,
    TrainingRecord,
    UnfitEvent,
    UnfitLogEntry,
    UserProfile,
    normalize_email,
)
from .store import KeyValueStore, StorageKeys

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

HIDDEN_SENTINEL = "true"


class JsonListRepository(Generic[SchemaT]):
    """Base repository over a key holding a JSON list of one schema."""

    schema: type[SchemaT]

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def _read(self, key: str) -> tuple[list[SchemaT], list[Any]]:
        """
        Load and validate a stored list.

        Returns:
            tuple: Parsed items in stored order, and raw entries that failed
            validation (kept so a rewrite never drops data)
        """
        raw = await self.store.get_json(key, default=[])
        if not isinstance(raw, list):
            logger.warning(f"Expected a list under '{key}', found {type(raw).__name__}; treating as empty")
            return [], []

        items: list[SchemaT] = []
        unparsed: list[Any] = []
        for entry in raw:
            try:
                items.append(self.schema.model_validate(entry))
            except PydanticValidationError as e:
                logger.warning(f"Skipping invalid {self.schema.__name__} under '{key}': {e.error_count()} error(s)")
                unparsed.append(entry)
        return items, unparsed

    async def _write(self, key: str, items: list[SchemaT], unparsed: list[Any] | None = None) -> None:
        payload = [item.to_storage() for item in items]
        payload.extend(unparsed or [])
        await self.store.set_json(key, payload)

    async def _prepend(self, key: str, item: SchemaT) -> None:
        items, unparsed = await self._read(key)
        items.insert(0, item)
        await self._write(key, items, unparsed)


class ProfileRepository(JsonListRepository[UserProfile]):
    """Repository for the user profile directory."""

    schema = UserProfile

    async def list_all(self) -> list[UserProfile]:
        profiles, _ = await self._read(StorageKeys.PROFILES)
        return profiles

    async def save_all(self, profiles: list[UserProfile]) -> None:
        _, unparsed = await self._read(StorageKeys.PROFILES)
        await self._write(StorageKeys.PROFILES, profiles, unparsed)

    async def get_by_email(self, email: str) -> UserProfile | None:
        """Get a profile by normalized email."""
        target = normalize_email(email)
        for profile in await self.list_all():
            if profile.email == target:
                return profile
        return None

    async def upsert(self, profile: UserProfile) -> UserProfile:
        """Replace the profile with the same email, or append it."""
        profiles, unparsed = await self._read(StorageKeys.PROFILES)
        for index, existing in enumerate(profiles):
            if existing.email == profile.email:
                profiles[index] = profile
                break
        else:
            profiles.append(profile)
        await self._write(StorageKeys.PROFILES, profiles, unparsed)
        return profile

    async def delete(self, email: str) -> bool:
        target = normalize_email(email)
        profiles, unparsed = await self._read(StorageKeys.PROFILES)
        remaining = [p for p in profiles if p.email != target]
        if len(remaining) == len(profiles):
            return False
        await self._write(StorageKeys.PROFILES, remaining, unparsed)
        return True

    async def get_legacy(self) -> UserProfile | None:
        """The single profile kept under the pre-directory `userProfile` key."""
        raw = await self.store.get_json(StorageKeys.LEGACY_PROFILE)
        if not raw:
            return None
        try:
            return UserProfile.model_validate(raw)
        except PydanticValidationError as e:
            logger.warning(f"Ignoring invalid legacy profile: {e.error_count()} error(s)")
            return None

    async def fold_legacy(self) -> UserProfile | None:
        """
        Move the legacy single profile into the directory.

        The legacy key is kept; an entry already present in the directory wins.

        Returns:
            UserProfile | None: The folded profile, or None if there was nothing to fold
        """
        legacy = await self.get_legacy()
        if legacy is None:
            return None
        if await self.get_by_email(legacy.email) is None:
            await self.upsert(legacy)
            logger.info(f"Folded legacy profile into directory: {legacy.email}")
            return legacy
        return None

    async def normalize(self) -> int:
        """
        Rewrite the stored directory in canonical form.

        Returns:
            int: Number of entries whose stored form changed
        """
        raw = await self.store.get_json(StorageKeys.PROFILES, default=[])
        if not isinstance(raw, list):
            return 0
        profiles, unparsed = await self._read(StorageKeys.PROFILES)

        # First entry wins when legacy data holds the same email in different cases
        unique: dict[str, UserProfile] = {}
        for profile in profiles:
            unique.setdefault(profile.email, profile)

        canonical = [p.to_storage() for p in unique.values()]
        changed = sum(1 for entry in canonical if entry not in raw) + len(profiles) - len(unique)
        if changed:
            await self._write(StorageKeys.PROFILES, list(unique.values()), unparsed)
        return changed


class ActiveSessionRepository:
    """Repository for the persisted active session snapshot."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def get(self) -> UserProfile | None:
        raw = await self.store.get_json(StorageKeys.ACTIVE_PROFILE)
        if not raw:
            return None
        try:
            return UserProfile.model_validate(raw)
        except PydanticValidationError as e:
            logger.warning(f"Ignoring invalid active session snapshot: {e.error_count()} error(s)")
            return None

    async def set(self, profile: UserProfile) -> None:
        await self.store.set_json(StorageKeys.ACTIVE_PROFILE, profile.to_storage())

    async def clear(self) -> None:
        await self.store.remove_item(StorageKeys.ACTIVE_PROFILE)


class TrainingRecordRepository(JsonListRepository[TrainingRecord]):
    """Repository for training records and per-user hide flags."""

    schema = TrainingRecord

    async def list_all(self) -> list[TrainingRecord]:
        records, _ = await self._read(StorageKeys.TRAINING_RECORDS)
        return records

    async def list_by_owner(self, email: str) -> list[TrainingRecord]:
        target = normalize_email(email)
        return [r for r in await self.list_all() if r.owner_email == target]

    async def find_active(self, email: str) -> TrainingRecord | None:
        """The owner's open record, if any."""
        for record in await self.list_by_owner(email):
            if record.is_active is True and record.end_time is None:
                return record
        return None

    async def upsert(self, record: TrainingRecord) -> TrainingRecord:
        """Replace the record with the same owner and timestamp, or append it."""
        records, unparsed = await self._read(StorageKeys.TRAINING_RECORDS)
        for index, existing in enumerate(records):
            if existing.owner_email == record.owner_email and existing.timestamp == record.timestamp:
                records[index] = record
                break
        else:
            records.append(record)
        await self._write(StorageKeys.TRAINING_RECORDS, records, unparsed)
        return record

    async def delete_by_owner(self, email: str) -> int:
        """Remove every record owned by the email; returns the number removed."""
        target = normalize_email(email)
        records, unparsed = await self._read(StorageKeys.TRAINING_RECORDS)
        remaining = [r for r in records if r.owner_email != target]
        removed = len(records) - len(remaining)
        await self._write(StorageKeys.TRAINING_RECORDS, remaining, unparsed)
        return removed

    async def stamp_ownerless(self, email: str) -> int:
        """Assign records without an owner to the email; returns the number stamped."""
        owner = normalize_email(email)
        records, unparsed = await self._read(StorageKeys.TRAINING_RECORDS)
        stamped = 0
        for record in records:
            if not record.owner_email:
                record.owner_email = owner
                stamped += 1
        if stamped:
            await self._write(StorageKeys.TRAINING_RECORDS, records, unparsed)
        return stamped

    async def count_ownerless(self) -> int:
        return sum(1 for r in await self.list_all() if not r.owner_email)

    async def is_hidden(self, email: str) -> bool:
        value = await self.store.get_item(StorageKeys.hide_records(normalize_email(email)))
        return value == HIDDEN_SENTINEL

    async def set_hidden(self, email: str, hidden: bool) -> None:
        key = StorageKeys.hide_records(normalize_email(email))
        if hidden:
            await self.store.set_item(key, HIDDEN_SENTINEL)
        else:
            await self.store.remove_item(key)


class HealthDeclarationRepository(JsonListRepository[UnfitEvent]):
    """Repository for health declarations, unfit history and the unfit log."""

    schema = UnfitEvent

    async def get_current(self, email: str | None) -> HealthDeclaration | None:
        raw = await self.store.get_json(StorageKeys.health_declaration(email))
        if not raw:
            return None
        try:
            return HealthDeclaration.model_validate(raw)
        except PydanticValidationError as e:
            logger.warning(f"Ignoring invalid health declaration: {e.error_count()} error(s)")
            return None

    async def save_current(self, email: str | None, declaration: HealthDeclaration) -> None:
        """Overwrite the current declaration."""
        await self.store.set_json(StorageKeys.health_declaration(email), declaration.to_storage())

    async def list_unfit(self, email: str | None) -> list[UnfitEvent]:
        events, _ = await self._read(StorageKeys.unfit_history(email))
        return events

    async def add_unfit(self, email: str | None, event: UnfitEvent) -> None:
        await self._prepend(StorageKeys.unfit_history(email), event)

    async def list_unfit_log(self) -> list[UnfitLogEntry]:
        raw = await self.store.get_json(StorageKeys.HEALTH_UNFIT_LOG, default=[])
        entries = []
        for entry in raw if isinstance(raw, list) else []:
            try:
                entries.append(UnfitLogEntry.model_validate(entry))
            except PydanticValidationError:
                logger.warning("Skipping invalid unfit log entry")
        return entries

    async def add_unfit_log_entry(self, entry: UnfitLogEntry) -> None:
        raw = await self.store.get_json(StorageKeys.HEALTH_UNFIT_LOG, default=[])
        log = raw if isinstance(raw, list) else []
        log.insert(0, entry.to_storage())
        await self.store.set_json(StorageKeys.HEALTH_UNFIT_LOG, log)

    async def clear_unfit_log(self) -> None:
        await self.store.remove_item(StorageKeys.HEALTH_UNFIT_LOG)


class AdminAuditRepository(JsonListRepository[AdminAuditEntry]):
    """Repository for the append-only admin audit log."""

    schema = AdminAuditEntry

    async def list_all(self) -> list[AdminAuditEntry]:
        entries, _ = await self._read(StorageKeys.ADMIN_AUDIT_LOG)
        return entries

    async def add(self, entry: AdminAuditEntry) -> None:
        await self._prepend(StorageKeys.ADMIN_AUDIT_LOG, entry)

    async def clear(self) -> None:
        await self.store.remove_item(StorageKeys.ADMIN_AUDIT_LOG)
