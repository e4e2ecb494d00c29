"""
Startup service for the SFT tracker.
Wires the store, repositories and logic components from configuration and
runs the one-time migrations of legacy data.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from config.config import Config
from config.config import config as default_config
from sft_tracker.data.repositories import (
    ActiveSessionRepository,
    AdminAuditRepository,
    HealthDeclarationRepository,
    ProfileRepository,
    TrainingRecordRepository,
)
from sft_tracker.data.schemas import normalize_email
from sft_tracker.data.store import KeyValueStore, SqlKeyValueStore, create_store
from sft_tracker.exceptions import ConfigurationError
from sft_tracker.logic.audit import AuditLogic, ReportingLogic
from sft_tracker.logic.authentication import AuthenticationLogic
from sft_tracker.logic.health import HealthLogic
from sft_tracker.logic.profiles import ProfileLogic
from sft_tracker.logic.training import TrainingLogic
from sft_tracker.services.session_context import SessionContext
from sft_tracker.utils.timeutils import Clock, resolve_timezone, utc_now

logger = logging.getLogger(__name__)


@dataclass
class Application:
    """All components of a running tracker, sharing one store and one session."""

    config: Config
    store: KeyValueStore
    session: SessionContext
    profile_repository: ProfileRepository
    record_repository: TrainingRecordRepository
    audit: AuditLogic
    auth: AuthenticationLogic
    profiles: ProfileLogic
    health: HealthLogic
    training: TrainingLogic
    reporting: ReportingLogic

    async def close(self) -> None:
        await self.store.close()


@dataclass
class MigrationReport:
    """What the startup migrations changed."""

    skipped: bool = False
    profiles_normalized: int = 0
    legacy_profile_folded: bool = False
    credentials_migrated: int = 0
    records_stamped: int = 0
    ownerless_records_left: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


async def build_application(
    cfg: Config | None = None,
    store: KeyValueStore | None = None,
    clock: Clock = utc_now,
) -> Application:
    """
    Create every component for the given configuration.

    Args:
        cfg: Configuration; the global configuration when omitted
        store: Store to use instead of the configured backend
        clock: Time source shared by all components

    Returns:
        Application: Wired components with the persisted session loaded

    Raises:
        ConfigurationError: If the storage backend or timezone is invalid
    """
    cfg = cfg or default_config

    if store is None:
        try:
            store = create_store(cfg.storage.backend, cfg.storage.database_url, echo=cfg.storage.echo)
        except ValueError as e:
            raise ConfigurationError("storage.backend", str(e)) from e
    if isinstance(store, SqlKeyValueStore):
        await store.initialize()

    try:
        tz = resolve_timezone(cfg.reporting.timezone)
    except (KeyError, ValueError) as e:
        raise ConfigurationError("reporting.timezone", str(e)) from e

    profile_repository = ProfileRepository(store)
    record_repository = TrainingRecordRepository(store)
    session = SessionContext(ActiveSessionRepository(store))
    await session.load()

    audit = AuditLogic(
        AdminAuditRepository(store), session, clock=clock, enabled=cfg.feature_flags.enable_audit_logging
    )
    auth = AuthenticationLogic(
        profile_repository,
        session,
        audit,
        password_min_length=cfg.security.password_min_length,
        legacy_profile_fallback=cfg.feature_flags.enable_legacy_profile_fallback,
    )
    profiles = ProfileLogic(
        profile_repository, record_repository, session, audit,
        password_min_length=cfg.security.password_min_length,
    )
    health = HealthLogic(
        HealthDeclarationRepository(store), session, clock=clock, freshness_minutes=cfg.health.freshness_minutes
    )
    training = TrainingLogic(record_repository, health, session, clock=clock)
    reporting = ReportingLogic(record_repository, profile_repository, session, audit, clock=clock, tz=tz)

    logger.info(f"{cfg.app_name} {cfg.app_version} ready ({cfg.storage.backend} backend, {cfg.environment})")
    return Application(
        config=cfg,
        store=store,
        session=session,
        profile_repository=profile_repository,
        record_repository=record_repository,
        audit=audit,
        auth=auth,
        profiles=profiles,
        health=health,
        training=training,
        reporting=reporting,
    )


class StartupService:
    """Service for one-time startup tasks on an assembled application."""

    def __init__(self, app: Application):
        self.app = app

    async def run_startup_migrations(self) -> MigrationReport:
        """
        Bring legacy data into canonical form.

        Runs only under the single-writer contract. Ownerless training records
        are claimed only when the owner is unambiguous: a configured legacy
        owner, or the only registered profile.

        Returns:
            MigrationReport: Summary of the changes made
        """
        cfg = self.app.config
        report = MigrationReport()

        if not cfg.feature_flags.enable_startup_migrations:
            logger.info("startup: migrations disabled by feature flag")
            report.skipped = True
            return report
        if not cfg.persistence.single_writer:
            logger.warning("startup: store is not single-writer, skipping migrations")
            report.skipped = True
            return report

        logger.info("startup: running legacy data migrations...")
        profiles = self.app.profile_repository

        report.legacy_profile_folded = await profiles.fold_legacy() is not None
        report.profiles_normalized = await profiles.normalize()
        report.credentials_migrated = await self.app.auth.migrate_plaintext_credentials()

        ownerless = await self.app.record_repository.count_ownerless()
        if ownerless:
            owner = await self._legacy_owner()
            if owner:
                report.records_stamped = await self.app.training.migrate_legacy_records(owner)
            else:
                report.ownerless_records_left = ownerless
                logger.warning(
                    f"startup: {ownerless} training record(s) have no owner and several profiles exist; "
                    "set PERSISTENCE_LEGACY_OWNER_EMAIL to assign them"
                )

        logger.info(f"startup: migrations complete {report}")
        return report

    async def _legacy_owner(self) -> str | None:
        configured = self.app.config.persistence.legacy_owner_email
        if configured:
            return normalize_email(configured)
        directory = await self.app.profile_repository.list_all()
        if len(directory) == 1:
            return directory[0].email
        return None
