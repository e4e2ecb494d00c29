"""
Key-value store adapter for the SFT tracker.
Provides typed JSON access over an asynchronous string-keyed, string-valued store,
with an in-memory engine and a SQLAlchemy-backed engine.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from sft_tracker.data.models import Base, KeyValueEntry
from sft_tracker.exceptions import StorageUnavailableError

logger = logging.getLogger(__name__)


class StorageKeys:
    """Stable key names shared with existing on-device data."""

    PROFILES = "userProfiles"
    LEGACY_PROFILE = "userProfile"
    ACTIVE_PROFILE = "activeProfile"
    TRAINING_RECORDS = "SFT_RECORDS"
    HIDE_RECORDS_PREFIX = "SFT_HIDE_RECORDS"
    HEALTH_PREFIX = "healthData"
    HEALTH_UNFIT_LOG = "HEALTH_UNFIT_LOG"
    ADMIN_AUDIT_LOG = "ADMIN_AUDIT_LOG"

    @classmethod
    def hide_records(cls, email: str) -> str:
        return f"{cls.HIDE_RECORDS_PREFIX}_{email}"

    @classmethod
    def health_declaration(cls, email: str | None) -> str:
        # Declarations made without a logged-in user share the bare prefix
        return f"{cls.HEALTH_PREFIX}_{email}" if email else cls.HEALTH_PREFIX

    @classmethod
    def unfit_history(cls, email: str | None) -> str:
        return f"{cls.health_declaration(email)}_unfit"


class KeyValueStore(ABC):
    """Abstract asynchronous string-keyed store with full-value semantics."""

    @abstractmethod
    async def get_item(self, key: str) -> str | None:
        """
        Read the value stored under a key.

        Returns:
            str | None: Stored value, or None when the key is absent

        Raises:
            StorageUnavailableError: If the engine cannot be read
        """

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """Replace the value stored under a key."""

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Remove a key; removing an absent key is a no-op."""

    @abstractmethod
    async def keys(self) -> list[str]:
        """List all stored keys."""

    async def clear(self) -> None:
        for key in await self.keys():
            await self.remove_item(key)

    async def close(self) -> None:
        return None

    async def get_json(self, key: str, default: Any = None) -> Any:
        """Read and decode a JSON value; unparseable values are treated as absent."""
        raw = await self.get_item(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring unparseable value under '{key}': {e}")
            return default

    async def set_json(self, key: str, value: Any) -> None:
        await self.set_item(key, json.dumps(value, ensure_ascii=False))


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store used for tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> str | None:
        return self._data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"Store values must be strings, got {type(value).__name__}")
        self._data[key] = value

    async def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> list[str]:
        return sorted(self._data)


class SqlKeyValueStore(KeyValueStore):
    """
    Store persisted in a single SQL table through SQLAlchemy's async engine.
    Defaults to a local SQLite file via aiosqlite.
    """

    def __init__(self, database_url: str, echo: bool = False, engine: AsyncEngine | None = None):
        self.database_url = database_url
        self.engine = engine or create_async_engine(database_url, echo=echo)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)
        self._initialized = False

    async def initialize(self) -> None:
        """Create the backing table if it does not exist."""
        if self._initialized:
            return
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize key-value table: {e}")
            raise StorageUnavailableError("initialize", cause=e) from e
        self._initialized = True
        logger.info(f"Key-value store initialized at {self.engine.url.render_as_string(hide_password=True)}")

    async def get_item(self, key: str) -> str | None:
        await self.initialize()
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(KeyValueEntry.value).where(KeyValueEntry.key == key)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error reading key '{key}': {e}")
            raise StorageUnavailableError("get", key, cause=e) from e

    async def set_item(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"Store values must be strings, got {type(value).__name__}")
        await self.initialize()
        try:
            async with self.session_factory() as session:
                entry = await session.get(KeyValueEntry, key)
                if entry is None:
                    session.add(KeyValueEntry(key=key, value=value))
                else:
                    entry.value = value
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error writing key '{key}': {e}")
            raise StorageUnavailableError("set", key, cause=e) from e

    async def remove_item(self, key: str) -> None:
        await self.initialize()
        try:
            async with self.session_factory() as session:
                await session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error removing key '{key}': {e}")
            raise StorageUnavailableError("remove", key, cause=e) from e

    async def keys(self) -> list[str]:
        await self.initialize()
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(KeyValueEntry.key).order_by(KeyValueEntry.key))
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error listing keys: {e}")
            raise StorageUnavailableError("keys", cause=e) from e

    async def close(self) -> None:
        await self.engine.dispose()


def create_store(backend: str, database_url: str | None = None, echo: bool = False) -> KeyValueStore:
    """Create a store engine for the configured backend."""
    if backend == "memory":
        return InMemoryKeyValueStore()
    if backend == "sql":
        if not database_url:
            raise ValueError("database_url is required for the sql backend")
        return SqlKeyValueStore(database_url, echo=echo)
    raise ValueError(f"Unsupported storage backend: {backend}")
