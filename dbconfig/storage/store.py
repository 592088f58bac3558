"""
ConfigStore: transactional access to the config_entries table.

Writes replace rows (delete then insert) inside one transaction. Change events are
emitted by the session factory after commit, one per affected key.
"""

from collections.abc import Iterable, Mapping

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from dbconfig.errors import StoreConflictError, StoreUnavailableError
from dbconfig.storage.db import session_scope
from dbconfig.storage.models import ConfigEntry

logger = structlog.get_logger(__name__)


class ConfigStore:
    """Reads and batch-replaces configuration rows through a session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def replace_batch(self, entries: Mapping[str, str]) -> int:
        """
        Replace every key in entries within a single transaction.

        Existing rows for those keys are deleted, then one row per entry is inserted.

        Returns:
            Rows affected (deleted + inserted). 0 for an empty batch; nothing is written.

        Raises:
            StoreConflictError: If a concurrent writer inserted or removed one of the keys.
            StoreUnavailableError: If the connection or transaction fails.
        """
        if not entries:
            return 0
        keys = list(entries)
        try:
            async with session_scope(self._session_factory) as session:
                r = await session.execute(select(ConfigEntry).where(ConfigEntry.key.in_(keys)))
                existing = r.scalars().all()
                for row in existing:
                    await session.delete(row)
                # Deletes must reach the database before rows with the same key are inserted.
                await session.flush()
                session.add_all([ConfigEntry(key=k, value=v) for k, v in entries.items()])
                await session.flush()
                deleted = len(existing)
        except (IntegrityError, StaleDataError) as e:
            logger.warning("config_write_conflict", operation="replace_batch", keys=len(keys), detail=str(e))
            raise StoreConflictError(f"replace_batch conflicted: {e}", operation="replace_batch") from e
        except (SQLAlchemyError, OSError) as e:
            logger.warning("config_replace_failed", keys=len(keys), detail=str(e))
            raise StoreUnavailableError(f"replace_batch failed: {e}", operation="replace_batch") from e
        affected = deleted + len(entries)
        logger.info("config_replaced", deleted=deleted, inserted=len(entries), affected=affected)
        return affected

    async def load_all(self) -> list[tuple[str, str]]:
        """Return every (key, value) row ordered by key. Read-only; nothing is committed."""
        try:
            async with self._session_factory() as session:
                r = await session.execute(select(ConfigEntry.key, ConfigEntry.value).order_by(ConfigEntry.key))
                return [(key, value) for key, value in r.all()]
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"load_all failed: {e}", operation="load_all") from e

    async def remove_keys(self, keys: Iterable[str]) -> int:
        """Delete rows for keys (store-level removal). Returns number of rows deleted."""
        keys = list(keys)
        if not keys:
            return 0
        try:
            async with session_scope(self._session_factory) as session:
                r = await session.execute(select(ConfigEntry).where(ConfigEntry.key.in_(keys)))
                rows = r.scalars().all()
                for row in rows:
                    await session.delete(row)
        except StaleDataError as e:
            logger.warning("config_write_conflict", operation="remove_keys", keys=len(keys), detail=str(e))
            raise StoreConflictError(f"remove_keys conflicted: {e}", operation="remove_keys") from e
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"remove_keys failed: {e}", operation="remove_keys") from e
        logger.info("config_removed", deleted=len(rows))
        return len(rows)
