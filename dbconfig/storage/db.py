"""
Database engine, async session factory, commit-time change tracking, and audit logging.

- Async engine for any SQLAlchemy async driver (aiosqlite, asyncpg).
- Sessions from create_session_factory() are TrackedSession-backed: rows added, modified
  or deleted in a transaction are collected on flush and emitted to the ChangeSignal after
  the commit succeeds. A rollback discards them.
- log_audit() for configuration writes and admin reloads.
"""

import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator
from uuid import UUID

import structlog
from sqlalchemy import event, insert
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session

from dbconfig.events import ChangeEvent, ChangeKind, ChangeSignal, EntityKind
from dbconfig.storage import models  # noqa: F401 - register ConfigEntry, AuditLog with Base.metadata
from dbconfig.storage.base import Base
from dbconfig.storage.models import AuditLog

logger = structlog.get_logger(__name__)

CHANGE_SIGNAL_INFO_KEY = "change_signal"
_PENDING_INFO_KEY = "pending_changes"


class TrackedSession(Session):
    """Sync session behind AsyncSession; emits ChangeEvents once its transaction commits."""


def create_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create async engine; pool sizing only applies to server databases."""
    parsed = make_url(url)
    logger.info("db_engine_creating", driver=parsed.drivername, host=parsed.host, database=parsed.database)
    kwargs: dict[str, Any] = {"echo": echo}
    if parsed.get_backend_name() != "sqlite":
        kwargs.update(pool_pre_ping=True, pool_size=10, max_overflow=20)
    engine = create_async_engine(url, **kwargs)
    logger.info("db_engine_created")
    return engine


async def init_db(engine: AsyncEngine) -> None:
    """Create tables if absent."""
    logger.info("db_tables_creating")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("db_init_done")


def create_session_factory(engine: AsyncEngine, signal: ChangeSignal | None = None) -> async_sessionmaker[AsyncSession]:
    """Return async session factory whose commits notify signal (if given)."""
    info = {CHANGE_SIGNAL_INFO_KEY: signal} if signal is not None else None
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        sync_session_class=TrackedSession,
        expire_on_commit=False,
        autoflush=False,
        info=info,
    )


@asynccontextmanager
async def session_scope(factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Async context manager for a single DB session committed on success."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def log_audit(
    session: AsyncSession,
    action: str,
    resource_type: str,
    resource_id: str | UUID | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """
    Write an audit log entry (e.g. config write, admin reload).
    Caller is responsible for committing the session.
    """
    await session.execute(
        insert(AuditLog.__table__).values(
            id=uuid.uuid4(),
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id else None,
            details=details,
        )
    )


# --- Change tracking ---


def _identity(obj: Any) -> str:
    state = sa_inspect(obj)
    values = state.identity or state.mapper.primary_key_from_instance(obj)
    return ":".join(str(v) for v in values)


def _merge(previous: ChangeKind | None, current: ChangeKind) -> ChangeKind | None:
    """Fold two changes to one row within a transaction; None means the row is back where it started."""
    if previous is None:
        return current
    if previous is ChangeKind.ADDED:
        return None if current is ChangeKind.DELETED else ChangeKind.ADDED
    if previous is ChangeKind.DELETED:
        return ChangeKind.MODIFIED if current is ChangeKind.ADDED else ChangeKind.DELETED
    return ChangeKind.DELETED if current is ChangeKind.DELETED else ChangeKind.MODIFIED


def _record(session: Session, obj: Any, kind: ChangeKind) -> None:
    pending: dict[tuple[type, str], ChangeEvent] = session.info.setdefault(_PENDING_INFO_KEY, {})
    entity_kind = getattr(type(obj), "__entity_kind__", EntityKind.OTHER)
    ident = (type(obj), _identity(obj))
    previous = pending.get(ident)
    merged = _merge(previous.change_kind if previous else None, kind)
    if merged is None:
        pending.pop(ident)
        return
    value = None
    if merged is not ChangeKind.DELETED:
        # Read from instance state only; never trigger a lazy load inside the flush.
        raw = sa_inspect(obj).dict.get("value")
        value = raw if isinstance(raw, str) else None
    pending[ident] = ChangeEvent(entity_kind=entity_kind, change_kind=merged, key=ident[1], value=value)


@event.listens_for(TrackedSession, "after_flush")
def _collect_changes(session: Session, _flush_context: Any) -> None:
    for obj in session.new:
        _record(session, obj, ChangeKind.ADDED)
    for obj in session.dirty:
        if session.is_modified(obj, include_collections=False):
            _record(session, obj, ChangeKind.MODIFIED)
    for obj in session.deleted:
        _record(session, obj, ChangeKind.DELETED)


@event.listens_for(TrackedSession, "after_commit")
def _emit_changes(session: Session) -> None:
    pending = session.info.pop(_PENDING_INFO_KEY, None)
    signal: ChangeSignal | None = session.info.get(CHANGE_SIGNAL_INFO_KEY)
    if not pending or signal is None:
        return
    for change in pending.values():
        signal.emit(change)


@event.listens_for(TrackedSession, "after_rollback")
def _discard_changes(session: Session) -> None:
    session.info.pop(_PENDING_INFO_KEY, None)
