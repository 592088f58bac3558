"""
Persisted models.

- ConfigEntry: one configuration key/value row (key is the primary key).
- AuditLog: record of configuration writes and admin reloads (keys only, never values).
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from dbconfig.events import EntityKind
from dbconfig.storage.base import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ConfigEntry(Base):
    __tablename__ = "config_entries"
    __entity_kind__ = EntityKind.CONFIG_ENTRY

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")

    def __repr__(self) -> str:
        return f"ConfigEntry(key={self.key!r})"


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __entity_kind__ = EntityKind.AUDIT_LOG

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)


__all__ = ["ConfigEntry", "AuditLog"]
