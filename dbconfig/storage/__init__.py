"""Storage layer: models, engine/session wiring, and the configuration store."""

from dbconfig.storage.models import AuditLog, ConfigEntry
from dbconfig.storage.store import ConfigStore

__all__ = ["ConfigEntry", "AuditLog", "ConfigStore"]
