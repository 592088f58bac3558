"""SQLAlchemy declarative base."""

from sqlalchemy.orm import DeclarativeBase

from dbconfig.events import EntityKind


class Base(DeclarativeBase):
    """Base for all storage models. Subclasses tag their change events via __entity_kind__."""

    __entity_kind__ = EntityKind.OTHER
