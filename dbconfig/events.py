"""
In-process change signal.

- ChangeEvent: one committed add/modify/delete of a persisted entity.
- ChangeSignal: fan-out of events to subscribed handlers, in registration order.

One ChangeSignal is created at startup and passed explicitly to the session
factory (writers) and to every DbConfigurationSource (readers).
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import structlog

logger = structlog.get_logger(__name__)


class EntityKind(str, Enum):
    """Kind of persisted entity an event refers to."""

    CONFIG_ENTRY = "config_entry"
    AUDIT_LOG = "audit_log"
    OTHER = "other"


class ChangeKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class ChangeEvent:
    entity_kind: EntityKind
    change_kind: ChangeKind
    key: str
    value: str | None = None


ChangeHandler = Callable[[ChangeEvent], None]


class ChangeSignal:
    """
    Synchronous fan-out of ChangeEvents.

    Handlers run on the emitting thread. A failing handler is logged and skipped;
    it never stops delivery to the others and never reaches the emitter.
    """

    def __init__(self) -> None:
        self._handlers: tuple[ChangeHandler, ...] = ()
        self._lock = threading.Lock()

    def subscribe(self, handler: ChangeHandler) -> Callable[[], None]:
        """Register handler for all later emissions. Returns a callable that removes it."""
        with self._lock:
            self._handlers = self._handlers + (handler,)

        def unsubscribe() -> None:
            with self._lock:
                handlers = list(self._handlers)
                if handler in handlers:
                    handlers.remove(handler)
                    self._handlers = tuple(handlers)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def emit(self, event: ChangeEvent) -> None:
        for handler in self._handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "change_handler_failed",
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    entity_kind=event.entity_kind.value,
                    key=event.key,
                )
