"""
Database-backed configuration provider.

- DbConfigurationSource: registration carrying the session factory (connection factory),
  the change signal, and the reload policy.
- DbConfigurationProvider: loads every config_entries row into a snapshot under
  "<namespace>:<key>", and reloads when a ConfigEntry change is committed.
- ReloadScheduler: delayed reload on the event loop. In coalescing mode each change resets a
  single pending timer; otherwise every change gets its own delayed reload.
"""

import asyncio
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dbconfig.config.schemas import AppSettings
from dbconfig.config.tree import KEY_DELIMITER, ConfigurationBuilder, ConfigurationProvider
from dbconfig.errors import StoreUnavailableError
from dbconfig.events import ChangeEvent, ChangeSignal, EntityKind
from dbconfig.storage.store import ConfigStore

logger = structlog.get_logger(__name__)

DEFAULT_NAMESPACE = "ConfigOptions"


class ReloadScheduler:
    """Runs reload() delay seconds after notify(), on the bound event loop."""

    def __init__(self, reload: Callable[[], Awaitable[Any]], delay: float, coalesce: bool = True):
        self._reload = reload
        self.delay = delay
        self.coalesce = coalesce
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timers: set[asyncio.TimerHandle] = set()
        self._tasks: set[asyncio.Task] = set()
        self._queued = 0
        self._queued_lock = threading.Lock()
        self._closed = False

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    @property
    def pending(self) -> bool:
        return bool(self._queued or self._timers or self._tasks)

    def notify(self) -> None:
        """Request a reload. Safe to call from any thread; never blocks."""
        loop = self._loop
        if self._closed or loop is None or loop.is_closed():
            logger.warning("config_reload_not_scheduled", closed=self._closed, bound=loop is not None)
            return
        with self._queued_lock:
            self._queued += 1
        loop.call_soon_threadsafe(self._schedule)

    def _schedule(self) -> None:
        with self._queued_lock:
            self._queued -= 1
        if self._closed:
            return
        if self.coalesce:
            for timer in self._timers:
                timer.cancel()
            self._timers.clear()
        handle: asyncio.TimerHandle | None = None

        def fire() -> None:
            self._timers.discard(handle)
            self._start_reload()

        handle = self._loop.call_later(self.delay, fire)
        self._timers.add(handle)

    def _start_reload(self) -> None:
        if self._closed:
            return
        task = self._loop.create_task(self._reload())
        self._tasks.add(task)
        task.add_done_callback(self._reload_done)

    def _reload_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("config_reload_task_failed", exc_info=exc)

    async def wait_idle(self, poll_interval: float = 0.01) -> None:
        """Wait until no reload is queued, delayed, or running."""
        while self.pending:
            if self._tasks and not self._timers and not self._queued:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(poll_interval)

    async def aclose(self) -> None:
        self._closed = True
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


@dataclass
class DbConfigurationSource:
    """Registers a DbConfigurationProvider with a ConfigurationBuilder."""

    session_factory: async_sessionmaker[AsyncSession]
    change_signal: ChangeSignal | None = None
    reload_on_change: bool = False
    reload_delay: float = 0.2
    coalesce_reloads: bool = True
    namespace: str = DEFAULT_NAMESPACE

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        session_factory: async_sessionmaker[AsyncSession],
        change_signal: ChangeSignal,
    ) -> "DbConfigurationSource":
        return cls(
            session_factory=session_factory,
            change_signal=change_signal,
            reload_on_change=settings.reload_on_change,
            reload_delay=settings.reload_delay,
            coalesce_reloads=settings.coalesce_reloads,
            namespace=settings.config_namespace,
        )

    def build(self, builder: ConfigurationBuilder | None = None) -> "DbConfigurationProvider":
        if self.reload_on_change and self.change_signal is None:
            raise ValueError("reload_on_change requires a change_signal")
        return DbConfigurationProvider(self)


class DbConfigurationProvider(ConfigurationProvider):
    """Snapshot of the config_entries table, kept current through the change signal."""

    def __init__(self, source: DbConfigurationSource):
        super().__init__()
        self._source = source
        self._load_lock = asyncio.Lock()
        self.loaded = False
        self.scheduler: ReloadScheduler | None = None
        self._unsubscribe: Callable[[], None] | None = None
        if source.reload_on_change:
            self.scheduler = ReloadScheduler(self.reload, source.reload_delay, coalesce=source.coalesce_reloads)
            self._unsubscribe = source.change_signal.subscribe(self._on_entity_changed)

    @property
    def namespace(self) -> str:
        return self._source.namespace

    async def load(self) -> None:
        """Read every row and publish it as the new snapshot.

        Raises:
            StoreUnavailableError: If the store cannot be read; the current snapshot is kept.
        """
        if self.scheduler is not None:
            self.scheduler.bind(asyncio.get_running_loop())
        async with self._load_lock:
            rows = await ConfigStore(self._source.session_factory).load_all()
            prefix = self.namespace + KEY_DELIMITER
            self.set_data({prefix + key: value for key, value in rows})
            self.loaded = True
        logger.info("config_loaded", namespace=self.namespace, keys=len(rows))

    async def reload(self) -> bool:
        """Load again; on store failure log and keep the last good snapshot."""
        try:
            await self.load()
        except StoreUnavailableError as e:
            logger.error("config_reload_failed", detail=str(e), keys_retained=len(self.data))
            return False
        except Exception:
            logger.exception("config_reload_failed", keys_retained=len(self.data))
            return False
        return True

    def _on_entity_changed(self, event: ChangeEvent) -> None:
        if event.entity_kind is not EntityKind.CONFIG_ENTRY:
            return
        logger.debug("config_change_observed", key=event.key, change=event.change_kind.value)
        self.scheduler.notify()

    async def wait_idle(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.wait_idle()

    async def aclose(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.scheduler is not None:
            await self.scheduler.aclose()
