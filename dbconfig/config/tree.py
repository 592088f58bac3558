"""
Host configuration tree.

Providers each hold one read-only snapshot of flat "section:key" -> value pairs.
A ConfigurationRoot layers providers in registration order (later wins) and serves
synchronous reads. A provider publishes a reload by swapping its snapshot reference;
readers holding the previous snapshot are never affected.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Protocol, TypeVar

import structlog
from pydantic import BaseModel
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from dbconfig.config.loader import load_yaml

logger = structlog.get_logger(__name__)

KEY_DELIMITER = ":"

ModelT = TypeVar("ModelT", bound=BaseModel)


def flatten(data: Mapping[str, Any], prefix: str = "") -> dict[str, str]:
    """Flatten nested mappings/lists into delimiter-joined keys with string values."""
    out: dict[str, str] = {}
    for key, value in data.items():
        path = f"{prefix}{KEY_DELIMITER}{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            out.update(flatten(value, path))
        elif isinstance(value, list):
            out.update(flatten({str(i): v for i, v in enumerate(value)}, path))
        elif value is None:
            out[path] = ""
        elif isinstance(value, bool):
            out[path] = "true" if value else "false"
        else:
            out[path] = str(value)
    return out


class ConfigurationProvider(ABC):
    """Base provider: owns one snapshot; subclasses implement load()."""

    def __init__(self) -> None:
        self._data: Mapping[str, str] = MappingProxyType({})
        self._reload_callbacks: list[Callable[[], None]] = []

    @property
    def data(self) -> Mapping[str, str]:
        """Current snapshot. Never mutated after publication."""
        return self._data

    def try_get(self, key: str) -> str | None:
        return self._data.get(key)

    @abstractmethod
    async def load(self) -> None:
        """Read the backing store and publish a new snapshot with set_data()."""

    async def reload(self) -> bool:
        """Load again. Returns True when a new snapshot was published."""
        await self.load()
        return True

    def set_data(self, data: Mapping[str, str]) -> None:
        """Publish a complete new snapshot (single reference swap) and notify reload callbacks."""
        self._data = MappingProxyType(dict(data))
        for callback in list(self._reload_callbacks):
            try:
                callback()
            except Exception:
                logger.exception("config_change_callback_failed", provider=type(self).__name__)

    def on_reload(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._reload_callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._reload_callbacks:
                self._reload_callbacks.remove(callback)

        return unsubscribe

    async def aclose(self) -> None:
        pass


class ConfigurationSource(Protocol):
    def build(self, builder: "ConfigurationBuilder") -> ConfigurationProvider: ...


class MemoryConfigurationProvider(ConfigurationProvider):
    def __init__(self, initial: Mapping[str, Any]):
        super().__init__()
        self._initial = flatten(initial)

    async def load(self) -> None:
        self.set_data(self._initial)


class MemoryConfigurationSource:
    """Static keys from a (possibly nested) mapping."""

    def __init__(self, data: Mapping[str, Any] | None = None):
        self.data = dict(data or {})

    def build(self, builder: "ConfigurationBuilder") -> ConfigurationProvider:
        return MemoryConfigurationProvider(self.data)


class YamlConfigurationProvider(ConfigurationProvider):
    """Keys from a YAML file; optionally reloaded when the file changes on disk."""

    def __init__(self, source: "YamlConfigurationSource"):
        super().__init__()
        self._source = source
        self._observer: Any = None
        if source.reload_on_change:
            self._start_watcher()

    async def load(self) -> None:
        self._load_file()

    def _load_file(self) -> None:
        path = self._source.path
        if not path.exists() and not self._source.optional:
            raise FileNotFoundError(f"configuration file not found: {path}")
        self.set_data(flatten(load_yaml(path)))

    def _start_watcher(self) -> None:
        path = self._source.path.resolve()
        if not path.parent.exists():
            logger.warning("config_watch_skipped", path=str(path), reason="directory missing")
            return
        provider = self

        class Handler(FileSystemEventHandler):
            def _maybe_reload(self, event: FileSystemEvent) -> None:
                if event.is_directory or Path(str(event.src_path)).resolve() != path:
                    return
                try:
                    provider._load_file()
                    logger.info("config_file_reloaded", path=str(path))
                except Exception:
                    logger.exception("config_file_reload_failed", path=str(path))

            def on_modified(self, event: FileSystemEvent) -> None:
                self._maybe_reload(event)

            def on_created(self, event: FileSystemEvent) -> None:
                self._maybe_reload(event)

        observer = Observer()
        observer.schedule(Handler(), str(path.parent), recursive=False)
        observer.daemon = True
        observer.start()
        self._observer = observer

    async def aclose(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=2)
            self._observer = None


class YamlConfigurationSource:
    def __init__(self, path: str | Path, optional: bool = True, reload_on_change: bool = False):
        self.path = Path(path)
        self.optional = optional
        self.reload_on_change = reload_on_change

    def build(self, builder: "ConfigurationBuilder") -> ConfigurationProvider:
        return YamlConfigurationProvider(self)


class ConfigurationRoot:
    """Layered, read-only view over providers. Later providers override earlier ones."""

    def __init__(self, providers: list[ConfigurationProvider]):
        self.providers = tuple(providers)

    def get(self, key: str, default: str | None = None) -> str | None:
        for provider in reversed(self.providers):
            value = provider.try_get(key)
            if value is not None:
                return value
        return default

    def __getitem__(self, key: str) -> str:
        value = self.get(key)
        if value is None:
            raise KeyError(key)
        return value

    def as_dict(self) -> dict[str, str]:
        merged: dict[str, str] = {}
        for provider in self.providers:
            merged.update(provider.data)
        return merged

    def get_section(self, section: str) -> dict[str, str]:
        """Keys under section with the "section:" prefix stripped."""
        prefix = section + KEY_DELIMITER
        return {k[len(prefix):]: v for k, v in self.as_dict().items() if k.startswith(prefix)}

    def bind(self, section: str, model: type[ModelT]) -> ModelT:
        """Validate a section into a pydantic model (options binding)."""
        return model.model_validate(self.get_section(section))

    def on_change(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call callback whenever any provider publishes a new snapshot."""
        unsubscribers = [p.on_reload(callback) for p in self.providers]

        def unsubscribe() -> None:
            for u in unsubscribers:
                u()

        return unsubscribe

    async def load(self) -> None:
        for provider in self.providers:
            await provider.load()

    async def reload(self) -> bool:
        """Reload every provider. Returns False if any provider kept its previous snapshot."""
        ok = True
        for provider in self.providers:
            ok = await provider.reload() and ok
        return ok

    async def aclose(self) -> None:
        for provider in self.providers:
            await provider.aclose()


class ConfigurationBuilder:
    """Collects sources, then builds and loads their providers."""

    def __init__(self) -> None:
        self.sources: list[ConfigurationSource] = []

    def add(self, source: ConfigurationSource) -> "ConfigurationBuilder":
        self.sources.append(source)
        return self

    async def build(self) -> ConfigurationRoot:
        root = ConfigurationRoot([source.build(self) for source in self.sources])
        try:
            await root.load()
        except BaseException:
            await root.aclose()
            raise
        return root
