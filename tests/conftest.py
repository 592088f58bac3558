"""Pytest fixtures: SQLite test database, change signal, store, app client."""

import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from dbconfig.config.loader import reset_app_settings_cache
from dbconfig.events import ChangeEvent, ChangeSignal
from dbconfig.storage.db import create_engine, create_session_factory, init_db
from dbconfig.storage.store import ConfigStore


class Recorder:
    """ChangeSignal subscriber that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[ChangeEvent] = []

    def __call__(self, event: ChangeEvent) -> None:
        self.events.append(event)


def wait_for(predicate, timeout: float = 3.0, interval: float = 0.02) -> bool:
    """Poll predicate from a sync test until it is true or timeout passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'config.db'}"


@pytest.fixture
def signal() -> ChangeSignal:
    return ChangeSignal()


@pytest.fixture
def recorder(signal: ChangeSignal) -> Recorder:
    rec = Recorder()
    signal.subscribe(rec)
    return rec


@pytest.fixture
async def engine(database_url):
    eng = create_engine(database_url)
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine, signal):
    return create_session_factory(engine, signal)


@pytest.fixture
def store(session_factory) -> ConfigStore:
    return ConfigStore(session_factory)


@pytest.fixture
def test_config_dir(tmp_path: Path, database_url: str, monkeypatch) -> Path:
    """Config dir with app.yaml pointing at a temporary SQLite database and a short reload delay."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "app.yaml").write_text(f"""
database_url: "{database_url}"
config_namespace: "ConfigOptions"
reload_on_change: true
reload_delay_ms: 50
coalesce_reloads: true
defaults_file: "defaults.yaml"
""")
    monkeypatch.setenv("CONFIG_DIR", str(config_dir))
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("TEST_DATABASE_URL", raising=False)
    reset_app_settings_cache()
    yield config_dir
    reset_app_settings_cache()


@pytest.fixture
def client(test_config_dir):
    """TestClient running the full lifespan against the temporary database."""
    from dbconfig.main import create_app
    with TestClient(create_app()) as c:
        yield c
