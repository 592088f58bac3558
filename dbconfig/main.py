"""
FastAPI service: /api/config (read/write), /health, /admin/reload.

Startup wires one ChangeSignal into both the session factory (writers) and the
database configuration source (readers), then builds the configuration tree:
optional YAML defaults first, database rows on top.
"""

import time
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI, Request
from sqlalchemy.engine import make_url

from dbconfig import __version__
from dbconfig.config.db_provider import DbConfigurationSource
from dbconfig.config.loader import get_app_settings
from dbconfig.config.schemas import AppSettings
from dbconfig.config.tree import ConfigurationBuilder, YamlConfigurationSource
from dbconfig.events import ChangeSignal
from dbconfig.routers import config, health
from dbconfig.storage import db
from dbconfig.storage.store import ConfigStore

logger = structlog.get_logger(__name__)


def _defaults_path(settings: AppSettings) -> Path | None:
    if not settings.defaults_file:
        return None
    path = Path(settings.defaults_file)
    return path if path.is_absolute() else Path(settings.config_dir) / path


async def _init_database(settings: AppSettings, engine) -> None:
    try:
        await db.init_db(engine)
    except (ConnectionRefusedError, OSError) as e:
        if getattr(e, "errno", None) == 111 or "connection refused" in str(e).lower():
            url = make_url(settings.database_url)
            host_port = f"{url.host or 'localhost'}:{url.port or ''}".rstrip(":")
            logger.error("db_connection_refused", detail=str(e), host_port=host_port)
            raise SystemExit(
                f"Cannot connect to the configuration database at {host_port}. "
                "Start the database or point database_url (config/app.yaml or DATABASE_URL) at a reachable one."
            ) from e
        raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: create tables, wire signal/store/configuration. Shutdown: stop reloads, dispose engine."""
    logger.info("startup_start")
    settings = get_app_settings()
    signal = ChangeSignal()
    engine = db.create_engine(settings.database_url)
    await _init_database(settings, engine)
    session_factory = db.create_session_factory(engine, signal)

    builder = ConfigurationBuilder()
    defaults = _defaults_path(settings)
    if defaults is not None:
        builder.add(YamlConfigurationSource(defaults, optional=True, reload_on_change=settings.watch_defaults))
    builder.add(DbConfigurationSource.from_settings(settings, session_factory, signal))
    configuration = await builder.build()
    configuration.on_change(lambda: logger.info("config_snapshot_published"))

    app.state.settings = settings
    app.state.change_signal = signal
    app.state.session_factory = session_factory
    app.state.config_store = ConfigStore(session_factory)
    app.state.configuration = configuration
    logger.info(
        "application_ready",
        namespace=settings.config_namespace,
        reload_on_change=settings.reload_on_change,
        reload_delay_ms=settings.reload_delay_ms,
    )
    yield
    logger.info("shutdown_start")
    await configuration.aclose()
    await engine.dispose()


def create_app() -> FastAPI:
    app = FastAPI(title="DB Configuration Provider", version=__version__, lifespan=lifespan)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log each request (method, path, status, duration)."""
        start = time.monotonic()
        response = await call_next(request)
        duration_ms = (time.monotonic() - start) * 1000
        logger.info(
            "request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        return response

    app.include_router(config.router)
    app.include_router(health.router)
    return app


app = create_app()
