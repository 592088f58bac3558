"""FastAPI dependencies: objects wired at startup and kept on app.state."""

from fastapi import HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dbconfig.config.schemas import AppSettings
from dbconfig.config.tree import ConfigurationRoot
from dbconfig.storage.store import ConfigStore


def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail="service not initialized")
    return value


def get_settings(request: Request) -> AppSettings:
    return _state(request, "settings")


def get_configuration(request: Request) -> ConfigurationRoot:
    return _state(request, "configuration")


def get_config_store(request: Request) -> ConfigStore:
    return _state(request, "config_store")


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return _state(request, "session_factory")
