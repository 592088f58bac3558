"""Health and admin endpoints."""

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dbconfig.config.tree import ConfigurationRoot
from dbconfig.dependencies import get_configuration, get_session_factory
from dbconfig.storage.db import log_audit, session_scope

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory)) -> dict:
    """DB status for readiness probe."""
    async with session_factory() as session:
        await session.execute(text("SELECT 1"))
    return {"status": "ok", "db": "ok"}


@router.post("/admin/reload")
async def admin_reload(
    configuration: ConfigurationRoot = Depends(get_configuration),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict:
    """Reload every configuration provider now, bypassing the debounce delay."""
    if not await configuration.reload():
        raise HTTPException(status_code=503, detail="reload failed; previous configuration retained")
    async with session_scope(session_factory) as session:
        await log_audit(session, "reload_config", "config", details={"source": "admin"})
    logger.info("config_reloaded", source="admin")
    return {"status": "ok", "message": "config reloaded"}
