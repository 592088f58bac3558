"""Configuration read/write endpoints (/api/config)."""

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dbconfig.config.schemas import AppSettings
from dbconfig.config.tree import ConfigurationRoot
from dbconfig.dependencies import get_config_store, get_configuration, get_session_factory, get_settings
from dbconfig.errors import StoreConflictError, StoreUnavailableError
from dbconfig.storage.db import log_audit, session_scope
from dbconfig.storage.store import ConfigStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/config", tags=["config"])


@router.get("")
async def read_config(
    configuration: ConfigurationRoot = Depends(get_configuration),
    settings: AppSettings = Depends(get_settings),
) -> dict[str, str]:
    """Current effective values under the config namespace (prefix stripped). Served from the live snapshot."""
    return configuration.get_section(settings.config_namespace)


@router.post("")
async def write_config(
    data: dict[str, str],
    store: ConfigStore = Depends(get_config_store),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> bool:
    """Replace the given keys. True iff at least one row was affected; storage failure returns False."""
    try:
        affected = await store.replace_batch(data)
    except StoreConflictError as e:
        logger.warning("config_write_failed", reason="conflict", keys=len(data), detail=str(e))
        return False
    except StoreUnavailableError as e:
        logger.error("config_write_failed", keys=len(data), detail=str(e))
        return False
    if affected <= 0:
        return False
    try:
        async with session_scope(session_factory) as session:
            await log_audit(session, "write_config", "config", details={"keys": sorted(data)})
    except Exception as e:
        logger.warning("audit_write_failed", action="write_config", detail=str(e))
    return True
