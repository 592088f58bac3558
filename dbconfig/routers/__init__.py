"""API routers. Mounted in the main app with no prefix."""

from dbconfig.routers import config, health

__all__ = ["config", "health"]
