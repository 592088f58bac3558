"""Host configuration tree, database-backed provider, and service settings."""

from dbconfig.config.db_provider import DbConfigurationProvider, DbConfigurationSource
from dbconfig.config.loader import get_app_settings
from dbconfig.config.tree import ConfigurationBuilder, ConfigurationRoot

__all__ = [
    "ConfigurationBuilder",
    "ConfigurationRoot",
    "DbConfigurationProvider",
    "DbConfigurationSource",
    "get_app_settings",
]
