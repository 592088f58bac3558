"""Database-backed configuration provider with change-driven reload."""

__version__ = "0.1.0"
