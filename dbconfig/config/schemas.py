"""Pydantic schemas for service settings."""

from __future__ import annotations

from pydantic import BaseModel, Field


class AppSettings(BaseModel):
    """Application settings (loaded from config/app.yaml)."""

    model_config = {"extra": "ignore"}

    host: str = "0.0.0.0"
    port: int = 8000
    database_url: str = Field(
        "sqlite+aiosqlite:///./dbconfig.db",
        description="SQLAlchemy async URL; DATABASE_URL / TEST_DATABASE_URL env override",
    )
    config_dir: str = Field(default="config", description="Directory containing app.yaml and defaults.yaml; CONFIG_DIR env overrides when loading.")
    defaults_file: str | None = Field(
        "defaults.yaml",
        description="Optional YAML file (relative to config_dir) with static keys layered beneath the database",
    )
    watch_defaults: bool = Field(False, description="Reload defaults_file when it changes on disk")
    config_namespace: str = Field("ConfigOptions", min_length=1, description="Section the database keys are published under")
    reload_on_change: bool = Field(True, description="Reload the snapshot when configuration rows change")
    reload_delay_ms: int = Field(200, ge=0, le=60_000, description="Debounce delay before a change-driven reload")
    coalesce_reloads: bool = Field(
        True,
        description="One reload per quiet period (true) or one delayed reload per change event (false)",
    )

    @property
    def reload_delay(self) -> float:
        return self.reload_delay_ms / 1000.0
