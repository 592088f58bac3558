"""
Settings loader: YAML loading, env variable injection, Pydantic validation.

- App settings from config/app.yaml (host, port, database_url, reload policy).
- Environment variable injection: ${ENV_VAR} replacement in YAML values.
- DATABASE_URL / TEST_DATABASE_URL env override database_url.
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml

from dbconfig.config.schemas import AppSettings

_app_settings: AppSettings | None = None


def reset_app_settings_cache() -> None:
    """Clear cached app settings (for tests). Next get_app_settings() will reload from config and env."""
    global _app_settings
    _app_settings = None


def _substitute_env(value: Any) -> Any:
    """Replace ${VAR} and $VAR in strings; recurse into dict/list."""
    if isinstance(value, str):
        pattern = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")
        def repl(m: re.Match[str]) -> str:
            name = m.group(1) or m.group(2) or ""
            return os.environ.get(name, m.group(0))
        return pattern.sub(repl, value)
    if isinstance(value, dict):
        return {k: _substitute_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute_env(v) for v in value]
    return value


def load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file and return dict with env substitution. Missing file -> {}."""
    if not path.exists():
        return {}
    text = path.read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return _substitute_env(data)


def config_dir() -> Path:
    """CONFIG_DIR env or default 'config'."""
    return Path(os.environ.get("CONFIG_DIR", "config")).resolve()


def get_app_settings() -> AppSettings:
    """Return application settings (from config/app.yaml); loaded once per process."""
    global _app_settings
    if _app_settings is None:
        base = config_dir()
        data = load_yaml(base / "app.yaml")
        data.setdefault("config_dir", str(base))
        if os.environ.get("DATABASE_URL"):
            data["database_url"] = os.environ["DATABASE_URL"]
        if os.environ.get("TEST_DATABASE_URL"):
            data["database_url"] = os.environ["TEST_DATABASE_URL"]
        _app_settings = AppSettings.model_validate(data)
    return _app_settings
