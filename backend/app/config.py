"""DrsClub messaging configuration.

Loads settings from two YAML files:
  * drsclub.settings.yaml: non-secret configuration
  * drsclub.secrets.yaml: secrets (never committed)

Lookup order for each file: explicit path argument, ``DRSCLUB_SETTINGS`` /
``DRSCLUB_SECRETS`` environment variables, ``./config/``, then the current
working directory. Missing files fall back to defaults.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILENAME = "drsclub.settings.yaml"
SECRETS_FILENAME  = "drsclub.secrets.yaml"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _find_file(explicit: Optional[Path], env_var: str, filename: str) -> Path:
    if explicit is not None:
        return Path(explicit)
    from_env = os.environ.get(env_var)
    if from_env:
        return Path(from_env)
    in_config_dir = Path("config") / filename
    if in_config_dir.exists():
        return in_config_dir
    return Path(filename)


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:              str   = "0.0.0.0"
    port:              int   = 5000
    debug:             bool  = False
    ws_ping_interval:  float = 25.0
    ws_ping_timeout:   float = 60.0
    allowed_origins:   List[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"]
    )


class ChatSettings(BaseModel):
    """Limits for the live messaging core."""
    max_message_length:        int   = Field(5000, ge=1)
    history_page_size:         int   = Field(100, ge=1)
    max_history_page_size:     int   = Field(100, ge=1)
    heartbeat_timeout_seconds: float = Field(60.0, gt=0)


class DatabaseSettings(BaseModel):
    path: str = "chat_messages.duckdb"


class AuthSettings(BaseModel):
    algorithm:      str           = "HS256"
    leeway_seconds: int           = 10
    audience:       Optional[str] = None
    issuer:         Optional[str] = None


class LoggingSettings(BaseModel):
    level: str = "info"


class AppConfig(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    chat:     ChatSettings     = Field(default_factory=ChatSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    auth:     AuthSettings     = Field(default_factory=AuthSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    secrets:  Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------


def _resolve_db_path(raw: str, settings_path: Path) -> str:
    """Resolve a relative database path.

    With the ``<project>/config/drsclub.settings.yaml`` layout, relative paths
    are taken from the project root; otherwise from the settings directory.
    """
    if raw == ":memory:":
        return raw
    path = Path(raw)
    if path.is_absolute():
        return str(path)
    settings_dir = settings_path.resolve().parent
    base = settings_dir.parent if settings_dir.name == "config" else settings_dir
    return str(base / path)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object."""
    settings_file = _find_file(settings_path, "DRSCLUB_SETTINGS", SETTINGS_FILENAME)
    secrets_file = _find_file(secrets_path, "DRSCLUB_SECRETS", SECRETS_FILENAME)

    settings_data = _load_yaml(settings_file)
    secrets_data  = _load_yaml(secrets_file)

    # Merge: secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    config = AppConfig(**settings_data)
    config.database.path = _resolve_db_path(config.database.path, settings_file)
    logger.info(
        "Settings loaded (server=%s:%s, database=%s, max_message_length=%d)",
        config.server.host,
        config.server.port,
        config.database.path,
        config.chat.max_message_length,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[AppConfig]) -> None:
    """Replace (or clear, with None) the process-wide config."""
    global _config
    _config = config
