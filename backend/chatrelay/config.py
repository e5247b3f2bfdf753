"""Chat relay application configuration.

Loads settings from two YAML files:
  * chatrelay.settings.yaml  : non-secret configuration
  * chatrelay.secrets.yaml   : secrets (never committed)

Either path can be overridden with the CHATRELAY_SETTINGS and
CHATRELAY_SECRETS environment variables.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("chatrelay.settings.yaml")
SECRETS_FILE  = Path("chatrelay.secrets.yaml")

IN_MEMORY_DB = ":memory:"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str  = "0.0.0.0"
    port:            int  = 3500
    reload:          bool = False
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level:  str = "info"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if not isinstance(logging.getLevelName(value.upper()), int):
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class StorageSettings(BaseModel):
    """Where the message log lives. ``:memory:`` keeps it in-process only."""
    db_path: str = "chat_messages.duckdb"


class HistorySettings(BaseModel):
    """Page sizes for room history delivery."""
    initial_page_size:    int = Field(default=100, ge=1)
    scrollback_page_size: int = Field(default=50, ge=1)
    max_page_size:        int = Field(default=100, ge=1)


class AppSettings(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    history: HistorySettings = Field(default_factory=HistorySettings)
    secrets: Secrets         = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------


def _resolve_db_path(settings: AppSettings, settings_path: Path) -> None:
    """Resolve a relative ``storage.db_path`` against the settings file directory."""
    db_path = settings.storage.db_path
    if db_path == IN_MEMORY_DB:
        return
    path = Path(db_path)
    if path.is_absolute():
        return
    settings.storage.db_path = str(settings_path.resolve().parent / path)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_path = Path(
        settings_path or os.environ.get("CHATRELAY_SETTINGS") or SETTINGS_FILE
    )
    secrets_path = Path(
        secrets_path or os.environ.get("CHATRELAY_SECRETS") or SECRETS_FILE
    )

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    _resolve_db_path(app_settings, settings_path)
    logger.info(
        "Settings loaded (server=%s:%s, db_path=%s, initial_page=%d, scrollback_page=%d)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.storage.db_path,
        app_settings.history.initial_page_size,
        app_settings.history.scrollback_page_size,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[AppSettings]) -> None:
    """Replace the process-wide settings (``None`` forces a reload)."""
    global _config
    _config = config
