"""livechat application configuration.

Loads settings from two YAML files:
  * livechat.settings.yaml  non-secret configuration
  * livechat.secrets.yaml   secrets (never committed)

Both paths can be overridden with the LIVECHAT_SETTINGS / LIVECHAT_SECRETS
environment variables. Missing files fall back to defaults.
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

SETTINGS_FILE = Path("livechat.settings.yaml")
SECRETS_FILE  = Path("livechat.secrets.yaml")


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
    host:            str = "0.0.0.0"
    port:            int = 4000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"


class ChatSettings(BaseModel):
    """Limits and timeouts for the real-time chat core."""
    default_history_limit:  int   = 50
    max_history_limit:      int   = 200
    verify_timeout_seconds: float = 5.0
    store_timeout_seconds:  float = 5.0
    send_timeout_seconds:   float = 5.0

    @field_validator(
        "default_history_limit",
        "max_history_limit",
    )
    @classmethod
    def _positive_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("history limits must be >= 1")
        return value

    @field_validator(
        "verify_timeout_seconds",
        "store_timeout_seconds",
        "send_timeout_seconds",
    )
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be > 0")
        return value


class StorageSettings(BaseModel):
    # ":memory:" keeps everything in-process (tests, demos)
    db_path: str = "livechat.duckdb"


class AuthSettings(BaseModel):
    token_expire_minutes: int = 60 * 24 * 7  # 0 = never expires
    password_iterations:  int = 200_000


class AppSettings(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    chat:    ChatSettings    = Field(default_factory=ChatSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    auth:    AuthSettings    = Field(default_factory=AuthSettings)
    secrets: Secrets         = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_path = Path(
        settings_path or os.environ.get("LIVECHAT_SETTINGS") or SETTINGS_FILE
    )
    secrets_path = Path(
        secrets_path or os.environ.get("LIVECHAT_SECRETS") or SECRETS_FILE
    )

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, db=%s, history=%d/%d)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.storage.db_path,
        app_settings.chat.default_history_limit,
        app_settings.chat.max_history_limit,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(config: AppSettings) -> None:
    """Replace the process-wide settings (used by tests)."""
    global _config
    _config = config


def reset_config() -> None:
    global _config
    _config = None
