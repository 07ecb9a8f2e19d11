"""Relay application configuration.

Loads settings from a single YAML file:
  * relay.settings.yaml  (path can be overridden with RELAY_SETTINGS)

Every section falls back to its defaults when absent, so an empty or missing
file yields a working configuration.
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

SETTINGS_FILE = Path("relay.settings.yaml")
SETTINGS_ENV_VAR = "RELAY_SETTINGS"

MIB = 1024 * 1024


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _require_positive(value: float) -> float:
    if value <= 0:
        raise ValueError("must be greater than zero")
    return value


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 3000
    log_level:       str       = "info"
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class ChatSettings(BaseModel):
    history_size:       int = 100
    max_text_length:    int = 1000
    max_nick_length:    int = 32
    max_room_length:    int = 64
    default_nick:       str = "anon"
    # frames queued per connection before new ones are dropped
    max_pending_frames: int = 256

    @field_validator(
        "history_size", "max_text_length", "max_nick_length", "max_room_length", "max_pending_frames"
    )
    @classmethod
    def _positive(cls, v: int) -> int:
        return int(_require_positive(v))


class RateLimitSettings(BaseModel):
    """Fixed-reset windows for chat, file chunks and room creation."""
    chat_limit:                 int   = 12
    chat_window_seconds:        float = 10.0
    chunk_limit:                int   = 400
    chunk_window_seconds:       float = 1.0
    create_room_limit:          int   = 10
    create_room_window_seconds: float = 3600.0

    @field_validator("*")
    @classmethod
    def _positive(cls, v: float) -> float:
        return _require_positive(v)


class FileSettings(BaseModel):
    max_file_size:    int = 50 * MIB
    max_chunk_length: int = 1 * MIB
    max_transfers:    int = 16

    @field_validator("*")
    @classmethod
    def _positive(cls, v: int) -> int:
        return int(_require_positive(v))


class AppConfig(BaseModel):
    server:     ServerSettings    = Field(default_factory=ServerSettings)
    chat:       ChatSettings      = Field(default_factory=ChatSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    files:      FileSettings      = Field(default_factory=FileSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load *AppConfig* from YAML.

    Args:
        settings_path: Explicit settings file. Defaults to ``$RELAY_SETTINGS``
            or ``relay.settings.yaml`` in the working directory.
    """
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))
    data = _load_yaml(Path(settings_path))

    config = AppConfig(**data)
    logger.info(
        "Settings loaded (server=%s:%s, history_size=%d, chat_limit=%d/%ss)",
        config.server.host,
        config.server.port,
        config.chat.history_size,
        config.rate_limit.chat_limit,
        config.rate_limit.chat_window_seconds,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[AppConfig]) -> None:
    """Replace the process-wide configuration (``None`` forces a reload)."""
    global _config
    _config = config
