"""
Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # ==========================================================================
    # Environment
    # ==========================================================================

    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # ==========================================================================
    # API Server
    # ==========================================================================

    api_host: str = "0.0.0.0"
    api_port: int = 3000
    cors_origins: str = "http://localhost:5173"

    # ==========================================================================
    # Storage
    # ==========================================================================

    data_dir: str = "./data"
    database_url: str = "sqlite+aiosqlite:///./data/homie.db"

    # ==========================================================================
    # Sessions
    # ==========================================================================

    session_cookie_name: str = "session"
    session_ttl_days: int = 7

    # ==========================================================================
    # Authentication
    # ==========================================================================

    # "password" = username + password, "passkey" = WebAuthn ceremonies
    auth_mode: Literal["password", "passkey"] = "password"
    password_min_length: int = 8

    webauthn_rp_id: str = "localhost"
    webauthn_rp_name: str = "Homie"
    webauthn_origin: str = "http://localhost:5173"
    challenge_ttl_seconds: int = 300

    # ==========================================================================
    # Sync
    # ==========================================================================

    sync_path: str = "/sync"

    # ==========================================================================
    # Optional Services
    # ==========================================================================

    sentry_dsn: str = ""

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(days=self.session_ttl_days)

    @property
    def cors_origins_list(self) -> list[str]:
        addon_origins = load_addon_origins(self.data_dir)
        if addon_origins:
            return addon_origins
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


def load_addon_origins(data_dir: str) -> list[str]:
    """
    Read allowed origins from a home-automation add-on ``options.json``.

    The add-on supervisor writes user options into the data directory.
    A missing or malformed file yields an empty list.
    """
    path = Path(data_dir) / "options.json"
    if not path.exists():
        return []

    try:
        options = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring malformed {path}: {e}")
        return []

    origins = options.get("origins") if isinstance(options, dict) else None
    if not isinstance(origins, list):
        return []
    return [str(o).strip() for o in origins if str(o).strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
