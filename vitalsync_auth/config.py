"""
Application Configuration.

Pydantic Settings model for the VitalSync authentication core.
All configuration is loaded from environment variables and .env files.
Inject an AuthConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import SecretStr, model_validator

_INSECURE_TOKEN_SECRET: str = "change-this-secret-in-prod"


class AuthConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Tokens ---
    TOKEN_SECRET: SecretStr = SecretStr(_INSECURE_TOKEN_SECRET)
    TOKEN_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_TTL_SECONDS: int = 86_400  # 24 hours
    REFRESH_TOKEN_TTL_SECONDS: int = 604_800  # 7 days

    # --- Credentials ---
    PASSWORD_MIN_LENGTH: int = 8
    PASSWORD_HASH_ITERATIONS: int = 600_000

    # --- Call boundaries ---
    CALL_TIMEOUT_S: float = 10.0
    SIMULATED_LATENCY_S: float = 0.0

    # --- Session persistence ---
    SESSION_DB_PATH: str = "vitalsync_auth.db"
    SESSION_ENCRYPTION_KEY: SecretStr = SecretStr("")
    SESSION_KDF_ITERATIONS: int = 600_000

    # --- Development ---
    SEED_DEMO_ACCOUNTS: bool = False

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_insecure_defaults(self) -> "AuthConfig":
        """Emit a startup warning when secrets are left at their defaults.

        Pydantic silently falls back to defaults when ``.env`` is missing,
        so operators get a log line instead of a silently weak setup.
        """
        _log = logging.getLogger("vitalsync_auth.config")

        if not Path(".env").exists():
            _log.debug(
                "No .env file found; configuration loaded from "
                "environment variables or defaults."
            )

        if self.TOKEN_SECRET.get_secret_value() == _INSECURE_TOKEN_SECRET:
            _log.warning(
                "TOKEN_SECRET is the built-in placeholder. Tokens issued by "
                "this process can be forged by anyone who reads the source."
            )

        if not self.SESSION_ENCRYPTION_KEY.get_secret_value():
            _log.info(
                "SESSION_ENCRYPTION_KEY is empty; persisted sessions are "
                "keyed to this machine's identity."
            )

        return self

    @property
    def log_level(self) -> int:
        """Numeric ``logging`` level for :attr:`LOG_LEVEL`."""
        level = logging.getLevelName(self.LOG_LEVEL.upper())
        return level if isinstance(level, int) else logging.INFO


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AuthConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AuthConfig:
    """Return a cached ``AuthConfig`` singleton.

    On first call, creates an ``AuthConfig`` instance (reading from ``.env``).
    Subsequent calls return the same instance.  Uses a check-lock-check
    pattern so the fast path never takes the lock.

    Prefer direct constructor injection of ``AuthConfig``; this factory
    exists for entry points and for the logger defaults.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AuthConfig()
    return _config_instance
