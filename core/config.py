"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the pizza service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, factory_url -> FACTORY_URL).

  @model_validator(mode="after"): DEBUG-conditional SECRET_KEY handling. Dev
      mode generates a key with a warning, production mode refuses to start
      without one.

Security notes:
  SECRET_KEY signs every session JWT. Keys shorter than 32 chars are rejected.
  A missing key outside DEBUG mode is a hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
database/, or services/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("pizza.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'pizza.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    version: str = "1.0.0"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    token_expire_seconds: int = 60 * 60 * 24
    bcrypt_rounds: int = 10
    login_rate_limit: str = "10/minute"

    # Seed admin, created on startup only when the users table is empty and a
    # password is configured.
    default_admin_name: str = "常用名字"
    default_admin_email: str = "a@jwt.com"
    default_admin_password: str = ""

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    db_timeout_seconds: float = 10.0
    list_per_page: int = 10

    # ------------------------------------------------------------------
    # Pizza factory
    # ------------------------------------------------------------------

    factory_url: str = "https://pizza-factory.cs329.click"
    factory_api_key: str = ""
    factory_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Telemetry (empty URL disables the sink)
    # ------------------------------------------------------------------

    logging_source: str = "jwt-pizza-service"
    logging_url: str = ""
    logging_user_id: str = ""
    logging_api_key: str = ""

    metrics_source: str = "jwt-pizza-service"
    metrics_url: str = ""
    metrics_api_key: str = ""
    system_metrics_interval_seconds: int = 5
    active_users_interval_seconds: int = 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Issued tokens will not survive a restart.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() if you need to inject different
    environment variables.
    """
    return Settings()
