"""
core/config.py -- Gatehouse settings, read once from the environment.

Settings is a pydantic-settings BaseSettings: each field is filled from the
environment variable of the same name (upper-cased) or from a local .env
file, with type coercion done by pydantic. get_settings() is lru_cached so
the whole process shares one instance; nothing else reads os.environ.

SECRET_KEY signs session tokens (HS256):
  [M6] Keys under 32 characters are refused.
  [M7] Without DEBUG=true a missing key stops startup. With DEBUG=true a
       random key is generated and every session dies with the process.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or storage/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatehouse.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'storage' / 'gatehouse.db'}"


class Settings(BaseSettings):
    """Every field has a default, so tests only set what they change."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # "" means unset; resolved by validate_secret_key
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Storage / identity source
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    # Identifier of the bundled SQL identity source. Appears in every
    # /api/v1/data/{source}/... path.
    data_source: str = "database"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    # Idle timeout: a session unused for this long is destroyed.
    session_timeout_seconds: int = 3600
    # Hard lifetime of the signed session token, regardless of activity.
    token_expire_seconds: int = 8 * 3600

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    rate_limit_enabled: bool = True
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Resolve SECRET_KEY [M7], check its length [M6] and the session timeouts."""
        if not self.secret_key:
            if not self.debug:
                raise ValueError("SECRET_KEY must be set unless DEBUG=true (development mode).")
            self.secret_key = secrets.token_hex(32)
            logger.warning("SECRET_KEY not set; generated a throwaway key. Sessions end on restart.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.session_timeout_seconds <= 0 or self.token_expire_seconds <= 0:
            raise ValueError("Session timeouts must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Process-wide Settings. Tests set env vars before the first call."""
    return Settings()
