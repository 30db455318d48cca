"""
core/config.py -- Gallery settings, read once from the environment and .env.

Nothing else in the tree reads os.environ for configuration; code asks
get_settings() for the cached Settings instance. Field names double as
environment variable names (media_root <- MEDIA_ROOT, bcrypt_rounds <-
BCRYPT_ROUNDS, ...).

Startup refuses to continue when:
  - SECRET_KEY is unset outside DEBUG mode, or shorter than 32 characters.
    It signs every session token.
  - BCRYPT_ROUNDS is below 10. The cost factor is what keeps an offline
    attack on a leaked users table expensive.
  - SESSION_MAX_AGE_SECONDS is not positive.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or media/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gallery.config")

# bcrypt cost never goes below this, whatever the environment says.
MIN_BCRYPT_ROUNDS = 10


class Settings(BaseSettings):
    """Every field has a default; with DEBUG=true, Settings() needs no .env at all."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # "" means unset; validate_security replaces it or refuses to start.
    secret_key: str = ""
    database_url: str = "sqlite:///gallery.db"
    # JSON list in the environment, e.g. ALLOWED_HOSTS='["gallery.example.org"]'
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    media_root: str = "./images"
    max_upload_bytes: int = 100 * 1024 * 1024

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_max_age_seconds: int = 24 * 3600
    # Applied to every failed login, whatever the cause.
    login_failure_delay_seconds: float = 1.0
    # ~100ms per hash on a current server core at 12.
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "5 per 15 minutes"
    api_rate_limit: str = "100/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_security(self) -> "Settings":
        """Fill in or reject the signing key, then check the hashing cost."""
        if not self.secret_key:
            if not self.debug:
                raise ValueError("SECRET_KEY must be set unless DEBUG=true (add it to the environment or .env).")
            # Dev only: every restart invalidates all sessions.
            self.secret_key = secrets.token_hex(32)
            logger.warning("SECRET_KEY not set; generated a throwaway key for this DEBUG process")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.bcrypt_rounds < MIN_BCRYPT_ROUNDS:
            raise ValueError(f"BCRYPT_ROUNDS must be at least {MIN_BCRYPT_ROUNDS}.")
        if self.session_max_age_seconds <= 0:
            raise ValueError("SESSION_MAX_AGE_SECONDS must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings. Tests that change the environment
    call get_settings.cache_clear() afterwards."""
    return Settings()
