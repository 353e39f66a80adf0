"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for SignGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. signin_max_attempts -> SIGNIN_MAX_ATTEMPTS). Type coercion and
      validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. A bad rate-limit window or a weak token
      size is a startup failure, not a per-request surprise.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("signgate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'signgate.db'}"

# secrets.token_urlsafe(32) is 256 bits; anything smaller is refused.
MIN_API_TOKEN_BYTES = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    the sign-in throttling invariants at startup.
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

    # JSON lists in the environment, e.g. ALLOWED_HOSTS='["api.example.com"]'.
    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = []

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    # SQLite busy timeout in seconds. Writers wait at most this long for a lock.
    database_timeout: float = 5.0

    # ------------------------------------------------------------------
    # Sign-in throttling (per email+IP)
    # ------------------------------------------------------------------

    signin_max_attempts: int = 5
    signin_window_seconds: int = 60

    # Coarse per-IP guard applied by slowapi on top of the per email+IP limiter.
    signin_ip_rate_limit: str = "60/minute"

    # limits storage URI: "memory://" for a single process, "redis://host:6379"
    # when several workers must share counters.
    rate_limit_storage_uri: str = "memory://"
    rate_limit_storage_timeout: float = 2.0

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    api_token_bytes: int = 48

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_signin_policy(self) -> "Settings":
        """Reject throttling and token settings that cannot be enforced.

        SIGNIN_MAX_ATTEMPTS=0 is allowed and locks out every attempt (useful to
        freeze sign-in during an incident). A zero or negative window has no
        meaning for a fixed-window counter and is refused.
        """
        if self.signin_max_attempts < 0:
            raise ValueError("SIGNIN_MAX_ATTEMPTS must be zero or a positive integer.")
        if self.signin_window_seconds <= 0:
            raise ValueError("SIGNIN_WINDOW_SECONDS must be a positive number of seconds.")
        if self.rate_limit_storage_timeout <= 0:
            raise ValueError("RATE_LIMIT_STORAGE_TIMEOUT must be positive.")
        if self.api_token_bytes < MIN_API_TOKEN_BYTES:
            raise ValueError(f"API_TOKEN_BYTES must be at least {MIN_API_TOKEN_BYTES}.")
        if self.signin_max_attempts == 0:
            logger.warning("SIGNIN_MAX_ATTEMPTS=0 -- every sign-in attempt will be locked out.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
