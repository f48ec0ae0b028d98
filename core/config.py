"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for SessionGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The auth
      core never reads it implicitly; AuthService.from_settings() receives
      the instance explicitly.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. cookie_name -> COOKIE_NAME). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field production-safety checks run
      after all fields are resolved. A deployment that would hand session
      cookies to plain HTTP or store passwords with a fast digest refuses to
      start instead of running in a degraded mode.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("sessiongate.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///./sessiongate_auth.db"
    # SQLite busy timeout. A locked database past this bound surfaces as
    # StoreUnavailable rather than blocking the request indefinitely.
    database_timeout_seconds: float = Field(default=5.0, gt=0)

    # ------------------------------------------------------------------
    # Session cookie
    # ------------------------------------------------------------------

    cookie_name: str = Field(default="session_token", min_length=1)
    cookie_path: str = "/"
    # 0 means "same as session_ttl_seconds" so cookie and session expire together.
    cookie_max_age: int = Field(default=0, ge=0)
    cookie_httponly: bool = True
    cookie_secure: bool = True
    cookie_samesite: Literal["strict", "lax", "none"] = "strict"

    # ------------------------------------------------------------------
    # Token lifetimes
    # ------------------------------------------------------------------

    session_ttl_seconds: int = 24 * 3600
    password_reset_ttl_seconds: int = 3600

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    hash_algorithm: Literal["bcrypt", "sha256"] = "bcrypt"
    # bcrypt log2 work factor. 12 is a sane production floor; tests use 4.
    hash_cost: int = Field(default=12, ge=4, le=31)
    # 0 disables the bound. When set, a hash that runs longer raises
    # OperationTimeout instead of being reported as bad credentials.
    hash_timeout_seconds: float = Field(default=0, ge=0)

    # ------------------------------------------------------------------
    # Rate limiting / maintenance
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    purge_interval_seconds: int = Field(default=3600, gt=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_security_policy(self) -> "Settings":
        """Refuse configurations that would weaken the session boundary.

        Always: HttpOnly is mandatory and both TTLs must be positive.

        Production mode (DEBUG=false or not set): the cookie must carry the
            Secure attribute and passwords must be hashed with bcrypt.

        Dev mode (DEBUG=true): plain-HTTP cookies and the fast sha256 hasher
            are allowed, with a warning.
        """
        if not self.cookie_httponly:
            raise ValueError("COOKIE_HTTPONLY must be true; session tokens must not be readable by scripts.")
        if self.session_ttl_seconds <= 0 or self.password_reset_ttl_seconds <= 0:
            raise ValueError("SESSION_TTL_SECONDS and PASSWORD_RESET_TTL_SECONDS must be positive.")
        if self.debug:
            if not self.cookie_secure or self.hash_algorithm != "bcrypt":
                logger.warning(
                    "WARNING: Development security settings in use (cookie_secure=%s, hash_algorithm=%s).",
                    self.cookie_secure,
                    self.hash_algorithm,
                )
            return self
        if not self.cookie_secure:
            raise ValueError(
                "COOKIE_SECURE must be true in production mode. "
                "To run over plain HTTP locally, set DEBUG=true."
            )
        if self.hash_algorithm != "bcrypt":
            raise ValueError(
                "HASH_ALGORITHM=sha256 is only allowed in development mode. "
                "Use bcrypt for any deployment that stores real credentials."
            )
        return self

    @property
    def effective_cookie_max_age(self) -> int:
        """Cookie max-age in seconds, defaulting to the session lifetime."""
        return self.cookie_max_age or self.session_ttl_seconds


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
