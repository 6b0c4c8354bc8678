"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Inkpost happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). List fields are read as JSON
      (ADMIN_PATH_PREFIXES='["/admin", "/dashboard"]').

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing and
       the session middleware both rely on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/ or content/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("inkpost.config")


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
    app_base_url: str = "http://localhost:8000"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # Empty string means "use the store's bundled SQLite file".
    auth_database_url: str = ""
    content_database_url: str = ""

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    # Absolute JWT lifetime for every role.
    token_expire_seconds: int = 8 * 3600
    # Ceiling on elevated (ADMIN) sessions, measured from issuance.
    elevated_session_max_age_seconds: int = 2 * 3600
    reset_token_ttl_seconds: int = 3600

    # ------------------------------------------------------------------
    # Route guard -- path classification is data, not code
    # ------------------------------------------------------------------

    login_path: str = "/auth/login"
    home_path: str = "/"
    admin_path_prefixes: list[str] = ["/admin"]
    protected_path_prefixes: list[str] = ["/profile"]

    # Demo surface: a plain cookie flag, unrelated to the session token.
    demo_path_prefixes: list[str] = ["/studio"]
    demo_login_path: str = "/login"
    demo_home_path: str = "/studio"
    demo_cookie_name: str = "authenticated"
    demo_cookie_value: str = "true"
    demo_cookie_max_age: int = 3600
    demo_login_email: str = ""
    demo_login_password: str = ""

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    github_client_id: str = ""
    github_client_secret: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""

    # ------------------------------------------------------------------
    # Rate limiting / registration / reset delivery
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    self_registration_enabled: bool = True
    # When set, reset links are POSTed here as JSON instead of only logged.
    reset_webhook_url: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("admin_path_prefixes", "protected_path_prefixes", "demo_path_prefixes")
    @classmethod
    def validate_prefixes(cls, v: list[str]) -> list[str]:
        for prefix in v:
            if not prefix.startswith("/"):
                raise ValueError(f"Path prefix must start with '/': {prefix!r}")
        return [p.rstrip("/") or "/" for p in v]

    @field_validator("elevated_session_max_age_seconds", "token_expire_seconds", "reset_token_ttl_seconds")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Durations must be positive")
        return v

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
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

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
