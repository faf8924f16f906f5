"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the storefront backend happen here. No
module should call os.getenv() or os.environ.get() directly -- import
get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The
      signing secret is therefore a process-wide immutable value loaded once.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

Signing-secret policy:
  [M6] A JWT_SECRET shorter than 32 chars is rejected outright at startup.

  [M7] A missing JWT_SECRET in production does NOT stop the process. It is
       logged at CRITICAL and left empty; the request gate's configuration
       probe then answers every protected call with 500 "server configuration
       error" without touching any store. In DEBUG mode a random key is
       generated instead so local development works out of the box.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, audit/, or catalog/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("storefront.config")

_MAX_TOKEN_LIFETIME_SECONDS = 24 * 60 * 60


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
    # Empty string is the sentinel for "not configured".
    jwt_secret: str = ""
    database_url: str = "sqlite:///storefront.db"

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    token_expire_seconds: int = 4 * 60 * 60
    # Tolerance for tokens whose iat is slightly in the future (clock drift
    # between workers). Expiry has no tolerance at all.
    token_iat_leeway_seconds: int = 30

    # ------------------------------------------------------------------
    # CORS
    # ------------------------------------------------------------------

    site_url: str = ""
    cors_origins: list[str] = ["http://localhost:8888", "http://localhost:3000"]
    cors_allow_any_origin: bool = False

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Two-factor authentication
    # ------------------------------------------------------------------

    mfa_issuer: str = "Storefront Admin"
    backup_code_count: int = 10

    # ------------------------------------------------------------------
    # Anomaly detection thresholds
    # ------------------------------------------------------------------

    brute_force_threshold: int = 5
    brute_force_window_seconds: int = 60 * 60
    gift_card_threshold: int = 10
    gift_card_window_seconds: int = 60 * 60
    price_mismatch_threshold: int = 3
    price_mismatch_window_seconds: int = 24 * 60 * 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_jwt_secret(self) -> "Settings":
        """Enforce the JWT_SECRET policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: leave the secret empty and log CRITICAL -- the gate
            turns every protected request into a 500 until it is set.
        Both modes: reject keys shorter than 32 characters.
        """
        if not self.jwt_secret:
            if self.debug:
                self.jwt_secret = secrets.token_hex(32)
                logger.warning("Using auto-generated JWT_SECRET. Sessions will not persist across restarts.")
            else:
                logger.critical("JWT_SECRET is not set. Admin endpoints will answer 500 until it is configured.")
            return self
        if len(self.jwt_secret) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_token_lifetime(self) -> "Settings":
        """Session tokens are short-lived: between one minute and 24 hours."""
        if not 60 <= self.token_expire_seconds <= _MAX_TOKEN_LIFETIME_SECONDS:
            raise ValueError("TOKEN_EXPIRE_SECONDS must be between 60 and 86400.")
        return self

    @property
    def secret_configured(self) -> bool:
        return bool(self.jwt_secret)

    @property
    def allowed_origins(self) -> list[str]:
        """Browser origins allowed to call the API, site URL first."""
        if self.cors_allow_any_origin:
            return ["*"]
        origins = [self.site_url] if self.site_url else []
        return origins + [o for o in self.cors_origins if o and o not in origins]


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
