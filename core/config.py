"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): DEBUG-conditional SECRET_KEY logic. Dev mode
      generates a key with a warning, production mode refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. Staff session JWTs,
  reset-token HMACs and the customer session cookie are all keyed by it.

  SESSION_EXPIRE_SECONDS is also the revocation exposure window: a staff token
  copied before logout stays valid until it expires.

Layer rule: core/ is the kernel. This module may not import from api/, web/
or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("lalisure.config")


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
    secret_key: str = ""
    database_url: str = ""
    app_url: str = "http://localhost:3000"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]

    # ------------------------------------------------------------------
    # Staff sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_expire_seconds: int = 24 * 3600
    password_reset_expire_seconds: int = 3600

    # ------------------------------------------------------------------
    # Hosted identity provider (customer path). Empty means disabled.
    # ------------------------------------------------------------------

    oidc_client_id: str = ""
    oidc_client_secret: str = ""
    oidc_discovery_url: str = ""
    identity_webhook_secret: str = ""

    # ------------------------------------------------------------------
    # Email (Resend). Empty key means messages are logged, not sent.
    # ------------------------------------------------------------------

    resend_api_key: str = ""
    email_from: str = "Lalisure <no-reply@lalisure.com>"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    # memory:// is per-process. Multi-worker deployments must use a shared
    # backend such as redis://host:6379 or the limits will not hold.
    rate_limit_storage_uri: str = "memory://"
    login_rate_limit: str = "5/15minutes"
    password_rate_limit: str = "3/hour"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Staff sessions will not survive restart.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is not set. It signs staff sessions, reset-token hashes and the "
                    "customer session cookie. Set it in the environment or .env, or set DEBUG=true "
                    "for a throwaway development key."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def oidc_enabled(self) -> bool:
        return bool(self.oidc_client_id and self.oidc_client_secret and self.oidc_discovery_url)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Tests that need different values patch attributes on the returned
    instance or call get_settings.cache_clear() after changing the environment.
    """
    return Settings()
