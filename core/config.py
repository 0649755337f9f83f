"""
core/config.py -- Settings for authcore, loaded with pydantic-settings.

Environment variables (and an optional .env file) are read here and nowhere
else; other modules take values from get_settings() or, better, receive them
as constructor arguments.

Lifetime:
  get_settings() builds Settings on first call and caches it. build_auth_service()
  reads it once and hands each value to the component that owns it: the
  signing secret to TokenCodec, the cost factor to CredentialVerifier, the
  TTLs to TokenLifecycleManager. Nothing re-reads settings per request except
  the login rate limit.

  Env var names are the upper-cased field names (hash_cost -> HASH_COST).

Signing secret:
  Absent -> ConfigurationMissing, raised from the model validator, so the API
  refuses to start. No random fallback: it would invalidate every stored
  refresh token on each restart. Fewer than 32 characters -> ValueError.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigurationMissing


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Every field except secret_key has a default. Tests construct
    Settings(secret_key=...) directly instead of touching the environment.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured"; the validator below
    # turns it into ConfigurationMissing so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///authcore.db"

    # ------------------------------------------------------------------
    # Credentials and tokens
    # ------------------------------------------------------------------

    # bcrypt work factor. 4 is the bcrypt minimum (tests), 31 the maximum.
    hash_cost: int = Field(default=10, ge=4, le=31)
    access_token_ttl_minutes: int = Field(default=15, gt=0)
    refresh_token_ttl_days: int = Field(default=30, gt=0)
    jwt_algorithm: str = "HS256"

    # Role assigned to self-registered principals.
    default_role: str = "USER"

    # ------------------------------------------------------------------
    # HTTP layer
    # ------------------------------------------------------------------

    secure_cookies: bool = True
    login_rate_limit: str = "10/minute"

    # Background sweep of revoked/expired refresh tokens. 0 disables the loop;
    # rotation and logout still purge per principal.
    purge_interval_seconds: int = Field(default=0, ge=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Refuse to start without a usable signing secret.

        ConfigurationMissing is not a ValueError, so pydantic lets it
        propagate unchanged instead of wrapping it in a ValidationError.
        """
        if not self.secret_key:
            raise ConfigurationMissing(
                "SECRET_KEY is required. Set SECRET_KEY in your environment or .env file."
            )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Cached Settings. Tests that change the environment call get_settings.cache_clear()."""
    return Settings()
