"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly.

Design patterns used:
  Explicit settings objects: AuthenticationSettings is passed into every
      auth component at construction. Components never reach for a global;
      only entry points (main.py) call get_settings().

  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Policy fields use the AUTH_
      prefix (e.g. number_of_failed_login_attempts_threshold ->
      AUTH_NUMBER_OF_FAILED_LOGIN_ATTEMPTS_THRESHOLD).

  @model_validator(mode="after"): cross-field checks that a single Field
      constraint cannot express (lockout enabled with a zero threshold).

Layer rule: core/ is the kernel. This module may not import from auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("credguard.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'credguard_auth.db'}"


class AuthenticationSettings(BaseSettings):
    """Authentication policy. Read-only after construction.

    Zero means "off" for the day/minute windows and for the password history
    window, mirroring how operators switch these policies off in env files.
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    identity_column_name: Literal["username", "email"] = "username"

    # ------------------------------------------------------------------
    # Password history
    # ------------------------------------------------------------------

    store_user_password_changes: bool = False
    number_of_past_passwords_to_compare_to: int = Field(default=0, ge=0)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    password_expiration_interval_in_days: int = Field(default=0, ge=0)

    # ------------------------------------------------------------------
    # Lockout
    # ------------------------------------------------------------------

    disable_account_after_failed_login_attempts: bool = False
    number_of_failed_login_attempts_threshold: int = Field(default=0, ge=0)
    total_minutes_to_disable_user_account: int = Field(default=0, ge=0)

    # ------------------------------------------------------------------
    # Tokens and hashing
    # ------------------------------------------------------------------

    login_token_lifetime_days: int = Field(default=14, ge=1)
    password_reset_hash_lifetime_minutes: int = Field(default=0, ge=0)
    # bcrypt cost factor. 12 is the library default; tests drop to 4.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    @model_validator(mode="after")
    def validate_lockout_policy(self) -> "AuthenticationSettings":
        """Reject a lockout policy that would lock every account on first sight.

        With the feature on and a threshold of 0, a user with no failed
        attempts at all satisfies "count >= threshold". That is never what an
        operator means, so refuse to start rather than lock everyone out.
        """
        if self.disable_account_after_failed_login_attempts and self.number_of_failed_login_attempts_threshold < 1:
            raise ValueError(
                "number_of_failed_login_attempts_threshold must be at least 1 "
                "when disable_account_after_failed_login_attempts is enabled."
            )
        if self.store_user_password_changes and self.number_of_past_passwords_to_compare_to == 0:
            logger.warning(
                "Password changes are archived but number_of_past_passwords_to_compare_to is 0; "
                "reuse will not be checked."
            )
        return self


class Settings(BaseSettings):
    """Process-level settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL
    log_level: str = "INFO"

    auth: AuthenticationSettings = Field(default_factory=AuthenticationSettings)


@lru_cache
def get_settings() -> Settings:
    """Return the process Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    Library code receives AuthenticationSettings explicitly instead of calling
    this.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
