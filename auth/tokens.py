"""
auth/tokens.py -- Persistent ("remember me") login tokens.

Security design decisions:
  Binding: the token is a bcrypt hash of material derived from the user's
       username, password hash, full name, enabled flag and id. Changing any
       of those silently invalidates every outstanding token; there is no
       revocation list to maintain.

       identity seed   = SHA-256(username + password_hash + full_name + enabled + id)
       secondary salt  = SHA-256(password_hash)
       token material  = HMAC-SHA256(secondary salt, identity seed)
       token           = bcrypt(token material)

       The material is 64 hex chars, safely under bcrypt's 72-byte limit.

  Validation is three-stage and short-circuits on the first failure:
       1. constant-time equality with the stored token (cheap reject)
       2. expiry
       3. bcrypt compare of freshly derived material against the token

  Lifetime: AuthenticationSettings.login_token_lifetime_days (default 14).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from auth.errors import InvalidState
from auth.hashing import HashingService
from auth.models import User
from auth.store import utc_now
from auth.users import CredentialStore
from core.config import AuthenticationSettings

logger = logging.getLogger("credguard.auth")


class PersistentLoginToken:
    def __init__(
        self,
        credentials: CredentialStore,
        hashing: HashingService,
        settings: AuthenticationSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._credentials = credentials
        self._hashing = hashing
        self._settings = settings
        self._clock = clock

    def _token_material(self, user: User) -> str:
        if user.id is None:
            # No id to bind the token to.
            raise InvalidState("The user has not been saved")
        seed = self._hashing.digest(
            f"{user.username}{user.password_hash}{user.full_name}{int(user.enabled)}{user.id}"
        )
        secondary_salt = self._hashing.digest(user.password_hash)
        return self._hashing.keyed_digest(secondary_salt, seed)

    def issue(self, user: User) -> str:
        """Create, store and return a new token for a saved user.

        Raises InvalidState if user has never been saved.
        """
        token = self._hashing.hash(self._token_material(user))
        user.login_token = token
        user.login_token_expiry = self._clock() + timedelta(days=self._settings.login_token_lifetime_days)
        self._credentials.save(user)
        return token

    def validate(self, user: User, supplied: str) -> bool:
        """Return True if supplied is the user's current, unexpired, still-bound token."""
        if not self._hashing.constant_time_equals(user.login_token, supplied):
            return False

        if user.login_token_expiry is None or self._clock() > user.login_token_expiry:
            return False

        try:
            material = self._token_material(user)
        except InvalidState:
            return False
        return self._hashing.compare(material, supplied)

    def revoke(self, user: User) -> None:
        user.login_token = None
        user.login_token_expiry = None
        self._credentials.save(user)
