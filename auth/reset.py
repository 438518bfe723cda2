"""
auth/reset.py -- Password reset hashes.

A reset hash is single-use: redeeming it changes the password, and every
password change clears the hash. Requesting a new hash overwrites the old
one, so only the latest emailed link works.

By default a hash never expires on its own. Setting
AUTH_PASSWORD_RESET_HASH_LIFETIME_MINUTES bounds its age; an expired hash is
reported exactly like an unknown one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from auth.errors import NotFound
from auth.hashing import HashingService
from auth.history import PasswordHistoryGuard
from auth.models import User
from auth.store import utc_now
from auth.users import CredentialStore
from core.config import AuthenticationSettings

logger = logging.getLogger("credguard.auth")


class PasswordResetFlow:
    def __init__(
        self,
        credentials: CredentialStore,
        history: PasswordHistoryGuard,
        hashing: HashingService,
        settings: AuthenticationSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._credentials = credentials
        self._history = history
        self._hashing = hashing
        self._settings = settings
        self._clock = clock

    def request_reset(self, user: User) -> str:
        """Generate, store and return a fresh reset hash for user."""
        now = self._clock()
        reset_hash = self._hashing.generate_token(user.id, now.isoformat())
        user.password_reset_hash = reset_hash
        user.password_reset_requested_at = now
        self._credentials.save(user)
        logger.info("Password reset requested for user_id=%s", user.id)
        return reset_hash

    def find_by_reset_hash(self, reset_hash: str) -> User:
        """Return the user holding reset_hash. Raises NotFound if none does or it has expired."""
        user = self._credentials.find_by_reset_hash(reset_hash)
        if self._is_expired(user):
            logger.warning("Expired password reset hash presented for user_id=%s", user.id)
            raise NotFound("No user matches that password reset hash.")
        return user

    def redeem(self, reset_hash: str, new_password: str) -> User:
        """Set a new password for the holder of reset_hash.

        The password change clears the hash, so a second redemption raises
        NotFound. ValidationFailed (e.g. password reuse) leaves the hash in
        place so the user can try a different password.
        """
        user = self.find_by_reset_hash(reset_hash)
        self._history.set_password(user, new_password)
        self._credentials.save(user)
        logger.info("Password reset completed for user_id=%s", user.id)
        return user

    def _is_expired(self, user: User) -> bool:
        lifetime = self._settings.password_reset_hash_lifetime_minutes
        if not lifetime or user.password_reset_requested_at is None:
            return False
        return self._clock() - user.password_reset_requested_at > timedelta(minutes=lifetime)
