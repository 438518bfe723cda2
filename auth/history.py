"""
auth/history.py -- Password changes and reuse prevention.

A password change is staged on the in-memory User by set_password(), checked
by validate_change() during CredentialStore.validate(), and archived by
after_save() once the new row has committed.

The reuse check verifies the pending *plaintext* against each archived bcrypt
hash. Comparing the new hash to an old hash would never match: every bcrypt
hash carries its own random salt.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from auth.errors import ValidationFailed
from auth.hashing import HashingService
from auth.models import PastPassword, User
from auth.store import AuthStore, utc_now
from core.config import AuthenticationSettings

logger = logging.getLogger("credguard.auth")

PASSWORD_REUSED = "The password you have entered has already been used. Please enter a new password."


class PasswordHistoryGuard:
    def __init__(
        self,
        store: AuthStore,
        hashing: HashingService,
        settings: AuthenticationSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._hashing = hashing
        self._settings = settings
        self._clock = clock

    def set_password(self, user: User, new_password: str) -> None:
        """Stage a new password on user. Nothing is written until save().

        Clears any pending reset hash: a password change by any route
        invalidates an outstanding reset link.

        Raises ValidationFailed for an empty password or one bcrypt cannot
        hash (over 72 bytes).
        """
        try:
            user.password_hash = self._hashing.hash(new_password)
        except ValueError as exc:
            raise ValidationFailed({"password": str(exc)}) from exc
        user.password_reset_hash = None
        user.password_reset_requested_at = None
        user.last_password_change_at = self._clock()
        user.pending_password = new_password

    def validate_change(self, user: User) -> dict[str, str]:
        """Reject a staged password that matches one of the last N archived hashes."""
        window = self._settings.number_of_past_passwords_to_compare_to
        if not window or not user.password_changed or user.id is None:
            return {}

        for past in self._store.recent_past_passwords(user.id, window):
            if self._hashing.compare(user.pending_password, past.password_hash):
                logger.warning("Rejected reuse of a previous password for user_id=%s", user.id)
                return {"password": PASSWORD_REUSED}
        return {}

    def after_save(self, user: User, previous: User | None) -> None:
        """Archive the superseded hash after the user row has committed.

        Runs only when archiving is on, this save staged a new password, and
        the hash really changed from a non-empty value. A brand-new user has
        nothing to archive. A save that did not stage a password never
        archives, even when previous holds a hash committed by someone else.
        """
        if not self._settings.store_user_password_changes or not user.password_changed:
            return
        if previous is None or not previous.password_hash:
            return
        if previous.password_hash == user.password_hash:
            return

        # Keep N-1 so that, with the row appended below, N remain.
        keep = max(self._settings.number_of_past_passwords_to_compare_to - 1, 0)
        self._store.archive_password(
            PastPassword(user_id=user.id, password_hash=previous.password_hash, created_at=self._clock()),
            keep=keep,
        )
        logger.debug("Archived previous password for user_id=%s (keeping %d)", user.id, keep + 1)
