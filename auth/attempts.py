"""
auth/attempts.py -- Login attempt audit trail, lockout and password expiry.

Lockout is derived, never stored. An account is locked while:
  - the feature is on, and
  - at least `threshold` failed attempts exist after the most recent
    successful attempt (or ever, if none succeeded), and
  - the most recent of those failures is younger than
    total_minutes_to_disable_user_account.

Once that window passes the account is usable again without any explicit
unlock. A recorded success moves the baseline forward and clears the count.

Expiry is independent of lockout: it depends only on the time since the
last password change.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from auth.models import LoginAttempt, User
from auth.store import AuthStore, utc_now
from core.config import AuthenticationSettings

logger = logging.getLogger("credguard.auth")


class LoginAttemptGuard:
    def __init__(
        self,
        store: AuthStore,
        settings: AuthenticationSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock

    def record(self, identity: str, successful: bool) -> LoginAttempt:
        """Append one attempt to the audit trail.

        Storage errors propagate: a lockout computed from an incomplete trail
        would be wrong.
        """
        attempt = LoginAttempt(entered_identity=identity, successful=successful, attempted_at=self._clock())
        attempt.id = self._store.add_login_attempt(attempt)
        return attempt

    def _failures_since_last_success(self, identity: str) -> list[LoginAttempt]:
        last_success = self._store.last_successful_attempt(identity)
        after_id = last_success.id if last_success is not None else None
        return self._store.failed_attempts_after(identity, after_id)

    def failed_attempts_since_last_success(self, identity: str) -> int:
        return len(self._failures_since_last_success(identity))

    def is_locked_out_identity(self, identity: str) -> bool:
        if not self._settings.disable_account_after_failed_login_attempts:
            return False

        failures = self._failures_since_last_success(identity)
        if len(failures) < self._settings.number_of_failed_login_attempts_threshold:
            return False

        most_recent = failures[0]
        window = timedelta(minutes=self._settings.total_minutes_to_disable_user_account)
        return self._clock() - most_recent.attempted_at < window

    def is_locked_out(self, user: User) -> bool:
        """Return True while user's identity is inside an active lockout window."""
        return self.is_locked_out_identity(getattr(user, self._settings.identity_column_name) or "")

    def is_expired(self, user: User) -> bool:
        """Return True once the password is older than the configured number of days."""
        days = self._settings.password_expiration_interval_in_days
        if not days or user.last_password_change_at is None:
            return False
        return self._clock() - user.last_password_change_at > timedelta(days=days)
