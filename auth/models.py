"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container). Stores and guards do the work;
these classes only own the shape of a record.

Timestamps are timezone-aware UTC datetimes here. auth/store.py converts them
to and from ISO 8601 strings at the storage boundary.

Layer rule: no imports from outside the standard library.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class User:
    """An account that can log in with an identity value and a password.

    The identity value is whichever of username / email the
    AuthenticationSettings.identity_column_name names.

    id is None before the record is written to the database.

    pending_password holds the new plaintext between set_password() and a
    successful save so the reuse check can verify it against archived bcrypt
    hashes. It is never persisted and is cleared once the save commits.

    stored_values is the column snapshot this object was loaded with, or last
    wrote. AuthStore.write_user() only updates columns that differ from it, so
    a stale copy never overwrites a change someone else committed.
    """

    username: str = ""
    email: str = ""
    forename: str = ""
    surname: str = ""
    password_hash: str = ""
    enabled: bool = True
    id: int | None = None
    password_reset_hash: str | None = None
    password_reset_requested_at: datetime | None = None
    login_token: str | None = None
    login_token_expiry: datetime | None = None
    last_password_change_at: datetime | None = None
    pending_password: str | None = field(default=None, repr=False, compare=False)
    stored_values: dict | None = field(default=None, repr=False, compare=False)

    @property
    def full_name(self) -> str:
        return f"{self.forename} {self.surname}".strip()

    @property
    def password_changed(self) -> bool:
        return self.pending_password is not None


@dataclass
class PastPassword:
    """A superseded password hash, kept to stop a user cycling back to it."""

    user_id: int
    password_hash: str
    created_at: datetime
    id: int | None = None


@dataclass
class LoginAttempt:
    """One login attempt, successful or not.

    entered_identity is what the caller typed, not a user id: attempts against
    unknown identities are recorded too. id is the monotonic sequence that the
    lockout calculation uses as its baseline.
    """

    entered_identity: str
    successful: bool
    attempted_at: datetime
    id: int | None = None


@dataclass
class AccountStatus:
    """Derived access state for one account. Nothing here is stored."""

    identity: str
    enabled: bool
    locked_out: bool
    password_expired: bool
    failed_attempts_since_last_success: int
    has_pending_reset: bool
