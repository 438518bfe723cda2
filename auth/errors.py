"""
auth/errors.py -- Exception taxonomy for the authentication core.

Every failure a caller is expected to handle derives from AuthError, so a
presentation layer can map them to responses in one place. Persistence errors
that are not part of this taxonomy (connection loss, schema problems)
propagate as the SQLAlchemy exceptions they are.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from auth.models import User


class AuthError(Exception):
    """Base exception for the authentication core"""


class NotFound(AuthError):
    """Raised when no user matches an id, identity, or reset hash"""


class InvalidCredentials(AuthError):
    """Raised when an identity/password pair does not authenticate"""


class InvalidToken(AuthError):
    """Raised when a persistent login token is wrong, stale, or expired"""


class LockedOut(AuthError):
    """Raised when repeated failures have temporarily locked an account"""


class InvalidState(AuthError):
    """Raised when an operation needs a record that has not been saved yet"""


class PasswordExpired(AuthError):
    """Raised after a correct password when the password is past its expiry.

    Carries the user so the caller can send them to a change-password flow.
    """

    def __init__(self, user: User) -> None:
        super().__init__("The password for this account has expired.")
        self.user = user


class ValidationFailed(AuthError):
    """Raised when a record fails pre-save validation.

    errors maps field name to message. Validation accumulates, so more than
    one field can be reported at once.
    """

    def __init__(self, errors: dict[str, str]) -> None:
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))
        self.errors = errors
