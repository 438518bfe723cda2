"""
auth/users.py -- User record validation and the two-phase save.

save() runs in three explicit steps:
  1. validate  -- built-in identity/name rules plus every registered
                  validator; errors accumulate into one ValidationFailed.
  2. persist   -- AuthStore.write_user() commits the row.
  3. callbacks -- registered after-commit callbacks run in registration
                  order with (user, previous). They never run for a write
                  that failed to commit.

Other components plug in at construction time (see auth/service.py):
PasswordHistoryGuard adds its reuse check as a validator and its archival as
an after-commit callback.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy.exc import IntegrityError

from auth.errors import NotFound, ValidationFailed
from auth.models import User
from auth.store import AuthStore, identity_index_name
from core.config import AuthenticationSettings

logger = logging.getLogger("credguard.auth")

Validator = Callable[[User], dict[str, str]]
AfterCommit = Callable[[User, "User | None"], None]


class CredentialStore:
    """Persisted user records with consistency validation."""

    def __init__(self, store: AuthStore, settings: AuthenticationSettings) -> None:
        self._store = store
        self._settings = settings
        self._validators: list[Validator] = []
        self._after_commit: list[AfterCommit] = []

    @property
    def identity_column(self) -> str:
        return self._settings.identity_column_name

    def identity_of(self, user: User) -> str:
        """Return the value of the configured identity column for user."""
        return getattr(user, self.identity_column) or ""

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def add_validator(self, validator: Validator) -> None:
        self._validators.append(validator)

    def add_after_commit(self, callback: AfterCommit) -> None:
        self._after_commit.append(callback)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, user_id: int) -> User:
        user = self._store.get_user(user_id)
        if user is None:
            raise NotFound(f"No user with id {user_id}.")
        return user

    def find_by_identity(self, value: str) -> User:
        user = self._store.find_user_by_identity(self.identity_column, value) if value else None
        if user is None:
            raise NotFound(f"No user with {self.identity_column} {value!r}.")
        return user

    def find_by_reset_hash(self, reset_hash: str) -> User:
        user = self._store.find_user_by_reset_hash(reset_hash)
        if user is None:
            raise NotFound("No user matches that password reset hash.")
        return user

    # ------------------------------------------------------------------
    # Validation and save
    # ------------------------------------------------------------------

    def validate(self, user: User) -> dict[str, str]:
        """Return every consistency error for user, keyed by field name.

        Disabled users skip the identity and name rules: they cannot log in,
        so a stale duplicate identity on a disabled record is harmless.
        """
        errors: dict[str, str] = {}
        column = self.identity_column

        if user.enabled:
            identity = self.identity_of(user)
            if not identity:
                errors[column] = f"The user must have a {column}"
            elif self._store.identity_in_use(column, identity, exclude_id=user.id):
                errors[column] = f"This {column} is already in use"

            if user.full_name == "":
                errors["name"] = "The user must have a name"

        for validator in self._validators:
            errors.update(validator(user))

        return errors

    def save(self, user: User) -> User:
        """Validate, persist, then run after-commit callbacks.

        Raises ValidationFailed with every accumulated error, including a
        unique-index conflict on the identity that slipped past the pre-save
        query (two concurrent registrations).
        """
        errors = self.validate(user)
        if errors:
            raise ValidationFailed(errors)

        try:
            previous = self._store.write_user(user)
        except IntegrityError as exc:
            if self._is_identity_conflict(exc):
                column = self.identity_column
                raise ValidationFailed({column: f"This {column} is already in use"}) from exc
            raise

        for callback in self._after_commit:
            callback(user, previous)

        user.pending_password = None
        return user

    def _is_identity_conflict(self, exc: IntegrityError) -> bool:
        # SQLite names the column ("users.username"); PostgreSQL names the index.
        message = str(exc.orig)
        return (
            identity_index_name(self.identity_column) in message or f"users.{self.identity_column}" in message
        )
