"""
auth/service.py -- AuthenticationService, the entry point for callers.

Wires the components together once, with one store, one settings object and
one clock, and exposes the operations a presentation layer needs:

  request_password_reset(identity)             -> reset hash
  confirm_password_reset(reset_hash, password) -> User
  login(identity, password)                    -> (User, persistent token)
  login_via_token(user_id, token)              -> User
  logout(user_id)

plus account administration (create_user, change_password, set_enabled,
account_status).

Login decisions:
  Unknown identity: bcrypt still runs against a dummy hash so response time
      does not reveal whether the identity exists. The failure is recorded.
  Locked out: LockedOut is raised before the password is checked. The
      attempt is still recorded as a failure, so the trail stays complete
      and the lockout window runs from the latest failure.
  Disabled: indistinguishable from a wrong password to the caller.
  Expired password: the credentials were right, so a success is recorded,
      but PasswordExpired is raised and no token is issued.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from auth.attempts import LoginAttemptGuard
from auth.errors import InvalidCredentials, InvalidToken, LockedOut, NotFound, PasswordExpired
from auth.hashing import HashingService
from auth.history import PasswordHistoryGuard
from auth.models import AccountStatus, User
from auth.reset import PasswordResetFlow
from auth.store import AuthStore, utc_now
from auth.tokens import PersistentLoginToken
from auth.users import CredentialStore
from core.config import AuthenticationSettings

logger = logging.getLogger("credguard.auth")


class AuthenticationService:
    """Authentication policy over an AuthStore.

    Usage:
        service = AuthenticationService(AuthStore(url), AuthenticationSettings())
        service.create_user(username="bob", forename="Bob", password="s3cret!")
        user, token = service.login("bob", "s3cret!")
    """

    def __init__(
        self,
        store: AuthStore,
        settings: AuthenticationSettings,
        clock: Callable[[], datetime] = utc_now,
        hashing: HashingService | None = None,
    ) -> None:
        if store.identity_column != settings.identity_column_name:
            raise ValueError(
                f"Store indexes {store.identity_column!r} but settings use {settings.identity_column_name!r}."
            )
        self.settings = settings
        self.store = store
        self.hashing = hashing or HashingService(rounds=settings.bcrypt_rounds)

        self.credentials = CredentialStore(store, settings)
        self.history = PasswordHistoryGuard(store, self.hashing, settings, clock)
        self.attempts = LoginAttemptGuard(store, settings, clock)
        self.tokens = PersistentLoginToken(self.credentials, self.hashing, settings, clock)
        self.resets = PasswordResetFlow(self.credentials, self.history, self.hashing, settings, clock)

        # Ordered: the reuse check joins the pre-save validation pass and
        # archival runs after the user row commits.
        self.credentials.add_validator(self.history.validate_change)
        self.credentials.add_after_commit(self.history.after_save)

    # ------------------------------------------------------------------
    # Account administration
    # ------------------------------------------------------------------

    def create_user(
        self,
        password: str,
        username: str = "",
        email: str = "",
        forename: str = "",
        surname: str = "",
        enabled: bool = True,
    ) -> User:
        """Create and save a user. Raises ValidationFailed on any consistency error."""
        user = User(username=username, email=email, forename=forename, surname=surname, enabled=enabled)
        self.history.set_password(user, password)
        self.credentials.save(user)
        logger.info("Created user_id=%s (%s)", user.id, self.credentials.identity_of(user))
        return user

    def change_password(self, user_id: int, new_password: str) -> User:
        user = self.credentials.get(user_id)
        self.history.set_password(user, new_password)
        self.credentials.save(user)
        logger.info("Password changed for user_id=%s", user.id)
        return user

    def set_enabled(self, user_id: int, enabled: bool) -> User:
        user = self.credentials.get(user_id)
        user.enabled = enabled
        return self.credentials.save(user)

    def account_status(self, identity: str) -> AccountStatus:
        user = self.credentials.find_by_identity(identity)
        return AccountStatus(
            identity=identity,
            enabled=user.enabled,
            locked_out=self.attempts.is_locked_out(user),
            password_expired=self.attempts.is_expired(user),
            failed_attempts_since_last_success=self.attempts.failed_attempts_since_last_success(identity),
            has_pending_reset=bool(user.password_reset_hash),
        )

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_password_reset(self, identity: str) -> str:
        """Return a new reset hash for identity. Raises NotFound for unknown identities."""
        user = self.credentials.find_by_identity(identity)
        return self.resets.request_reset(user)

    def confirm_password_reset(self, reset_hash: str, new_password: str) -> User:
        return self.resets.redeem(reset_hash, new_password)

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(self, identity: str, password: str) -> tuple[User, str]:
        """Authenticate identity/password and issue a persistent token."""
        try:
            user = self.credentials.find_by_identity(identity)
        except NotFound:
            # Equalize timing -- do NOT return before running bcrypt.
            self.hashing.verify_dummy(password)
            self.attempts.record(identity, successful=False)
            logger.warning("Failed login for unknown identity %r", identity)
            raise InvalidCredentials("Invalid credentials.") from None

        if self.attempts.is_locked_out(user):
            self.attempts.record(identity, successful=False)
            logger.warning("Rejected login for locked out identity %r", identity)
            raise LockedOut("This account is temporarily locked. Try again later.")

        if not self.hashing.verify(password, user.password_hash) or not user.enabled:
            self.attempts.record(identity, successful=False)
            logger.warning("Failed login for identity %r", identity)
            raise InvalidCredentials("Invalid credentials.")

        self.attempts.record(identity, successful=True)

        if self.attempts.is_expired(user):
            logger.info("Password expired for identity %r", identity)
            raise PasswordExpired(user)

        token = self.tokens.issue(user)
        logger.info("Login succeeded for user_id=%s", user.id)
        return user, token

    def login_via_token(self, user_id: int, token: str) -> User:
        """Return the user if token is their current persistent token."""
        try:
            user = self.credentials.get(user_id)
        except NotFound:
            raise InvalidToken("Invalid login token.") from None
        if not user.enabled or not self.tokens.validate(user, token):
            logger.warning("Rejected persistent login token for user_id=%s", user_id)
            raise InvalidToken("Invalid login token.")
        return user

    def logout(self, user_id: int) -> None:
        """Revoke the user's persistent token. Raises NotFound for unknown ids."""
        user = self.credentials.get(user_id)
        self.tokens.revoke(user)
        logger.info("Logged out user_id=%s", user_id)
