"""Unit tests for auth/store.py -- the SQLAlchemy Core repository.

Covers:
- write_user() insert vs update, the "previous row" it returns, and
  changed-column updates from a stale copy
- partial unique index: identity unique among enabled users only
- NULL reset hashes never collide
- archive_password() pruning
- login attempt queries (baseline, ordering)
- timestamp round trip as timezone-aware UTC
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import LoginAttempt, PastPassword, User
from auth.store import AuthStore

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _user(username: str = "bob", **kwargs) -> User:
    kwargs.setdefault("forename", "Bob")
    kwargs.setdefault("password_hash", "$2b$04$placeholder")
    return User(username=username, **kwargs)


class TestWriteUser:
    def test_insert_assigns_id_and_returns_none(self, store: AuthStore) -> None:
        user = _user()
        assert store.write_user(user) is None
        assert user.id is not None
        assert store.get_user(user.id).username == "bob"

    def test_update_returns_previous_row(self, store: AuthStore) -> None:
        user = _user(password_hash="old-hash")
        store.write_user(user)
        user.password_hash = "new-hash"
        previous = store.write_user(user)
        assert previous.password_hash == "old-hash"
        assert store.get_user(user.id).password_hash == "new-hash"

    def test_update_writes_only_changed_columns(self, store: AuthStore) -> None:
        user = _user(password_hash="old-hash")
        store.write_user(user)
        stale = store.get_user(user.id)

        fresh = store.get_user(user.id)
        fresh.password_hash = "new-hash"
        store.write_user(fresh)

        stale.login_token = "token"
        store.write_user(stale)
        loaded = store.get_user(user.id)
        assert loaded.password_hash == "new-hash"
        assert loaded.login_token == "token"

    def test_hand_built_user_writes_every_column(self, store: AuthStore) -> None:
        user = _user(password_hash="old-hash", surname="Smith")
        store.write_user(user)
        store.write_user(_user(id=user.id, password_hash="other-hash"))
        loaded = store.get_user(user.id)
        assert loaded.password_hash == "other-hash"
        assert loaded.surname == ""

    def test_timestamps_round_trip_as_utc(self, store: AuthStore) -> None:
        user = _user(last_password_change_at=T0, login_token="t", login_token_expiry=T0 + timedelta(days=14))
        store.write_user(user)
        loaded = store.get_user(user.id)
        assert loaded.last_password_change_at == T0
        assert loaded.login_token_expiry.tzinfo is not None

    def test_get_missing_user_returns_none(self, store: AuthStore) -> None:
        assert store.get_user(999) is None


class TestIdentityIndex:
    def test_duplicate_enabled_identity_violates_index(self, store: AuthStore) -> None:
        store.write_user(_user())
        with pytest.raises(IntegrityError):
            store.write_user(_user())

    def test_disabled_duplicates_are_allowed(self, store: AuthStore) -> None:
        store.write_user(_user(enabled=False))
        store.write_user(_user(enabled=False))
        store.write_user(_user())
        assert store.identity_in_use("username", "bob") is True

    def test_identity_in_use_excludes_own_id(self, store: AuthStore) -> None:
        user = _user()
        store.write_user(user)
        assert store.identity_in_use("username", "bob", exclude_id=user.id) is False

    def test_enabled_user_wins_identity_lookup(self, store: AuthStore) -> None:
        store.write_user(_user(enabled=False, forename="Old"))
        store.write_user(_user(forename="Current"))
        assert store.find_user_by_identity("username", "bob").forename == "Current"

    def test_unknown_identity_column_rejected(self, store: AuthStore) -> None:
        with pytest.raises(ValueError):
            store.find_user_by_identity("password_hash", "x")
        with pytest.raises(ValueError):
            AuthStore("sqlite:///:memory:", identity_column="forename")

    def test_users_without_reset_hash_do_not_collide(self, store: AuthStore) -> None:
        store.write_user(_user("a"))
        store.write_user(_user("b"))
        assert store.find_user_by_reset_hash("") is None


class TestArchivePassword:
    def test_prunes_to_keep_then_appends(self, store: AuthStore) -> None:
        for i in range(4):
            store.archive_password(PastPassword(1, f"h{i}", T0 + timedelta(minutes=i)), keep=10)
        store.archive_password(PastPassword(1, "h4", T0 + timedelta(minutes=4)), keep=1)
        rows = store.recent_past_passwords(1, 10)
        assert [r.password_hash for r in rows] == ["h4", "h3"]

    def test_keep_zero_leaves_only_new_row(self, store: AuthStore) -> None:
        store.archive_password(PastPassword(1, "h0", T0), keep=5)
        store.archive_password(PastPassword(1, "h1", T0 + timedelta(minutes=1)), keep=0)
        assert store.count_past_passwords(1) == 1

    def test_other_users_untouched(self, store: AuthStore) -> None:
        store.archive_password(PastPassword(2, "other", T0), keep=5)
        store.archive_password(PastPassword(1, "h0", T0), keep=0)
        assert store.count_past_passwords(2) == 1

    def test_recent_past_passwords_newest_first_and_limited(self, store: AuthStore) -> None:
        for i in range(3):
            store.archive_password(PastPassword(1, f"h{i}", T0 + timedelta(minutes=i)), keep=10)
        assert [r.password_hash for r in store.recent_past_passwords(1, 2)] == ["h2", "h1"]
        assert store.recent_past_passwords(1, 0) == []


class TestLoginAttempts:
    def test_failed_attempts_after_baseline(self, store: AuthStore) -> None:
        store.add_login_attempt(LoginAttempt("bob", False, T0))
        success_id = store.add_login_attempt(LoginAttempt("bob", True, T0 + timedelta(minutes=1)))
        store.add_login_attempt(LoginAttempt("bob", False, T0 + timedelta(minutes=2)))
        store.add_login_attempt(LoginAttempt("alice", False, T0 + timedelta(minutes=3)))

        assert store.last_successful_attempt("bob").id == success_id
        after = store.failed_attempts_after("bob", success_id)
        assert len(after) == 1
        assert after[0].attempted_at == T0 + timedelta(minutes=2)
        assert len(store.failed_attempts_after("bob")) == 2

    def test_failed_attempts_newest_first(self, store: AuthStore) -> None:
        for i in range(3):
            store.add_login_attempt(LoginAttempt("bob", False, T0 + timedelta(minutes=i)))
        ids = [a.id for a in store.failed_attempts_after("bob")]
        assert ids == sorted(ids, reverse=True)

    def test_no_success_returns_none(self, store: AuthStore) -> None:
        assert store.last_successful_attempt("nobody") is None
