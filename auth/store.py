"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
AuthStore is the repository; _row_to_user / _row_to_past_password /
_row_to_login_attempt are the mappers. Guards and the service never touch
SQL directly.

Security:
  All queries use bound parameters. The only DDL built from a name is the
  identity index, and that name comes from a fixed whitelist.

  Identity uniqueness among *enabled* users is a partial unique index
  (WHERE enabled = 1) on the configured identity column. The pre-save query
  in auth/users.py gives friendly accumulated errors; the index is the
  authoritative guard against two concurrent inserts. SQLite and PostgreSQL
  both support partial indexes.

  password_reset_hash is UNIQUE. Cleared hashes are stored as NULL, not "",
  because NULLs do not collide in a UNIQUE column.

Timestamps are stored as ISO 8601 UTC strings. All writers use the same
format, so string ordering matches time ordering.

DB path: credguard_auth.db at the project root unless DATABASE_URL is set.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import LoginAttempt, PastPassword, User

# Columns that may serve as the login identity. Validated before any DDL or
# dynamic column lookup.
IDENTITY_COLUMNS: frozenset[str] = frozenset({"username", "email"})

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, server_default=""),
    Column("email", String(255), nullable=False, server_default=""),
    Column("forename", String(80), nullable=False, server_default=""),
    Column("surname", String(80), nullable=False, server_default=""),
    Column("password_hash", Text, nullable=False, server_default=""),
    Column("enabled", Integer, nullable=False, server_default="1"),
    Column("password_reset_hash", String(64), unique=True),  # NULL when no reset is pending
    Column("password_reset_requested_at", String(32)),
    Column("login_token", Text),
    Column("login_token_expiry", String(32)),
    Column("last_password_change_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_past_passwords = Table(
    "past_passwords",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Index("ix_past_passwords_user_created", "user_id", "created_at"),
)

# Append-only audit trail. id is the attempt sequence used as the lockout
# baseline, so rows are never updated or deleted.
_login_attempts = Table(
    "login_attempts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("entered_identity", String(255), nullable=False),
    Column("successful", Integer, nullable=False),
    Column("attempted_at", String(32), nullable=False),
    Index("ix_login_attempts_identity", "entered_identity", "successful"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utc_now() -> datetime:
    """Default clock for every auth component."""
    return datetime.now(timezone.utc)


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        # Unparseable legacy values read as "unset" rather than failing the load.
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def identity_index_name(identity_column: str) -> str:
    return f"ux_users_{identity_column}_enabled"


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for User, PastPassword and LoginAttempt records.

    Usage:
        store = AuthStore("sqlite:///:memory:", identity_column="username")
        previous = store.write_user(User(username="bob", forename="Bob", password_hash=h))
        user = store.find_user_by_identity("username", "bob")
        store.close()
    """

    def __init__(self, db_url: str, identity_column: str = "username") -> None:
        if identity_column not in IDENTITY_COLUMNS:
            raise ValueError(f"Unknown identity column: {identity_column!r}")
        self.identity_column = identity_column
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        self._ensure_identity_index()

    def _ensure_identity_index(self) -> None:
        """Create the partial unique index on the identity column if missing.

        Built as text DDL because the column is chosen at runtime and the
        index only covers enabled users. The column name is whitelisted in
        __init__, so the f-string never sees user input.
        """
        col = self.identity_column
        with self.engine.connect() as conn:
            conn.execute(
                text(
                    f"CREATE UNIQUE INDEX IF NOT EXISTS {identity_index_name(col)} "  # noqa: S608
                    f"ON users ({col}) WHERE enabled = 1"
                )
            )
            conn.commit()

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def get_user(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            return self._get_user(conn, user_id)

    def find_user_by_identity(self, column: str, value: str) -> User | None:
        """Return the user whose identity column equals value.

        Enabled users win over disabled ones with the same value; within each
        group the oldest record wins.
        """
        if column not in IDENTITY_COLUMNS:
            raise ValueError(f"Unknown identity column: {column!r}")
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select()
                .where(_users.c[column] == value)
                .order_by(_users.c.enabled.desc(), _users.c.id)
                .limit(1)
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_user_by_reset_hash(self, reset_hash: str) -> User | None:
        """Look up a user by pending password reset hash. O(1) via UNIQUE index."""
        if not reset_hash:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.password_reset_hash == reset_hash)).fetchone()
        return _row_to_user(row) if row is not None else None

    def identity_in_use(self, column: str, value: str, exclude_id: int | None = None) -> bool:
        """Return True if another enabled user already holds this identity value."""
        if column not in IDENTITY_COLUMNS:
            raise ValueError(f"Unknown identity column: {column!r}")
        query = _users.select().where((_users.c[column] == value) & (_users.c.enabled == 1))
        if exclude_id is not None:
            query = query.where(_users.c.id != exclude_id)
        with self.engine.connect() as conn:
            row = conn.execute(query.limit(1)).fetchone()
        return row is not None

    def write_user(self, user: User) -> User | None:
        """Insert or update user in one transaction.

        Returns the row as it was before the write (None for an insert) so
        callers can compare old and new state after commit. Sets user.id on
        insert.

        An update only writes the columns that changed since user was loaded
        (user.stored_values). Columns the caller never touched keep whatever
        the database holds now, so saving a stale copy cannot revert a
        password change committed in between.

        Raises sqlalchemy.exc.IntegrityError if the identity is already held
        by another enabled user or the reset hash collides.
        """
        values = _user_to_values(user)
        with self.engine.begin() as conn:
            if user.id is None:
                result = conn.execute(_users.insert().values(created_at=_to_iso(utc_now()), **values))
                user.id = result.inserted_primary_key[0]
                previous = None
            else:
                previous = self._get_user(conn, user.id)
                if previous is None:
                    conn.execute(_users.insert().values(id=user.id, created_at=_to_iso(utc_now()), **values))
                else:
                    changed = _changed_values(user.stored_values, values)
                    if changed:
                        conn.execute(_users.update().where(_users.c.id == user.id).values(**changed))
        user.stored_values = values
        return previous

    def _get_user(self, conn: Connection, user_id: int) -> User | None:
        row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Past passwords
    # ------------------------------------------------------------------

    def recent_past_passwords(self, user_id: int, limit: int) -> list[PastPassword]:
        """Return up to limit archived hashes for a user, newest first."""
        if limit <= 0:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(
                _past_passwords.select()
                .where(_past_passwords.c.user_id == user_id)
                .order_by(_past_passwords.c.created_at.desc(), _past_passwords.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_past_password(r) for r in rows]

    def archive_password(self, past: PastPassword, keep: int) -> int:
        """Prune the user's history to the keep newest rows, then append past.

        Both steps share one transaction so a reader never sees the history
        pruned without the replacement row. Returns the new row's ID.
        """
        with self.engine.begin() as conn:
            keep_ids = (
                select(_past_passwords.c.id)
                .where(_past_passwords.c.user_id == past.user_id)
                .order_by(_past_passwords.c.created_at.desc(), _past_passwords.c.id.desc())
                .limit(keep)
            )
            prune = _past_passwords.delete().where(_past_passwords.c.user_id == past.user_id)
            if keep > 0:
                prune = prune.where(_past_passwords.c.id.not_in(keep_ids))
            conn.execute(prune)
            result = conn.execute(
                _past_passwords.insert().values(
                    user_id=past.user_id,
                    password_hash=past.password_hash,
                    created_at=_to_iso(past.created_at),
                )
            )
            return result.inserted_primary_key[0]

    def count_past_passwords(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_past_passwords).where(_past_passwords.c.user_id == user_id)
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Login attempts
    # ------------------------------------------------------------------

    def add_login_attempt(self, attempt: LoginAttempt) -> int:
        """Append a login attempt and return its sequence ID."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _login_attempts.insert().values(
                    entered_identity=attempt.entered_identity,
                    successful=1 if attempt.successful else 0,
                    attempted_at=_to_iso(attempt.attempted_at),
                )
            )
            return result.inserted_primary_key[0]

    def last_successful_attempt(self, identity: str) -> LoginAttempt | None:
        """Return the most recent successful attempt for identity, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _login_attempts.select()
                .where((_login_attempts.c.entered_identity == identity) & (_login_attempts.c.successful == 1))
                .order_by(_login_attempts.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_login_attempt(row) if row is not None else None

    def failed_attempts_after(self, identity: str, after_id: int | None = None) -> list[LoginAttempt]:
        """Return failed attempts for identity with id > after_id, newest first.

        after_id=None returns every failed attempt on record.
        """
        query = _login_attempts.select().where(
            (_login_attempts.c.entered_identity == identity) & (_login_attempts.c.successful == 0)
        )
        if after_id is not None:
            query = query.where(_login_attempts.c.id > after_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_login_attempts.c.id.desc())).fetchall()
        return [_row_to_login_attempt(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _user_to_values(user: User) -> dict:
    return {
        "username": user.username or "",
        "email": user.email or "",
        "forename": user.forename or "",
        "surname": user.surname or "",
        "password_hash": user.password_hash or "",
        "enabled": 1 if user.enabled else 0,
        "password_reset_hash": user.password_reset_hash or None,
        "password_reset_requested_at": _to_iso(user.password_reset_requested_at),
        "login_token": user.login_token or None,
        "login_token_expiry": _to_iso(user.login_token_expiry),
        "last_password_change_at": _to_iso(user.last_password_change_at),
    }


def _changed_values(stored: dict | None, values: dict) -> dict:
    # No snapshot (a User built by hand): write every column.
    if stored is None:
        return values
    return {key: value for key, value in values.items() if stored.get(key) != value}


def _row_to_user(row) -> User:
    user = User(
        id=row.id,
        username=row.username,
        email=row.email,
        forename=row.forename,
        surname=row.surname,
        password_hash=row.password_hash,
        enabled=bool(row.enabled),
        password_reset_hash=row.password_reset_hash,
        password_reset_requested_at=_from_iso(row.password_reset_requested_at),
        login_token=row.login_token,
        login_token_expiry=_from_iso(row.login_token_expiry),
        last_password_change_at=_from_iso(row.last_password_change_at),
    )
    user.stored_values = _user_to_values(user)
    return user


def _row_to_past_password(row) -> PastPassword:
    return PastPassword(
        id=row.id,
        user_id=row.user_id,
        password_hash=row.password_hash,
        created_at=_from_iso(row.created_at),
    )


def _row_to_login_attempt(row) -> LoginAttempt:
    return LoginAttempt(
        id=row.id,
        entered_identity=row.entered_identity,
        successful=bool(row.successful),
        attempted_at=_from_iso(row.attempted_at),
    )
