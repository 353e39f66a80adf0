"""
auth/store.py -- SQLAlchemy Core persistence layer for principals.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and authenticator code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  validate_credentials() is the only place a password meets a hash, and it
  spends a bcrypt comparison even when there is no user [timing equalization].

Email policy:
  Emails are lower-cased on write and on every lookup. The UNIQUE index on
  users.email therefore enforces case-insensitive uniqueness without a
  functional index, which SQLite and PostgreSQL would disagree on.

Failure policy:
  Any DB-API failure other than an integrity violation (locked database, lost
  connection, missing file) is re-raised as auth.errors.Unavailable. Callers
  can then tell "the database is down" from "wrong password". IntegrityError
  propagates unchanged because it describes the data, not the infrastructure.

DB path: auth/signgate.db unless DATABASE_URL says otherwise.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.pool import Pool

from auth.errors import Unavailable
from auth.models import User
from auth.tokens import burn_password_check, verify_password

logger = logging.getLogger("signgate.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # always lower-case
    Column("hashed_password", Text, nullable=False),
    Column("api_token", String(80), unique=True),  # NULL until first sign-in
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
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


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///signgate.db")
        store.create_user(User(email="user@mail.com", hashed_password=hash_password("secret123")))
        user = store.get_by_email("User@Mail.com")
        store.close()

    poolclass is handed to create_engine() when given. Shared-cache memory
    URLs (mode=memory&cache=shared) should pass QueuePool explicitly.
    """

    def __init__(self, db_url: str, timeout: float = 5.0, poolclass: type[Pool] | None = None) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            # Bounded wait on a locked database instead of hanging a request.
            connect_args["timeout"] = timeout
        engine_args: dict = {"connect_args": connect_args}
        if poolclass is not None:
            engine_args["poolclass"] = poolclass
        self.engine: Engine = create_engine(db_url, **engine_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        try:
            _metadata.create_all(self.engine)
        except DBAPIError as exc:
            raise Unavailable("Could not initialise the user store.") from exc

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        """Yield a connection, translating infrastructure failures to Unavailable."""
        try:
            with self.engine.connect() as conn:
                yield conn
        except IntegrityError:
            raise
        except DBAPIError as exc:
            logger.error("User store query failed: %s", exc.__class__.__name__)
            raise Unavailable() from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists."""
        with self._connect() as conn:
            row = conn.execute(select(_users.c.id).limit(1)).fetchone()
        return row is not None

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email (compared
        case-insensitively) is already registered.
        """
        with self._connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=normalize_email(user.email),
                    hashed_password=user.hashed_password,
                    api_token=user.api_token,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_api_token(self, token: str) -> User | None:
        """Look up the user whose current token is `token`. O(1) via UNIQUE index."""
        if not token:
            return None
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.api_token == token)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def validate_credentials(self, user: User | None, password: str) -> bool:
        """Return True if `password` matches the stored hash of `user`.

        `user` may be None (email not registered). A bcrypt check still runs
        against a dummy hash so both failure paths cost the same.
        """
        if user is None:
            burn_password_check(password)
            return False
        return verify_password(password, user.hashed_password)

    # ------------------------------------------------------------------
    # Token writes
    # ------------------------------------------------------------------

    def set_api_token(self, user_id: int, token: str) -> bool:
        """Replace the user's token and stamp last_login. Last writer wins.

        Returns True if a row was updated, False if user_id was not found.
        """
        with self._connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(api_token=token, last_login=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def clear_api_token(self, user_id: int) -> bool:
        """Revoke the user's token. Returns True if a row was updated."""
        with self._connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(api_token=None))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        api_token=row.api_token,
        created_at=row.created_at,
        last_login=row.last_login,
    )
