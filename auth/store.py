"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_session / _row_to_reset
are the mappers. Flow and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Session and reset tokens are stored as SHA-256 digests (token_hash). The raw
  token exists only in the client's cookie or reset link.

  Uniqueness is enforced by the database, not by read-then-write checks in
  Python: two registrations racing on one username both reach the INSERT and
  the UNIQUE constraint lets exactly one through. Reset-token consumption is a
  conditional UPDATE (used_at IS NULL AND expires_at > now) whose rowcount
  decides the winner, so a token cannot be consumed twice.

Expiry:
  Both sessions and reset tokens are checked against expires_at at lookup
  time. purge_expired() only reclaims space; correctness never depends on it.

Errors:
  Every SQLAlchemy error is translated before leaving this module: lookup
  misses become NotFound, username collisions DuplicateUsername, everything
  else StoreUnavailable (chained, so the cause stays in the traceback).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import DuplicateUsername, NotFound, StoreUnavailable
from auth.models import PasswordResetRequest, Session, User
from auth.tokens import digest_token

logger = logging.getLogger("sessiongate.auth.store")

_DEFAULT_DB_URL = "sqlite:///./sessiongate_auth.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # SHA-256 hex
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)

_password_resets = Table(
    "password_resets",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # SHA-256 hex
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("used_at", String(32)),  # NULL until consumed or superseded
)


# ---------------------------------------------------------------------------
# SQLite connection pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journaling and foreign-key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys=ON is what makes the sessions and
    password_resets ON DELETE CASCADE clauses take effect.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    # Fixed width (always microseconds, always +00:00) so string comparison
    # in SQL orders the same way as the datetimes do.
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _write_password(conn, user_id: int, hashed_password: str) -> None:
    result = conn.execute(_users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password))
    if result.rowcount == 0:
        raise NotFound("User not found.")


def _revoke_sessions(conn, user_id: int) -> int:
    return conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id)).rowcount


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Credential store failure during %s: %s", action, type(exc).__name__)
        raise StoreUnavailable(f"Credential store unavailable ({action}).") from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Session and PasswordResetRequest entities.

    Usage:
        store = UserStore("sqlite:///auth.db", session_ttl_seconds=86400)
        uid = store.create_user("alice", hasher.hash("s3cret"))
        store.create_session(uid, generate_token())
        store.close()

    clock is injectable so tests can move time forward without sleeping.
    """

    def __init__(
        self,
        db_url: str = _DEFAULT_DB_URL,
        session_ttl_seconds: int = 24 * 3600,
        reset_ttl_seconds: int = 3600,
        timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_ttl = timedelta(seconds=session_ttl_seconds)
        self.reset_ttl = timedelta(seconds=reset_ttl_seconds)
        self._clock = clock
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout_seconds
        with _storage_errors("startup"):
            self.engine: Engine = create_engine(db_url, connect_args=connect_args)
            if db_url.startswith("sqlite"):
                event.listen(self.engine, "connect", _set_sqlite_pragmas)
            _metadata.create_all(self.engine)

    def _now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, username: str, hashed_password: str) -> int:
        """Insert a new user and return its assigned database ID.

        Raises DuplicateUsername if the username is taken (exact,
        case-sensitive match).
        """
        with _storage_errors("create_user"):
            try:
                with self.engine.connect() as conn:
                    result = conn.execute(
                        _users.insert().values(
                            username=username,
                            hashed_password=hashed_password,
                            created_at=_iso(self._now()),
                        )
                    )
                    conn.commit()
            except IntegrityError as exc:
                raise DuplicateUsername(f"Username {username!r} is already registered.") from exc
        return result.inserted_primary_key[0]

    def get_user_by_username(self, username: str) -> User:
        """Look up a user by exact username (case-sensitive). Raises NotFound."""
        with _storage_errors("get_user_by_username"):
            with self.engine.connect() as conn:
                row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        if row is None:
            raise NotFound("User not found.")
        return _row_to_user(row)

    def get_user_by_id(self, user_id: int) -> User:
        """Look up a user by primary key. Raises NotFound."""
        with _storage_errors("get_user_by_id"):
            with self.engine.connect() as conn:
                row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        if row is None:
            raise NotFound("User not found.")
        return _row_to_user(row)

    def update_user_password(self, user_id: int, hashed_password: str) -> None:
        """Replace a user's digest. Raises NotFound if the user vanished."""
        with _storage_errors("update_user_password"):
            with self.engine.begin() as conn:
                _write_password(conn, user_id, hashed_password)

    def reset_password(self, user_id: int, hashed_password: str) -> int:
        """Replace a user's digest and revoke all of their sessions.

        One transaction: either the new digest is in place and no old session
        survives, or nothing changed. Returns the number of sessions revoked.
        Raises NotFound if the user vanished.
        """
        with _storage_errors("reset_password"):
            with self.engine.begin() as conn:
                _write_password(conn, user_id, hashed_password)
                return _revoke_sessions(conn, user_id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, user_id: int, token: str) -> int:
        """Persist a session for user_id and return its ID.

        expires_at is now + session TTL. Raises NotFound if user_id does not
        reference an existing user (foreign-key violation).
        """
        now = self._now()
        with _storage_errors("create_session"):
            try:
                with self.engine.connect() as conn:
                    result = conn.execute(
                        _sessions.insert().values(
                            user_id=user_id,
                            token_hash=digest_token(token),
                            created_at=_iso(now),
                            expires_at=_iso(now + self.session_ttl),
                        )
                    )
                    conn.commit()
            except IntegrityError as exc:
                raise NotFound("Cannot create a session for a missing user.") from exc
        return result.inserted_primary_key[0]

    def get_session_by_token(self, token: str) -> Session:
        """Return the live session for token. Raises NotFound if absent or expired."""
        with _storage_errors("get_session_by_token"):
            with self.engine.connect() as conn:
                row = conn.execute(
                    _sessions.select().where(
                        (_sessions.c.token_hash == digest_token(token)) & (_sessions.c.expires_at > _iso(self._now()))
                    )
                ).fetchone()
        if row is None:
            raise NotFound("Session not found or expired.")
        return _row_to_session(row, token)

    def delete_session_by_token(self, token: str) -> None:
        """Delete the session for token. Deleting a missing session is not an error."""
        with _storage_errors("delete_session_by_token"):
            with self.engine.connect() as conn:
                conn.execute(_sessions.delete().where(_sessions.c.token_hash == digest_token(token)))
                conn.commit()

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def save_reset_token(self, user_id: int, token: str) -> None:
        """Persist a reset token for user_id, superseding any outstanding ones.

        Marking older tokens used and inserting the new one happen in one
        transaction, so at most one reset link per user is ever live.
        Raises NotFound if user_id does not exist.
        """
        now = self._now()
        with _storage_errors("save_reset_token"):
            try:
                with self.engine.begin() as conn:
                    conn.execute(
                        _password_resets.update()
                        .where((_password_resets.c.user_id == user_id) & (_password_resets.c.used_at.is_(None)))
                        .values(used_at=_iso(now))
                    )
                    conn.execute(
                        _password_resets.insert().values(
                            user_id=user_id,
                            token_hash=digest_token(token),
                            created_at=_iso(now),
                            expires_at=_iso(now + self.reset_ttl),
                        )
                    )
            except IntegrityError as exc:
                raise NotFound("Cannot create a reset token for a missing user.") from exc

    def get_reset_request(self, token: str) -> PasswordResetRequest:
        """Return the live reset request for token.

        Raises NotFound if the token is unknown, expired, or already used.
        """
        with _storage_errors("get_reset_request"):
            with self.engine.connect() as conn:
                row = conn.execute(
                    _password_resets.select().where(
                        (_password_resets.c.token_hash == digest_token(token))
                        & (_password_resets.c.used_at.is_(None))
                        & (_password_resets.c.expires_at > _iso(self._now()))
                    )
                ).fetchone()
        if row is None:
            raise NotFound("Reset token not found, expired, or already used.")
        return _row_to_reset(row, token)

    def get_user_id_by_reset_token(self, token: str) -> int:
        """Return the owning user ID of a live reset token. Raises NotFound."""
        return self.get_reset_request(token).user_id

    def consume_reset_token(self, token: str) -> None:
        """Mark a live reset token used. Raises NotFound if nothing was consumed.

        The WHERE clause repeats the liveness checks, so of two concurrent
        callers exactly one sees rowcount == 1.
        """
        now = _iso(self._now())
        with _storage_errors("consume_reset_token"):
            with self.engine.connect() as conn:
                result = conn.execute(
                    _password_resets.update()
                    .where(
                        (_password_resets.c.token_hash == digest_token(token))
                        & (_password_resets.c.used_at.is_(None))
                        & (_password_resets.c.expires_at > now)
                    )
                    .values(used_at=now)
                )
                conn.commit()
        if result.rowcount != 1:
            raise NotFound("Reset token not found, expired, or already used.")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self) -> int:
        """Delete expired sessions and dead reset tokens. Returns rows removed."""
        now = _iso(self._now())
        with _storage_errors("purge_expired"):
            with self.engine.begin() as conn:
                sessions = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= now)).rowcount
                resets = conn.execute(
                    _password_resets.delete().where(
                        (_password_resets.c.expires_at <= now) | (_password_resets.c.used_at.is_not(None))
                    )
                ).rowcount
        if sessions or resets:
            logger.info("Purged %d expired sessions and %d dead reset tokens", sessions, resets)
        return sessions + resets

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.error("Credential store ping failed: %s", type(exc).__name__)
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        created_at=row.created_at,
    )


def _row_to_session(row, token: str) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token=token,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )


def _row_to_reset(row, token: str) -> PasswordResetRequest:
    return PasswordResetRequest(
        id=row.id,
        user_id=row.user_id,
        token=token,
        created_at=row.created_at,
        expires_at=row.expires_at,
        used_at=row.used_at,
    )
