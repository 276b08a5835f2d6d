"""
auth/store.py -- Storage contract and its SQLAlchemy Core implementation.

Pattern: Repository + Data Mapper. SqlUserStore is the repository;
_row_to_user / _row_to_token are the mappers. Auth never touches SQL.

UserStorage is the contract Auth calls through. Any object with these
methods works (a Redis-backed store, a fake in tests); SqlUserStore is the
implementation shipped here.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Custom user fields are stored in the `attributes` JSON column rather than
  as dynamic columns, so caller-supplied field names never reach SQL.

  UNIQUE(users.email) is what closes the register() race: two concurrent
  registrations can both pass Auth's find_by_email() check, but only one
  INSERT succeeds. The loser gets sqlalchemy.exc.IntegrityError, which Auth
  surfaces as the failure message.

Timestamps:
  Stored as UTC ISO 8601 strings with fixed microsecond precision, so plain
  string comparison in SQL orders them correctly (the expiry filter in
  find_by_token relies on this).
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Protocol

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import SessionToken, User

logger = logging.getLogger("sessionauth.store")

# Attribute names backed by real columns; custom fields may not use them.
_RESERVED_FIELDS = frozenset({"id", "email", "password_hash", "created_at", "updated_at"})

# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class UserStorage(Protocol):
    def find_by_email(self, email: str) -> User | None: ...

    def find_by_token(self, token: str) -> User | None:
        """Must return None for expired tokens, even if not yet purged."""

    def find_by_id(self, user_id: int) -> User | None: ...

    def create_user(self, email: str, password_hash: str, fields: Mapping[str, Any] | None = None) -> User:
        """Insert and return the new user with its generated id.

        Must reject malformed email and must enforce email uniqueness.
        """

    def update_user(self, user: User, fields: Mapping[str, Any]) -> User:
        """Empty fields is a no-op that returns the same user."""

    def store_token(self, user: User, token: str, expires_at: datetime | None) -> None: ...

    def delete_token(self, token: str) -> int: ...

    def delete_tokens_by_user_id(self, user_id: int) -> int: ...

    def create_schema(self) -> None: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("attributes", Text, nullable=False, server_default="{}"),  # JSON object of custom fields
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("token", String(64), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32)),  # NULL = never expires
    Index("idx_sessions_user_id", "user_id"),
    Index("idx_sessions_expires_at", "expires_at"),
)


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable FK enforcement (for ON DELETE CASCADE) and WAL journaling.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _iso(datetime.now(timezone.utc))


def _check_email(email: str) -> None:
    """Raise ValueError unless email is a syntactically valid address.

    Syntax only: no DNS lookup. The stored value is the caller's string, not
    the normalized form, so lookups stay exact-match.
    """
    if not isinstance(email, str):
        raise ValueError("Invalid email.")
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValueError("Invalid email.") from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SqlUserStore:
    """UserStorage on SQLAlchemy Core.

    Usage:
        store = SqlUserStore("sqlite:///auth.db")
        user = store.create_user("a@x.com", hasher.hash("secret"), {"name": "A"})
        store.store_token(user, token, expires_at=None)
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///:memory:", create_schema: bool = True) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        if create_schema:
            self.create_schema()

    def create_schema(self) -> None:
        """Create tables and indexes if missing. Safe to call repeatedly."""
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> User | None:
        """Exact (case-sensitive) email match."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_token(self, token: str) -> User | None:
        """Resolve a session token to its user. Expired tokens resolve to None."""
        query = (
            select(_users)
            .select_from(_users.join(_sessions, _sessions.c.user_id == _users.c.id))
            .where(_sessions.c.token == token)
            .where(_sessions.c.expires_at.is_(None) | (_sessions.c.expires_at > _now_iso()))
            .limit(1)
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_user(row) if row is not None else None

    def create_user(self, email: str, password_hash: str, fields: Mapping[str, Any] | None = None) -> User:
        """Insert a new user and return it with its assigned id.

        Raises ValueError for a malformed email or a custom field that
        collides with a column name. Raises sqlalchemy.exc.IntegrityError if
        the email already exists.
        """
        _check_email(email)
        fields = dict(fields or {})
        reserved = _RESERVED_FIELDS.intersection(fields)
        if reserved:
            raise ValueError(f"Reserved field name(s): {', '.join(sorted(reserved))}")
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=email,
                    password_hash=password_hash,
                    attributes=json.dumps(fields, default=str),
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            user_id = result.inserted_primary_key[0]
        logger.debug("Created user id=%s", user_id)
        return User(
            {
                "id": user_id,
                "email": email,
                "password_hash": password_hash,
                **fields,
                "created_at": now,
                "updated_at": now,
            }
        )

    def update_user(self, user: User, fields: Mapping[str, Any]) -> User:
        """Apply fields to the stored user and return the fresh record.

        email and password_hash update their columns; every other key is
        merged into the custom attributes. An empty mapping returns the user
        unchanged without touching the database.

        Raises ValueError for id / created_at / updated_at or a malformed
        email, LookupError if the user no longer exists.
        """
        if not fields:
            return user
        fields = dict(fields)
        forbidden = {"id", "created_at", "updated_at"}.intersection(fields)
        if forbidden:
            raise ValueError(f"Field(s) cannot be updated: {', '.join(sorted(forbidden))}")
        if "email" in fields:
            _check_email(fields["email"])

        values: dict[str, Any] = {"updated_at": _now_iso()}
        for column in ("email", "password_hash"):
            if column in fields:
                values[column] = fields.pop(column)

        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user.id)).fetchone()
            if row is None:
                raise LookupError(f"User {user.id} not found.")
            if fields:
                attributes = json.loads(row.attributes or "{}")
                attributes.update(fields)
                values["attributes"] = json.dumps(attributes, default=str)
            conn.execute(_users.update().where(_users.c.id == user.id).values(**values))
            conn.commit()

        updated = self.find_by_id(user.id)
        if updated is None:
            raise LookupError(f"User {user.id} not found.")
        return updated

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    def store_token(self, user: User, token: str, expires_at: datetime | None) -> None:
        """Persist a token for user. Raises IntegrityError on a duplicate token."""
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    user_id=user.id,
                    token=token,
                    created_at=_now_iso(),
                    expires_at=_iso(expires_at) if expires_at is not None else None,
                )
            )
            conn.commit()

    def delete_token(self, token: str) -> int:
        """Delete one token. Returns 1 if it existed, 0 otherwise."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.token == token))
            conn.commit()
        return result.rowcount

    def delete_tokens_by_user_id(self, user_id: int) -> int:
        """Delete every token of a user (all devices). Returns the count removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def list_tokens(self, user_id: int) -> list[SessionToken]:
        """Return the user's active (unexpired) sessions, newest first."""
        query = (
            _sessions.select()
            .where(_sessions.c.user_id == user_id)
            .where(_sessions.c.expires_at.is_(None) | (_sessions.c.expires_at > _now_iso()))
            .order_by(_sessions.c.created_at.desc(), _sessions.c.id.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_token(r) for r in rows]

    def purge_expired_tokens(self) -> int:
        """Delete tokens whose expiry has passed. Returns the count removed.

        Expired tokens are already invisible to find_by_token(); this only
        reclaims space. Run it from a scheduler, not from request handling.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.delete().where(_sessions.c.expires_at.is_not(None) & (_sessions.c.expires_at <= _now_iso()))
            )
            conn.commit()
        if result.rowcount:
            logger.info("Purged %d expired session token(s)", result.rowcount)
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    custom = json.loads(row.attributes or "{}")
    return User(
        {
            "id": row.id,
            "email": row.email,
            "password_hash": row.password_hash,
            **custom,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        }
    )


def _row_to_token(row) -> SessionToken:
    return SessionToken(
        token=row.token,
        user_id=row.user_id,
        created_at=datetime.fromisoformat(row.created_at),
        expires_at=datetime.fromisoformat(row.expires_at) if row.expires_at else None,
    )
