"""
auth/tokens.py -- Password hashing and session token utilities.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). Bcrypt is the right
       choice for low-entropy secrets because its cost factor makes
       brute-force expensive. The cost is configurable so tests can run at
       the minimum of 4 rounds; production uses Settings.bcrypt_rounds.

  Session tokens: uuid4 strings. 122 random bits from os.urandom -- opaque,
       unguessable, and 36 characters long. Tokens carry no claims; every
       check goes back to the store, which is what makes revocation
       immediate.

  Expiry: computed in UTC. A TTL of 0 or less means "never expires" and is
       a supported configuration, not an error.

Layer rule: no imports from core/ or the rest of auth/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Protocol

import bcrypt

logger = logging.getLogger("sessionauth.auth")

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


class PasswordHasher(Protocol):
    """One-way hash with a verify counterpart."""

    def hash(self, plain: str) -> str: ...

    def verify(self, plain: str, hashed: str) -> bool: ...


class BcryptHasher:
    """bcrypt with a configurable cost factor.

    hash() raises ValueError for inputs bcrypt refuses (bcrypt 5 rejects
    passwords longer than 72 bytes); Auth turns that into the
    "password hashing failed" message. verify() never raises.
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, plain: str) -> str:
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash."""
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except Exception:
            logger.debug("bcrypt verification raised; treating as mismatch", exc_info=True)
            return False


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


def generate_session_token() -> str:
    """Return a fresh opaque token (uuid4, 36 chars)."""
    return str(uuid.uuid4())


def token_expiry(ttl_seconds: int, now: datetime | None = None) -> datetime | None:
    """Absolute expiry for a token issued now, or None when ttl_seconds <= 0."""
    if ttl_seconds <= 0:
        return None
    return (now or datetime.now(timezone.utc)) + timedelta(seconds=ttl_seconds)
