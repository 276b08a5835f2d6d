"""
auth/models.py -- Domain types for authentication entities.

User is an open attribute bag: the store decides which attributes exist
(id, email, password_hash, plus any custom fields handed to register()).
Nothing in the core mutates a User after construction -- updates go through
the store, which returns a fresh instance.

Which attributes are sensitive is not a property of User itself.
UserSerializer is the explicit policy object that every external view
(get_all(), to_json(), Auth.serialize()) goes through, so there is no
process-wide hidden-key state to configure.

Layer rule: no imports from the rest of auth/ or from core/.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

DEFAULT_HIDDEN_KEYS: frozenset[str] = frozenset(
    {
        "password_hash",
        "totp_secret",
        "recovery_codes",
        "reset_token",
        "reset_token_expires_at",
    }
)


@dataclass(frozen=True)
class UserSerializer:
    """Renders users for the outside world with sensitive keys stripped.

    Usage:
        serializer = UserSerializer().add_hidden_keys(["api_key"])
        serializer.to_dict(user)    # no password_hash, no api_key
    """

    hidden_keys: frozenset[str] = DEFAULT_HIDDEN_KEYS

    @classmethod
    def with_extra_keys(cls, keys: Iterable[str]) -> UserSerializer:
        """Defaults plus exactly these extras (replaces any earlier extras)."""
        return cls(hidden_keys=DEFAULT_HIDDEN_KEYS | {str(k) for k in keys})

    def add_hidden_keys(self, keys: Iterable[str]) -> UserSerializer:
        """Return a new serializer hiding the current keys plus these."""
        return UserSerializer(hidden_keys=self.hidden_keys | {str(k) for k in keys})

    def filter(self, attributes: Mapping[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in attributes.items() if k not in self.hidden_keys}

    def to_dict(self, user: User) -> dict[str, Any]:
        return self.filter(user.raw())

    def to_json(self, user: User, pretty: bool = False) -> str:
        if pretty:
            return json.dumps(self.to_dict(user), indent=4, ensure_ascii=False, default=str)
        return json.dumps(self.to_dict(user), default=str)


DEFAULT_SERIALIZER = UserSerializer()


class User:
    """One registered identity.

    get() / raw() expose everything, hidden keys included -- they are meant
    for the auth core and the store. Anything that leaves the process should
    use get_all() / to_json() or a UserSerializer.
    """

    __slots__ = ("_attributes",)

    def __init__(self, attributes: Mapping[str, Any]) -> None:
        self._attributes: dict[str, Any] = dict(attributes)

    def get(self, key: str, default: Any = None) -> Any:
        return self._attributes.get(key, default)

    def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        """Return {key: value} for each requested key; missing keys map to None."""
        return {key: self._attributes.get(key) for key in keys}

    @property
    def id(self) -> int | None:
        value = self._attributes.get("id")
        # bool is an int subclass; a True id is never legitimate
        return value if isinstance(value, int) and not isinstance(value, bool) else None

    @property
    def email(self) -> str | None:
        value = self._attributes.get("email")
        return value if isinstance(value, str) else None

    def raw(self) -> dict[str, Any]:
        """Copy of every attribute, hidden keys included. Internal use."""
        return dict(self._attributes)

    def get_all(self, serializer: UserSerializer | None = None) -> dict[str, Any]:
        return (serializer or DEFAULT_SERIALIZER).to_dict(self)

    def to_json(self, serializer: UserSerializer | None = None, pretty: bool = False) -> str:
        return (serializer or DEFAULT_SERIALIZER).to_json(self, pretty=pretty)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, User):
            return NotImplemented
        return self._attributes == other._attributes

    def __repr__(self) -> str:
        return f"User({DEFAULT_SERIALIZER.filter(self._attributes)!r})"


@dataclass
class SessionToken:
    """One authenticated device/session as persisted by the store.

    expires_at is None for tokens issued with a TTL of 0 or less -- those
    never expire and live until logout or forced logout removes them.
    """

    token: str
    user_id: int
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.now(timezone.utc))
