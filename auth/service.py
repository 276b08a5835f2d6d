"""
auth/service.py -- The authentication state machine.

Auth orchestrates registration, login, session lookup, logout, forced
logout, and user updates. It owns no persistent state: users and tokens
live in the store, and the caller's session slot is an explicit
`session` argument -- any MutableMapping (a dict, or Starlette's
request.session). Auth reads and writes exactly one key of it.

Failure reporting:
  Each flow is written against an internal result type (the value, or an
  AuthError). _finish() is the only place that decides between raising the
  AuthError and returning its message, based on throw_exceptions. So callers
  pick exception-style or return-value-style once, at construction.

  Storage errors during user creation are reported through the same channel
  with their original message. update_user() is the exception: store errors
  propagate as-is.

Hooks:
  The hook is probed per call site (_hook_method); a missing hook or a
  missing method both mean "proceed". Gates are on_before_register and
  on_before_login; everything else is a notification.

Concurrency:
  Each call runs to completion synchronously with no locking. Email
  uniqueness under concurrent register() calls is the store's job (UNIQUE
  constraint); Auth's find_by_email() check only produces the friendly
  message for the common case.

Layer rule: no imports from fastapi/starlette. core/ only for from_settings().
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable, Iterable, Mapping, MutableMapping
from typing import Any, TypeVar

from auth.errors import AuthError
from auth.messages import DefaultMessageProvider, MessageProvider
from auth.models import User, UserSerializer
from auth.store import UserStorage
from auth.tokens import BcryptHasher, PasswordHasher, generate_session_token, token_expiry
from core.config import Settings, get_settings

logger = logging.getLogger("sessionauth.auth")

SessionContext = MutableMapping[str, Any]
AdditionalCheck = Callable[..., Any]

_NOT_CALLABLE = "Additional check is not callable."
_DUMMY_PASSWORD = "sessionauth-timing-equalization"

T = TypeVar("T")


class Auth:
    """Session-token authentication core.

    Usage:
        auth = Auth(SqlUserStore("sqlite:///auth.db"), ttl_seconds=3600)
        session = {}                               # or request.session
        auth.register("a@x.com", "Secret123!")
        token = auth.login(session, "a@x.com", "Secret123!")
        auth.get_user(session)                     # -> User
        auth.logout(session)
    """

    def __init__(
        self,
        store: UserStorage,
        hook: Any = None,
        ttl_seconds: int = 3600,
        messages: MessageProvider | None = None,
        throw_exceptions: bool = False,
        hasher: PasswordHasher | None = None,
        serializer: UserSerializer | None = None,
        session_key: str = "auth_token",
    ) -> None:
        self._store = store
        self._hook = hook
        # 0 or negative: issued tokens never expire.
        self._ttl_seconds = ttl_seconds
        self._messages: MessageProvider = messages or DefaultMessageProvider()
        self._throw_exceptions = throw_exceptions
        self._hasher: PasswordHasher = hasher or BcryptHasher()
        self._serializer = serializer or UserSerializer()
        self._session_key = session_key
        self._dummy_hash: str | None = None

    @classmethod
    def from_settings(
        cls,
        store: UserStorage,
        settings: Settings | None = None,
        hook: Any = None,
        messages: MessageProvider | None = None,
    ) -> Auth:
        """Build an Auth configured from Settings (defaults to get_settings()).

        get_settings() enforces the SECRET_KEY policy even though Auth itself
        never uses the key (only the cookie middleware in auth/dependencies.py
        does). Hosts without SECRET_KEY or DEBUG should pass settings
        explicitly, e.g. Settings(secret_key=...) or Settings(debug=True).
        """
        settings = settings or get_settings()
        return cls(
            store,
            hook=hook,
            ttl_seconds=settings.token_ttl_seconds,
            messages=messages,
            throw_exceptions=settings.throw_exceptions,
            hasher=BcryptHasher(rounds=settings.bcrypt_rounds),
            serializer=UserSerializer.with_extra_keys(settings.hidden_keys),
            session_key=settings.session_key,
        )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    @property
    def session_key(self) -> str:
        return self._session_key

    @property
    def throw_exceptions(self) -> bool:
        return self._throw_exceptions

    @property
    def messages(self) -> MessageProvider:
        return self._messages

    @property
    def hook(self) -> Any:
        return self._hook

    @property
    def serializer(self) -> UserSerializer:
        return self._serializer

    def set_session_key(self, key: str) -> None:
        self._session_key = key

    def set_throw_exceptions(self, value: bool) -> None:
        self._throw_exceptions = value

    def serialize(self, user: User) -> dict[str, Any]:
        """External view of user under this instance's hidden-key policy."""
        return self._serializer.to_dict(user)

    # ------------------------------------------------------------------
    # Hook probing and failure channel
    # ------------------------------------------------------------------

    def _hook_method(self, name: str) -> Callable[..., Any] | None:
        if self._hook is None:
            return None
        method = getattr(self._hook, name, None)
        return method if callable(method) else None

    def _notify(self, name: str, *args: Any) -> None:
        method = self._hook_method(name)
        if method is not None:
            method(*args)

    def _fail(self, message: str, hook_callback: Callable[[AuthError], Any] | None = None) -> AuthError:
        error = AuthError(message)
        if hook_callback is not None:
            hook_callback(error)
        return error

    def _finish(self, outcome: T | AuthError) -> T | str:
        if isinstance(outcome, AuthError):
            if self._throw_exceptions:
                raise outcome
            return outcome.message
        return outcome

    def _gate_message(self, result: Any, default: str) -> str | None:
        """None when a gate/check result allows; otherwise the block message."""
        if result is True:
            return None
        return result if isinstance(result, str) else default

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        custom_fields: Mapping[str, Any] | None = None,
        additional_checks: Iterable[AdditionalCheck] = (),
    ) -> User | str:
        """Create a user. Returns the User, or the failure message (or raises AuthError).

        Order: uniqueness, on_before_register gate, additional checks,
        hashing, persistence. Each step can end the flow; every failure
        notifies on_register_failure(email, error).
        """
        return self._finish(self._register(email, password, dict(custom_fields or {}), additional_checks))

    def _register(
        self,
        email: str,
        password: str,
        custom_fields: dict[str, Any],
        additional_checks: Iterable[AdditionalCheck],
    ) -> User | AuthError:
        def on_failure(error: AuthError) -> None:
            self._notify("on_register_failure", email, error)

        if self._store.find_by_email(email) is not None:
            return self._fail(self._messages.user_already_exists(), on_failure)

        gate = self._hook_method("on_before_register")
        if gate is not None:
            blocked = self._gate_message(gate(email, password, custom_fields), self._messages.registration_blocked())
            if blocked is not None:
                return self._fail(blocked, on_failure)

        for check in additional_checks:
            if not callable(check):
                return self._fail(_NOT_CALLABLE, on_failure)
            blocked = self._gate_message(check(email, password, custom_fields), self._messages.registration_blocked())
            if blocked is not None:
                return self._fail(blocked, on_failure)

        try:
            password_hash = self._hasher.hash(password)
        except Exception:
            logger.debug("Password hashing raised", exc_info=True)
            password_hash = ""
        if not password_hash:
            return self._fail(self._messages.password_hashing_failed(), on_failure)

        try:
            user = self._store.create_user(email, password_hash, custom_fields)
        except Exception as exc:
            logger.debug("create_user failed: %s", exc, exc_info=True)
            return self._fail(str(exc), on_failure)

        logger.info("Registered user id=%s", user.id)
        self._notify("on_register_success", user)
        return user

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(
        self,
        session: SessionContext,
        email: str,
        password: str,
        additional_checks: Iterable[AdditionalCheck] = (),
    ) -> str:
        """Authenticate and issue a session token.

        Returns the token (also written to session[session_key]), or the
        failure message (or raises AuthError). Unknown email and wrong
        password produce the same message.
        """
        return self._finish(self._login(session, email, password, additional_checks))

    def _login(
        self,
        session: SessionContext,
        email: str,
        password: str,
        additional_checks: Iterable[AdditionalCheck],
    ) -> str | AuthError:
        def on_failure(error: AuthError) -> None:
            self._notify("on_login_failure", email, error)

        user = self._store.find_by_email(email)
        if not self._credentials_match(user, password):
            return self._fail(self._messages.invalid_credentials(), on_failure)

        gate = self._hook_method("on_before_login")
        if gate is not None:
            blocked = self._gate_message(gate(user), self._messages.login_blocked())
            if blocked is not None:
                return self._fail(blocked, on_failure)

        for check in additional_checks:
            if not callable(check):
                return self._fail(_NOT_CALLABLE, on_failure)
            blocked = self._gate_message(check(user), self._messages.login_blocked())
            if blocked is not None:
                return self._fail(blocked, on_failure)

        token = generate_session_token()
        self._store.store_token(user, token, token_expiry(self._ttl_seconds))
        logger.info("Issued session token for user id=%s", user.id)

        self._notify("on_login_success", user)

        session[self._session_key] = token
        return token

    def _credentials_match(self, user: User | None, password: str) -> bool:
        """Verify password against user's hash, spending bcrypt time either way.

        A missing user still costs one verify against a dummy hash so the
        response time does not reveal whether the email is registered.
        """
        stored = user.get("password_hash") if user is not None else None
        if not isinstance(stored, str) or not stored:
            if self._dummy_hash is None:
                self._dummy_hash = self._hasher.hash(_DUMMY_PASSWORD)
            self._hasher.verify(password, self._dummy_hash)
            return False
        return self._hasher.verify(password, stored)

    # ------------------------------------------------------------------
    # Session lookup
    # ------------------------------------------------------------------

    def get_user(self, session: SessionContext) -> User | None:
        """Return the logged-in user for this session, or None.

        An empty slot is "not logged in" and fires nothing. A token the store
        cannot resolve (deleted, revoked, or expired) clears the slot and
        fires on_logout_expired. Expiry is only ever noticed here, lazily.
        """
        token = session.get(self._session_key)
        if not token:
            return None

        user = self._store.find_by_token(str(token))
        if user is None:
            session.pop(self._session_key, None)
            logger.debug("Session token no longer valid; slot cleared")
            self._notify("on_logout_expired")
            return None

        self._notify("on_user_active", user)
        return user

    def is_logged_in(self, session: SessionContext) -> bool:
        return self.get_user(session) is not None

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, session: SessionContext) -> None:
        """End this session. Safe to call when already logged out."""
        user = self.get_user(session)
        if user is not None:
            self._notify("on_logout", user)

        token = session.get(self._session_key)
        if token:
            self._store.delete_token(str(token))
        session.pop(self._session_key, None)

    def force_logout_user(
        self,
        user_or_id: User | int,
        reason: str | None = None,
        *,
        session: SessionContext | None = None,
    ) -> int:
        """Revoke every token of a user (all devices). Returns the count removed.

        If `session` belongs to that user it is logged out too (on_logout +
        slot cleared). on_logout_forced fires once, even when nothing was
        removed.
        """
        user_id = user_or_id.id if isinstance(user_or_id, User) else int(user_or_id)

        # Resolve before deleting: afterwards the token no longer maps to a user.
        current = self._session_owner(session)

        count = self._store.delete_tokens_by_user_id(user_id)
        logger.info("Forced logout of user id=%s: %d session(s) removed", user_id, count)

        if session is not None and current is not None and current.id == user_id:
            self._notify("on_logout", current)
            session.pop(self._session_key, None)

        self._notify("on_logout_forced", user_id, reason, count)
        return count

    def force_logout_token(
        self,
        token: str,
        reason: str | None = None,
        *,
        session: SessionContext | None = None,
    ) -> int:
        """Revoke a single token. Returns 1 if it existed, 0 otherwise.

        The owner is looked up only for hook context; an unresolvable owner
        does not prevent deletion, but then on_logout_forced is not fired.
        """
        user = self._store.find_by_token(token)
        removed = self._store.delete_token(token)

        if session is not None:
            current = session.get(self._session_key)
            if current and hmac.compare_digest(str(current).encode("utf-8"), token.encode("utf-8")):
                if user is not None:
                    self._notify("on_logout", user)
                session.pop(self._session_key, None)

        if user is not None:
            logger.info("Forced logout of one session for user id=%s (removed=%d)", user.id, removed)
            self._notify("on_logout_forced", user.id, reason, removed)
        return removed

    def force_logout_email(
        self,
        email: str,
        reason: str | None = None,
        *,
        session: SessionContext | None = None,
    ) -> int:
        """force_logout_user() by email. Unknown email returns 0."""
        user = self._store.find_by_email(email)
        if user is None:
            return 0
        return self.force_logout_user(user, reason, session=session)

    def _session_owner(self, session: SessionContext | None) -> User | None:
        """Owner of the session's token, without hooks or slot cleanup."""
        if session is None:
            return None
        token = session.get(self._session_key)
        if not token:
            return None
        return self._store.find_by_token(str(token))

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update_user(self, user: User, updates: Mapping[str, Any]) -> User:
        """Persist updates through the store and return the refreshed user.

        Store errors propagate unchanged. on_user_updated receives exactly
        the keys of `updates`.
        """
        updated = self._store.update_user(user, updates)
        self._notify("on_user_updated", updated, list(updates))
        return updated
