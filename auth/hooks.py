"""
auth/hooks.py -- Lifecycle hook contract.

A hook is any object. Auth probes it per call site with
getattr(hook, name, None) and only calls what is present and callable, so a
hook may implement a single method and nothing else. Subclassing AuthHook is
optional; it just supplies no-op / allow defaults for everything.

Gates (the two on_before_* methods) return True to allow. Any other return
value blocks: a str is used as the failure message, anything else falls back
to the default message from the MessageProvider. Every other method is a
notification; its return value is ignored.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from auth.errors import AuthError
    from auth.models import User

HOOK_METHODS: tuple[str, ...] = (
    "on_before_register",
    "on_register_success",
    "on_register_failure",
    "on_before_login",
    "on_login_success",
    "on_login_failure",
    "on_logout",
    "on_logout_expired",
    "on_logout_forced",
    "on_user_active",
    "on_user_updated",
)


class AuthHook:
    """No-op base class. Override only what you need."""

    def on_before_register(self, email: str, password: str, fields: Mapping[str, Any]) -> bool | str:
        return True

    def on_register_success(self, user: User) -> None:
        pass

    def on_register_failure(self, email: str, error: AuthError) -> None:
        pass

    def on_before_login(self, user: User) -> bool | str:
        return True

    def on_login_success(self, user: User) -> None:
        pass

    def on_login_failure(self, email: str, error: AuthError) -> None:
        pass

    def on_logout(self, user: User) -> None:
        pass

    def on_logout_expired(self) -> None:
        pass

    def on_logout_forced(self, user_id: int, reason: str | None, count: int) -> None:
        """Called once per forced logout, with the number of tokens removed."""

    def on_user_active(self, user: User) -> None:
        pass

    def on_user_updated(self, user: User, changed_keys: list[str]) -> None:
        pass


class AuditLogHook(AuthHook):
    """Writes one line per lifecycle event to the sessionauth.audit logger.

    Never logs passwords, hashes, or tokens. on_user_active is logged at
    DEBUG because it fires on every authenticated request.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger("sessionauth.audit")

    def on_register_success(self, user: User) -> None:
        self.logger.info("register ok user_id=%s", user.id)

    def on_register_failure(self, email: str, error: AuthError) -> None:
        self.logger.warning("register failed email=%s reason=%s", email, error.message)

    def on_login_success(self, user: User) -> None:
        self.logger.info("login ok user_id=%s", user.id)

    def on_login_failure(self, email: str, error: AuthError) -> None:
        self.logger.warning("login failed email=%s reason=%s", email, error.message)

    def on_logout(self, user: User) -> None:
        self.logger.info("logout user_id=%s", user.id)

    def on_logout_expired(self) -> None:
        self.logger.info("session expired or revoked")

    def on_logout_forced(self, user_id: int, reason: str | None, count: int) -> None:
        self.logger.warning("forced logout user_id=%s sessions=%d reason=%s", user_id, count, reason)

    def on_user_active(self, user: User) -> None:
        self.logger.debug("active user_id=%s", user.id)

    def on_user_updated(self, user: User, changed_keys: list[str]) -> None:
        self.logger.info("user updated user_id=%s keys=%s", user.id, sorted(changed_keys))
