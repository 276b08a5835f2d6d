"""Tests for forced logout in auth/service.py.

Covers:
- force_logout_user revokes every device and returns the count
- The caller's own session is ended (on_logout + slot cleared) when it
  belongs to the target user, and left alone otherwise
- on_logout_forced fires exactly once, even with 0 tokens removed
- force_logout_token: single device, unknown token, own-session handling,
  non-ASCII token input
- force_logout_email: unknown email returns 0 without hooks
"""

from __future__ import annotations

from collections.abc import Callable

from auth.models import User
from auth.service import Auth

EMAIL = "a@x.com"
PASSWORD = "Secret123!"


def _setup(make_auth: Callable[..., Auth], hook=None) -> tuple[Auth, User, list[dict]]:
    """Register one user and log it in on three devices."""
    auth = make_auth(hook=hook)
    user = auth.register(EMAIL, PASSWORD)
    devices = [{}, {}, {}]
    for device in devices:
        auth.login(device, EMAIL, PASSWORD)
    if hook is not None:
        hook.calls.clear()
    return auth, user, devices


class TestForceLogoutUser:
    def test_removes_all_three_sessions(self, make_auth: Callable[..., Auth]) -> None:
        auth, user, devices = _setup(make_auth)
        assert auth.force_logout_user(user, "password reset") == 3
        for device in devices:
            assert auth.get_user(device) is None

    def test_accepts_user_id(self, make_auth: Callable[..., Auth]) -> None:
        auth, user, devices = _setup(make_auth)
        assert auth.force_logout_user(user.id) == 3
        assert auth.is_logged_in(devices[0]) is False

    def test_other_users_untouched(self, make_auth: Callable[..., Auth]) -> None:
        auth, user, _ = _setup(make_auth)
        auth.register("b@x.com", PASSWORD)
        bob = {}
        auth.login(bob, "b@x.com", PASSWORD)
        auth.force_logout_user(user)
        assert auth.is_logged_in(bob) is True

    def test_forced_hook_fires_once_with_count(self, make_auth: Callable[..., Auth], hook) -> None:
        auth, user, _ = _setup(make_auth, hook)
        auth.force_logout_user(user, "compromised")
        assert hook.args_of("on_logout_forced") == [(user.id, "compromised", 3)]

    def test_zero_tokens_still_notifies(self, make_auth: Callable[..., Auth], hook) -> None:
        auth, user, _ = _setup(make_auth, hook)
        auth.force_logout_user(user)
        hook.calls.clear()
        assert auth.force_logout_user(user) == 0
        assert hook.args_of("on_logout_forced") == [(user.id, None, 0)]

    def test_own_session_is_logged_out(self, make_auth: Callable[..., Auth], hook) -> None:
        auth, user, devices = _setup(make_auth, hook)
        own = devices[0]
        auth.force_logout_user(user, session=own)
        assert own == {}
        assert [args[0].id for args in hook.args_of("on_logout")] == [user.id]
        assert "on_logout_expired" not in hook.names()
        assert hook.names()[-1] == "on_logout_forced"

    def test_admin_session_of_other_user_untouched(self, make_auth: Callable[..., Auth], hook) -> None:
        auth, user, _ = _setup(make_auth, hook)
        auth.register("admin@x.com", PASSWORD)
        admin = {}
        auth.login(admin, "admin@x.com", PASSWORD)
        hook.calls.clear()

        auth.force_logout_user(user, "admin action", session=admin)
        assert auth.is_logged_in(admin) is True
        assert "on_logout" not in hook.names()


class TestForceLogoutToken:
    def test_removes_single_device(self, make_auth: Callable[..., Auth], hook) -> None:
        auth, user, devices = _setup(make_auth, hook)
        token = devices[1]["auth_token"]
        assert auth.force_logout_token(token, "lost phone") == 1
        assert auth.get_user(devices[1]) is None
        assert auth.is_logged_in(devices[0]) is True
        assert hook.args_of("on_logout_forced") == [(user.id, "lost phone", 1)]

    def test_unknown_token_returns_zero_without_hook(self, make_auth: Callable[..., Auth], hook) -> None:
        auth, _, _ = _setup(make_auth, hook)
        assert auth.force_logout_token("no-such-token") == 0
        assert hook.calls == []

    def test_own_token_clears_slot(self, make_auth: Callable[..., Auth], hook) -> None:
        auth, user, devices = _setup(make_auth, hook)
        own = devices[2]
        assert auth.force_logout_token(own["auth_token"], session=own) == 1
        assert own == {}
        assert hook.names() == ["on_logout", "on_logout_forced"]

    def test_other_session_slot_kept(self, make_auth: Callable[..., Auth]) -> None:
        auth, _, devices = _setup(make_auth)
        own = devices[0]
        auth.force_logout_token(devices[1]["auth_token"], session=own)
        assert "auth_token" in own

    def test_non_ascii_token_leaves_session_logged_in(self, make_auth: Callable[..., Auth], hook) -> None:
        auth, _, devices = _setup(make_auth, hook)
        own = devices[0]
        assert auth.force_logout_token("żółw", session=own) == 0
        assert auth.is_logged_in(own) is True
        assert hook.args_of("on_logout") == []


class TestForceLogoutEmail:
    def test_unknown_email_returns_zero(self, make_auth: Callable[..., Auth], hook) -> None:
        auth = make_auth(hook=hook)
        assert auth.force_logout_email("nobody@x.com") == 0
        assert hook.calls == []

    def test_delegates_to_force_logout_user(self, make_auth: Callable[..., Auth], hook) -> None:
        auth, user, devices = _setup(make_auth, hook)
        assert auth.force_logout_email(EMAIL, "Admin panel") == 3
        assert hook.args_of("on_logout_forced") == [(user.id, "Admin panel", 3)]
        assert all(auth.get_user(d) is None for d in devices)
