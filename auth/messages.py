"""
auth/messages.py -- Human-readable failure texts.

Swap DefaultMessageProvider for any object with the same six methods to
localize the messages returned or raised by Auth.
"""

from __future__ import annotations

from typing import Protocol


class MessageProvider(Protocol):
    def user_not_found(self) -> str: ...

    def user_already_exists(self) -> str: ...

    def password_hashing_failed(self) -> str: ...

    def invalid_credentials(self) -> str: ...

    def registration_blocked(self) -> str: ...

    def login_blocked(self) -> str: ...


class DefaultMessageProvider:
    """English defaults."""

    def user_not_found(self) -> str:
        return "User not found."

    def user_already_exists(self) -> str:
        return "User with this email already exists."

    def password_hashing_failed(self) -> str:
        return "Password hashing failed."

    # Shared by "no such user" and "wrong password" -- never split these.
    def invalid_credentials(self) -> str:
        return "Invalid email or password."

    def registration_blocked(self) -> str:
        return "Registration is blocked."

    def login_blocked(self) -> str:
        return "Login blocked by custom condition."
