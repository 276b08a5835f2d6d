"""
tests/conftest.py -- Shared fixtures for sessionauth tests.

This module provides:
  - store: a fresh in-memory SqlUserStore per test
  - hasher: BcryptHasher at the minimum cost factor (4) so tests stay fast
  - hook: a RecordingHook that logs every callback it receives
  - make_auth: factory for Auth instances wired to the fixtures above
  - session: an empty dict acting as the caller's session slot

The DEBUG env var must be set before any core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from typing import Any

# CRITICAL: Set DEBUG before any auth/core import.
os.environ.setdefault("DEBUG", "true")

import pytest

from auth.hooks import HOOK_METHODS
from auth.service import Auth
from auth.store import SqlUserStore
from auth.tokens import BcryptHasher

# ---------------------------------------------------------------------------
# Hook helper
# ---------------------------------------------------------------------------


class RecordingHook:
    """Implements every hook method; appends (name, args) to .calls.

    Gate results are controlled via .gates, e.g.
    hook.gates["on_before_login"] = "Account locked."
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.gates: dict[str, Any] = {}

    def __getattr__(self, name: str) -> Callable[..., Any]:
        if name not in HOOK_METHODS:
            raise AttributeError(name)

        def record(*args: Any) -> Any:
            self.calls.append((name, args))
            return self.gates.get(name, True)

        return record

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def args_of(self, name: str) -> list[tuple[Any, ...]]:
        return [args for n, args in self.calls if n == name]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[SqlUserStore, None, None]:
    s = SqlUserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture(scope="session")
def hasher() -> BcryptHasher:
    return BcryptHasher(rounds=4)


@pytest.fixture
def hook() -> RecordingHook:
    return RecordingHook()


@pytest.fixture
def make_auth(store: SqlUserStore, hasher: BcryptHasher) -> Callable[..., Auth]:
    """Return a factory: make_auth(hook=None, ttl_seconds=600, **kwargs) -> Auth."""

    def factory(hook: Any = None, ttl_seconds: int = 600, **kwargs: Any) -> Auth:
        kwargs.setdefault("hasher", hasher)
        return Auth(store, hook=hook, ttl_seconds=ttl_seconds, **kwargs)

    return factory


@pytest.fixture
def auth(make_auth: Callable[..., Auth]) -> Auth:
    return make_auth()


@pytest.fixture
def session() -> dict:
    return {}
