"""
auth/dependencies.py -- FastAPI Depends() helpers.

Binds Auth's session slot to Starlette's signed cookie session: the token
lives in request.session[Auth.session_key], and request.session is passed
straight into Auth as the session context. The cookie itself only carries
the opaque token, so revocation in the store takes effect on the next
request.

The host app is expected to set app.state.auth to an Auth instance and call
install_session_middleware() once at startup.

try_get_current_user() is the soft variant (returns None).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: this is the only module in auth/ that imports fastapi/starlette.
"""

from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from starlette.middleware.sessions import SessionMiddleware

from auth.models import User
from auth.service import Auth
from core.config import Settings, get_settings


def install_session_middleware(app: FastAPI, settings: Settings | None = None) -> None:
    """Add SessionMiddleware configured from Settings.

    max_age follows the token TTL so the cookie and the token expire
    together. With TTL <= 0 the cookie lives for the browser session.
    samesite="lax" blocks cross-site POSTs from carrying the cookie.
    """
    settings = settings or get_settings()
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret_key,
        session_cookie=settings.session_cookie,
        max_age=settings.token_ttl_seconds if settings.token_ttl_seconds > 0 else None,
        same_site="lax",
        https_only=settings.secure_cookies,
    )


def get_auth(request: Request) -> Auth:
    return request.app.state.auth


def try_get_current_user(request: Request) -> User | None:
    """Return the session's user, or None. Never raises."""
    return get_auth(request).get_user(request.session)


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user
