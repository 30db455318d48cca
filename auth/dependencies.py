"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session token is read from, in priority order:
  1. the "gallery_session" cookie -- set by POST /api/v1/auth/login.
  2. an Authorization: Bearer <token> header -- scripts and API clients.

get_token() only extracts; the gate functions below hand the token to
auth/rbac.py, which revalidates the account against the database on every
request. Gate failures raise core.errors.Unauthorized / Forbidden, which the
exception handlers in api/main.py render as 401 / 403.

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the FastAPI dependency injection system. No imports from api/ or media/.
"""

from __future__ import annotations

from fastapi import Request, Response

from auth import rbac
from auth.models import Session
from auth.sessions import SessionManager
from core.config import Settings

SESSION_COOKIE = "gallery_session"


def get_token(request: Request) -> str | None:
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def get_current_session(request: Request) -> Session:
    """Require a live session. Use as a FastAPI dependency."""
    return rbac.require_authenticated(get_session_manager(request), get_token(request))


def require_admin(request: Request) -> Session:
    """Require role == admin. 401 if anonymous, 403 otherwise."""
    return rbac.require_admin(get_session_manager(request), get_token(request))


def require_uploader(request: Request) -> Session:
    """Require role in {admin, uploader}. 401 if anonymous, 403 otherwise."""
    return rbac.require_uploader(get_session_manager(request), get_token(request))


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    """Write the session token as an httpOnly, SameSite=strict cookie.

    max_age matches the server-side session lifetime so both expire together.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=settings.session_max_age_seconds,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE)
