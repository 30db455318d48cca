"""
api/routes/v1/auth.py -- Login, logout, session check, and password change.

Routes:
  POST /api/v1/auth/login     -- password login; sets the session cookie
  POST /api/v1/auth/logout    -- ends the server-side session; clears cookie
  GET  /api/v1/auth/check     -- {authenticated, user?}; revalidates the account
  POST /api/v1/auth/password  -- change own password (requires current password)

Security:
  POST /login is rate-limited (LOGIN_RATE_LIMIT, default 5 per 15 minutes per IP).
  SessionManager.login() does timing equalization and the failure delay --
  never inline get_by_username() + check_password() here.
  A session cookie already present at login is destroyed before a new one is
  issued (fixation).
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import ChangePasswordRequest, LoginRequest, LoginResponse, SessionCheckResponse, SessionUserResponse
from auth.admin import UserAdmin
from auth.dependencies import (
    clear_session_cookie,
    get_current_session,
    get_session_manager,
    get_token,
    set_session_cookie,
)
from auth.models import Session
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/login:     public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:    public -- logging out twice is not an error
# - GET  /api/v1/auth/check:     public -- answers "am I logged in?"
# - POST /api/v1/auth/password:  requires auth (get_current_session)
router = APIRouter()


# sync def: the failure delay sleeps, so run in the threadpool, off the event loop.
@limiter.limit(get_settings().login_rate_limit)
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set the session cookie.

    Every failure (unknown user, wrong password, inactive account) surfaces as
    the same 401 invalid_credentials after the same delay.
    """
    manager = get_session_manager(request)
    result = manager.login(body.username, body.password, previous_token=get_token(request))

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(user=SessionUserResponse.from_view(result.user)).model_dump(),
    )
    set_session_cookie(resp, result.token, get_settings())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout")
async def logout(request: Request) -> JSONResponse:
    """End the server-side session and clear the cookie."""
    get_session_manager(request).logout(get_token(request))
    resp = JSONResponse(content={"success": True})
    clear_session_cookie(resp)
    return resp


@router.get("/auth/check", response_model=SessionCheckResponse)
async def check(request: Request) -> SessionCheckResponse:
    """Report whether the caller holds a live session.

    The account is re-read from the database, so a deactivated user sees
    authenticated=false on the very next call.
    """
    result = get_session_manager(request).check(get_token(request))
    if not result.authenticated:
        return SessionCheckResponse(authenticated=False)
    return SessionCheckResponse(authenticated=True, user=SessionUserResponse.from_view(result.user))


@router.post("/auth/password")
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    session: Session = Depends(get_current_session),
) -> dict:
    """Change the caller's own password after verifying the current one."""
    user_admin: UserAdmin = request.app.state.user_admin
    user_admin.change_own_password(session, body.current_password, body.new_password)
    return {"success": True}
