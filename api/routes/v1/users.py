"""
api/routes/v1/users.py -- User management and audit log (admin only).

Routes:
  GET    /api/v1/admin/users                          -- list accounts, newest first
  POST   /api/v1/admin/users                          -- create account
  PATCH  /api/v1/admin/users/{user_id}                -- partial update
  DELETE /api/v1/admin/users/{user_id}                -- soft delete (deactivate)
  POST   /api/v1/admin/users/{user_id}/reset-password -- set a new password
  GET    /api/v1/admin/audit?limit=N                  -- audit trail, newest first

Every route depends on require_admin. UserAdmin repeats the role check on the
session it is given and adds the identity rules: no self-demotion, no
self-deactivation, no self-deletion. UserStore enforces the last-admin rule.

Error mapping (see api/main.py): ValidationError 400, NotFoundError 404,
Forbidden 403, InvariantError 409.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import AuditEntryResponse, ResetPasswordRequest, UserCreate, UserPatch, UserResponse
from auth.admin import UserAdmin
from auth.dependencies import require_admin
from auth.models import Session

router = APIRouter()


def _user_admin(request: Request) -> UserAdmin:
    return request.app.state.user_admin


@router.get("/admin/users", response_model=list[UserResponse])
def list_users(request: Request, session: Session = Depends(require_admin)) -> list[UserResponse]:
    return [UserResponse.from_user(u) for u in _user_admin(request).list_users(session)]


@router.post("/admin/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    session: Session = Depends(require_admin),
) -> UserResponse:
    created = _user_admin(request).create_user(
        session,
        username=body.username,
        password=body.password,
        role=body.role,
        display_name=body.display_name,
    )
    return UserResponse.from_user(created)


@router.patch("/admin/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: str,
    body: UserPatch,
    session: Session = Depends(require_admin),
) -> UserResponse:
    """Apply only the fields present in the body (exclude_unset)."""
    fields = body.model_dump(exclude_unset=True)
    return UserResponse.from_user(_user_admin(request).update_user(session, user_id, fields))


@router.delete("/admin/users/{user_id}", status_code=204)
def delete_user(request: Request, user_id: str, session: Session = Depends(require_admin)) -> Response:
    _user_admin(request).delete_user(session, user_id)
    return Response(status_code=204)


@router.post("/admin/users/{user_id}/reset-password")
def reset_password(
    request: Request,
    user_id: str,
    body: ResetPasswordRequest,
    session: Session = Depends(require_admin),
) -> dict:
    _user_admin(request).reset_password(session, user_id, body.new_password)
    return {"success": True}


@router.get("/admin/audit", response_model=list[AuditEntryResponse])
def audit_log(
    request: Request,
    limit: int = Query(default=100, ge=1, le=1000),
    session: Session = Depends(require_admin),
) -> list[AuditEntryResponse]:
    return [AuditEntryResponse.from_entry(e) for e in _user_admin(request).audit_log(session, limit)]
