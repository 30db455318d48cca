"""
auth/rbac.py -- Role gates and self-protection rules.

Roles map to capability sets rather than a rank. uploader and admin both
include every base user capability; uploader adds upload/folder rights and
admin adds those plus user management. Gates ask "does this role hold the
capability?", never "is this role above that one?".

Two families of gates:
  require_*(manager, token) -- revalidate the token against the database,
      then check the role. Use these at the edge (HTTP dependencies, CLI).
  ensure_*(session)         -- check a Session that was JUST returned by
      SessionManager.current_session(). Services call these on the session
      the edge passed in, so one request revalidates exactly once.

Every gate fails closed:
  no live session (bad token, expired, account deactivated) -> Unauthorized
  live session, wrong role                                   -> Forbidden

The identity checks (no self-demotion, self-deactivation, self-deletion)
live here, not in UserStore. The store only knows about the last-admin rule.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from auth.models import Role, Session
from auth.sessions import SessionManager
from core.errors import Forbidden, Unauthorized


class Capability(str, Enum):
    browse = "browse"
    view_media = "view_media"
    change_own_password = "change_own_password"
    upload = "upload"
    manage_folders = "manage_folders"
    manage_users = "manage_users"
    view_audit = "view_audit"


_BASE = frozenset({Capability.browse, Capability.view_media, Capability.change_own_password})
_UPLOAD = frozenset({Capability.upload, Capability.manage_folders})
_ADMIN = frozenset({Capability.manage_users, Capability.view_audit})

ROLE_CAPABILITIES: dict[str, frozenset[Capability]] = {
    Role.user.value: _BASE,
    Role.uploader.value: _BASE | _UPLOAD,
    Role.admin.value: _BASE | _UPLOAD | _ADMIN,
}


def has_capability(role: str, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


# ---------------------------------------------------------------------------
# Session gates
# ---------------------------------------------------------------------------


def ensure_authenticated(session: Session | None) -> Session:
    if session is None or not session.authenticated:
        raise Unauthorized()
    return session


def ensure_capability(session: Session | None, capability: Capability) -> Session:
    session = ensure_authenticated(session)
    if not has_capability(session.role, capability):
        raise Forbidden()
    return session


def ensure_admin(session: Session | None) -> Session:
    """role == admin exactly."""
    session = ensure_authenticated(session)
    if session.role != Role.admin.value:
        raise Forbidden("Admin access required.")
    return session


def ensure_uploader(session: Session | None) -> Session:
    """role in {admin, uploader}."""
    session = ensure_authenticated(session)
    if not has_capability(session.role, Capability.upload):
        raise Forbidden("Upload access required.")
    return session


# ---------------------------------------------------------------------------
# Token gates (revalidate, then check)
# ---------------------------------------------------------------------------


def require_authenticated(manager: SessionManager, token: str | None) -> Session:
    """Return the revalidated session or raise Unauthorized."""
    return ensure_authenticated(manager.current_session(token))


def require_admin(manager: SessionManager, token: str | None) -> Session:
    return ensure_admin(manager.current_session(token))


def require_uploader(manager: SessionManager, token: str | None) -> Session:
    return ensure_uploader(manager.current_session(token))


# ---------------------------------------------------------------------------
# Self-protection
# ---------------------------------------------------------------------------


def check_self_update(session: Session, target_id: str, fields: Mapping[str, Any]) -> None:
    """Reject updates that would demote or deactivate the caller's own account."""
    if target_id != session.user_id:
        return
    if "role" in fields and fields["role"] != Role.admin.value:
        raise Forbidden("You cannot change your own role.")
    if fields.get("is_active") is False:
        raise Forbidden("You cannot deactivate your own account.")


def check_self_delete(session: Session, target_id: str) -> None:
    if target_id == session.user_id:
        raise Forbidden("You cannot delete your own account.")
