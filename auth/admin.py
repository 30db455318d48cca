"""
auth/admin.py -- User administration on behalf of an acting session.

This is the seam the HTTP layer (and the CLI) calls for user management.
Each method takes the caller's Session -- freshly revalidated by
SessionManager.current_session() -- runs the admin gate and the identity
checks, then delegates to UserStore. The store never sees a session; it gets
the acting user's id for the audit trail.

change_own_password is the one non-admin operation: any authenticated
account, but only after re-verifying the current password.
"""

from __future__ import annotations

import logging
from typing import Any

from auth.audit import AuditLog
from auth.models import AuditAction, AuditEntry, Role, Session, User
from auth.rbac import Capability, check_self_delete, check_self_update, ensure_admin, ensure_capability
from auth.sessions import SessionManager
from auth.store import UserStore
from core.errors import ValidationError

logger = logging.getLogger("gallery.auth.admin")


class UserAdmin:
    def __init__(self, store: UserStore, sessions: SessionManager, audit: AuditLog | None = None) -> None:
        self.store = store
        self.sessions = sessions
        self.audit = audit if audit is not None else store.audit

    def list_users(self, actor: Session | None) -> list[User]:
        ensure_admin(actor)
        return self.store.list_all()

    def create_user(
        self,
        actor: Session | None,
        username: str,
        password: str,
        role: Role | str = Role.user,
        display_name: str | None = None,
    ) -> User:
        actor = ensure_admin(actor)
        return self.store.create_user(username, password, role, display_name, created_by=actor.user_id)

    def update_user(self, actor: Session | None, user_id: str, fields: dict[str, Any]) -> User:
        actor = ensure_admin(actor)
        check_self_update(actor, user_id, fields)
        updated = self.store.update_user(user_id, fields, updated_by=actor.user_id)
        if not updated.is_active:
            self.sessions.end_sessions_for(updated.id)
        return updated

    def reset_password(self, actor: Session | None, user_id: str, new_password: str) -> None:
        """Admin-initiated reset. The target's other sessions are ended."""
        actor = ensure_admin(actor)
        self.store.reset_password(user_id, new_password, reset_by=actor.user_id)
        if user_id != actor.user_id:
            self.sessions.end_sessions_for(user_id)

    def delete_user(self, actor: Session | None, user_id: str) -> None:
        actor = ensure_admin(actor)
        check_self_delete(actor, user_id)
        self.store.delete_user(user_id, deleted_by=actor.user_id)
        self.sessions.end_sessions_for(user_id)

    def audit_log(self, actor: Session | None, limit: int = 100) -> list[AuditEntry]:
        ensure_admin(actor)
        return self.audit.query(limit)

    def change_own_password(self, actor: Session | None, current_password: str, new_password: str) -> None:
        actor = ensure_capability(actor, Capability.change_own_password)
        if not isinstance(current_password, str) or not self.store.check_password(actor.user_id, current_password):
            logger.warning("Password change for '%s' rejected: current password mismatch", actor.username)
            raise ValidationError("Current password is incorrect.")
        self.store.reset_password(
            actor.user_id,
            new_password,
            reset_by=actor.user_id,
            action=AuditAction.password_changed,
        )
