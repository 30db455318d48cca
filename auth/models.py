"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work; these only own the domain shape.

password_hash deliberately does NOT appear on User. It lives in the users
table and is read only inside UserStore (see UserStore.check_password),
so a User can be logged, serialized, or returned from a route without any
risk of leaking a hash.

Layer rule: no imports from api/ or media/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class Role(str, Enum):
    """The three account tiers.

    Not a linear order: uploader is user + upload/folder rights, admin is
    uploader + user management. Gates test membership, never "<".
    """

    admin = "admin"
    uploader = "uploader"
    user = "user"


ROLE_VALUES = frozenset(r.value for r in Role)


class AuditAction(str, Enum):
    user_created = "user_created"
    user_updated = "user_updated"
    password_reset = "password_reset"
    password_changed = "password_changed"
    user_deleted = "user_deleted"


@dataclass
class User:
    """A gallery account.

    created_by is a user id, or "system" / "setup-script" for accounts that
    were not created by an admin through the API.
    """

    id: str
    username: str
    role: str  # "admin", "uploader", "user"
    display_name: str
    is_active: bool
    created_at: str
    created_by: str
    last_login: str | None = None


@dataclass
class AuditEntry:
    timestamp: str
    actor_id: str
    action: str
    target_username: str | None = None
    details: str | None = None
    # Joined from users at query time; None for non-user actors.
    actor_username: str | None = None


@dataclass
class Session:
    """Server-held proof of a successful login.

    user_id / username / role are a snapshot taken at login. They are used for
    logging and for the identity checks in auth/rbac.py, never for deciding
    whether the account is still allowed in -- SessionManager.check() re-reads
    the user row for that.
    """

    sid: str
    user_id: str
    username: str
    role: str
    created_at: datetime
    expires_at: datetime
    authenticated: bool = True

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at


@dataclass
class SessionUserView:
    """What a caller may learn about the logged-in account."""

    user_id: str
    username: str
    display_name: str
    role: str


@dataclass
class SessionCheck:
    authenticated: bool
    user: SessionUserView | None = None


@dataclass
class LoginResult:
    """Returned by SessionManager.login: the client token plus the public view."""

    token: str
    session: Session
    user: SessionUserView
