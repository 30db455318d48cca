"""
auth/store.py -- Credential store: SQLAlchemy Core persistence for users.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Routes and services never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  password_hash never leaves this module. Callers verify a password through
  check_password(); no method returns the hash.

  Partial updates go through an explicit allow-list (_FIELD_VALIDATORS). Each
  field has its own validator; unknown keys are rejected, never ignored.

Last-admin invariant:
  Any write whose FINAL row state is not "active admin" carries a guard in
  its WHERE clause:

      NOT (role = 'admin' AND is_active = 1)
      OR (SELECT COUNT(*) FROM users other WHERE other is an active admin
          AND other.id != :id) > 0

  The count and the write are one statement, so SQLite evaluates them
  atomically. rowcount == 0 means the guard refused the write. Writers in this
  process are additionally serialized by _write_lock, which keeps two threads
  from interleaving the read of the current row with the guarded write.

Layer rule: no imports from api/ or media/.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import and_, func, not_, or_, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.audit import AuditLog
from auth.models import ROLE_VALUES, AuditAction, Role, User
from auth.passwords import MIN_PASSWORD_LENGTH, hash_password, password_too_long, verify_password
from core.database import users
from core.errors import InvariantError, NotFoundError, ValidationError

logger = logging.getLogger("gallery.auth.store")

_USERNAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")
USERNAME_MIN = 3
USERNAME_MAX = 30
DISPLAY_NAME_MAX = 100


# ---------------------------------------------------------------------------
# Field validators
# ---------------------------------------------------------------------------


def validate_username(value: Any) -> str:
    """Return the normalized (lower-cased) username or raise ValidationError."""
    if not isinstance(value, str) or not (USERNAME_MIN <= len(value) <= USERNAME_MAX):
        raise ValidationError(f"Username must be between {USERNAME_MIN} and {USERNAME_MAX} characters.")
    if not _USERNAME_RE.match(value):
        raise ValidationError("Username may only contain letters, digits, '.', '_' and '-'.")
    return value.lower()


def validate_password(value: Any) -> str:
    if not isinstance(value, str) or len(value) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if password_too_long(value):
        raise ValidationError("Password must be at most 72 bytes.")
    return value


def validate_role(value: Any) -> str:
    if isinstance(value, Role):
        return value.value
    if value not in ROLE_VALUES:
        raise ValidationError('Role must be "admin", "uploader" or "user".')
    return value


def validate_display_name(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Display name must not be empty.")
    value = value.strip()
    if len(value) > DISPLAY_NAME_MAX:
        raise ValidationError(f"Display name must be at most {DISPLAY_NAME_MAX} characters.")
    return value


def validate_is_active(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError("is_active must be true or false.")
    return value


_FIELD_VALIDATORS: dict[str, Callable[[Any], Any]] = {
    "username": validate_username,
    "display_name": validate_display_name,
    "role": validate_role,
    "is_active": validate_is_active,
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        engine = create_db_engine("sqlite:///gallery.db")
        store = UserStore(engine)
        store.create_user("alice", "password123", role="admin", created_by="setup-script")
        user = store.get_by_username("ALICE")
    """

    UPDATABLE_FIELDS = frozenset(_FIELD_VALIDATORS)

    def __init__(self, engine: Engine, audit: AuditLog | None = None) -> None:
        self.engine = engine
        self.audit = audit if audit is not None else AuditLog(engine)
        self._write_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists (first-run detection)."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(users)).scalar()
        return (result or 0) > 0

    def get_by_username(self, username: str) -> User | None:
        """Case-insensitive lookup. Returns None if not found."""
        if not isinstance(username, str) or not username:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(select(users).where(users.c.username == username.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(users).where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_all(self) -> list[User]:
        """Return all users, most recently created first."""
        with self.engine.connect() as conn:
            rows = conn.execute(select(users).order_by(users.c.created_at.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_active_by_role(self, role: Role | str) -> int:
        role_value = validate_role(role)
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(users)
                .where((users.c.role == role_value) & (users.c.is_active == 1))
            ).scalar()
        return result or 0

    def check_password(self, user_id: str, plain: str) -> bool:
        """Verify plain against the stored hash without exposing the hash."""
        with self.engine.connect() as conn:
            stored = conn.execute(select(users.c.password_hash).where(users.c.id == user_id)).scalar()
        if stored is None:
            return False
        return verify_password(plain, stored)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_user(
        self,
        username: str,
        password: str,
        role: Role | str = Role.user,
        display_name: str | None = None,
        created_by: str = "system",
    ) -> User:
        """Validate, hash, insert, and audit a new account.

        Raises ValidationError for a bad username, short password, unknown
        role, or a username already taken in any letter case.
        """
        normalized = validate_username(username)
        validate_password(password)
        role_value = validate_role(role)
        display = validate_display_name(display_name) if display_name else username

        if self.get_by_username(normalized) is not None:
            raise ValidationError("Username is already taken.")

        # Hash outside the lock; bcrypt is the slow part.
        password_hash = hash_password(password)
        user_id = str(uuid.uuid4())
        try:
            with self._write_lock, self.engine.begin() as conn:
                conn.execute(
                    users.insert().values(
                        id=user_id,
                        username=normalized,
                        password_hash=password_hash,
                        role=role_value,
                        display_name=display,
                        is_active=1,
                        created_at=_now_iso(),
                        created_by=created_by,
                    )
                )
                created = self._fetch_for_update(conn, user_id)
                self.audit.append(
                    created_by,
                    AuditAction.user_created,
                    normalized,
                    f"User created with role: {role_value}",
                    conn=conn,
                )
        except IntegrityError as exc:
            # A concurrent create won the UNIQUE race after our pre-check.
            raise ValidationError("Username is already taken.") from exc

        logger.info("Created user '%s' (role=%s) by %s", normalized, role_value, created_by)
        return created

    def update_user(self, user_id: str, fields: dict[str, Any], updated_by: str) -> User:
        """Apply a validated partial update.

        Accepted keys: username, display_name, role, is_active. The last-admin
        rule is checked against the row's final state, so no combination of
        fields can strip the last active admin.
        """
        unknown = set(fields) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown field(s): {', '.join(sorted(unknown))}.")
        if not fields:
            raise ValidationError("No fields to update.")
        values = {name: _FIELD_VALIDATORS[name](value) for name, value in fields.items()}

        try:
            with self._write_lock, self.engine.begin() as conn:
                current = self._fetch_for_update(conn, user_id)

                if "username" in values and values["username"] != current.username:
                    taken = conn.execute(
                        select(users.c.id).where((users.c.username == values["username"]) & (users.c.id != user_id))
                    ).fetchone()
                    if taken is not None:
                        raise ValidationError("Username is already taken.")

                changes = {
                    name: [getattr(current, name), value]
                    for name, value in values.items()
                    if getattr(current, name) != value
                }
                if changes:
                    final_role = values.get("role", current.role)
                    final_active = values.get("is_active", current.is_active)
                    row_values = dict(values)
                    if "is_active" in row_values:
                        row_values["is_active"] = 1 if row_values["is_active"] else 0
                    self._guarded_write(conn, user_id, row_values, final_role, final_active)
                    self.audit.append(
                        updated_by,
                        AuditAction.user_updated,
                        current.username,
                        json.dumps(changes, sort_keys=True),
                        conn=conn,
                    )
                updated = self._fetch_for_update(conn, user_id)
        except IntegrityError as exc:
            raise ValidationError("Username is already taken.") from exc

        return updated

    def reset_password(
        self,
        user_id: str,
        new_password: str,
        reset_by: str,
        action: AuditAction = AuditAction.password_reset,
    ) -> None:
        """Rehash and overwrite a user's password.

        Used for admin resets and, with action=password_changed, for the
        self-service change after the caller has verified the old password.
        A short password and an unknown user_id both raise ValidationError.
        """
        validate_password(new_password)
        password_hash = hash_password(new_password)
        with self._write_lock, self.engine.begin() as conn:
            try:
                current = self._fetch_for_update(conn, user_id)
            except NotFoundError as exc:
                raise ValidationError("User not found.") from exc
            conn.execute(users.update().where(users.c.id == user_id).values(password_hash=password_hash))
            detail = "Password reset by admin" if action == AuditAction.password_reset else "Password changed by user"
            self.audit.append(reset_by, action, current.username, detail, conn=conn)
        logger.info("Password for '%s' replaced by %s", current.username, reset_by)

    def delete_user(self, user_id: str, deleted_by: str) -> None:
        """Soft-delete: mark the account inactive. Rows are never removed.

        Identity checks (no self-delete) are the caller's job; this method
        only enforces the last-admin rule.
        """
        with self._write_lock, self.engine.begin() as conn:
            current = self._fetch_for_update(conn, user_id)
            self._guarded_write(conn, user_id, {"is_active": 0}, current.role, False)
            self.audit.append(deleted_by, AuditAction.user_deleted, current.username, "User deactivated", conn=conn)
        logger.info("Deactivated user '%s' by %s", current.username, deleted_by)

    def update_last_login(self, user_id: str) -> None:
        """Stamp the current UTC time as last_login. Not audited."""
        with self.engine.begin() as conn:
            conn.execute(users.update().where(users.c.id == user_id).values(last_login=_now_iso()))

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fetch_for_update(self, conn: Connection, user_id: str) -> User:
        row = conn.execute(select(users).where(users.c.id == user_id)).fetchone()
        if row is None:
            raise NotFoundError("User not found.")
        return _row_to_user(row)

    def _guarded_write(
        self,
        conn: Connection,
        user_id: str,
        row_values: dict[str, Any],
        final_role: str,
        final_active: bool,
    ) -> None:
        """UPDATE one row, refusing if it would leave no active admin.

        The guard is attached only when the row will not be an active admin
        afterwards. It re-reads the row's current role/is_active inside the
        statement, so it holds even if our earlier read is stale.
        """
        stmt = users.update().where(users.c.id == user_id).values(**row_values)
        if not (final_role == Role.admin.value and final_active):
            other = users.alias("other_admins")
            other_active_admins = (
                select(func.count())
                .select_from(other)
                .where(
                    (other.c.role == Role.admin.value)
                    & (other.c.is_active == 1)
                    & (other.c.id != user_id)
                )
                .scalar_subquery()
            )
            stmt = stmt.where(
                or_(
                    not_(and_(users.c.role == Role.admin.value, users.c.is_active == 1)),
                    other_active_admins > 0,
                )
            )
        result = conn.execute(stmt)
        if result.rowcount == 0:
            logger.warning("Refused write to user %s: would remove the last active admin", user_id)
            raise InvariantError("The last active administrator cannot be deactivated, deleted, or demoted.")


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        role=row.role,
        display_name=row.display_name,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        created_by=row.created_by,
        last_login=row.last_login,
    )
