"""
auth/sessions.py -- Session/auth manager: login, per-request revalidation, logout.

State machine per client: Anonymous -> Authenticated -> Anonymous (logout,
expiry, or the account being deactivated/deleted).

Security design decisions:
  Tokens: the client holds an HS256 JWT (python-jose) whose only claims are
      `sid` and `exp`. Everything else lives server-side in SessionStore, so
      logout really ends the session and nothing about the account is
      readable from the cookie.

  Revalidation: current_session() re-reads the user row on EVERY call. The
      snapshot taken at login is never trusted for access decisions; a
      deactivated or deleted account loses its sessions on the next request.

  Enumeration: unknown user, inactive user, and wrong password all raise the
      same AuthError after the same work (one bcrypt verification, against a
      dummy hash when there is no user) and the same fixed delay.

  Fixation: login() destroys whatever session the client presented before
      issuing a fresh sid.

Layer rule: no imports from api/ or media/.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import LoginResult, Session, SessionCheck, SessionUserView, User
from auth.passwords import dummy_hash, verify_password
from auth.store import UserStore
from core.config import Settings, get_settings
from core.errors import AuthError

logger = logging.getLogger("gallery.auth")

_ALGORITHM = "HS256"


class SessionStore:
    """In-process map of sid -> Session.

    One lock guards the dict; every operation is a single short critical
    section, so reads and writes to one sid are serialized without holding
    anything across requests.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def put(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.sid] = session

    def get(self, sid: str) -> Session | None:
        """Return a copy of the live session, dropping it if it has expired."""
        with self._lock:
            session = self._sessions.get(sid)
            if session is None:
                return None
            if session.is_expired():
                del self._sessions[sid]
                logger.info("Session for '%s' expired", session.username)
                return None
            return replace(session)

    def refresh(self, sid: str, username: str, role: str) -> None:
        with self._lock:
            session = self._sessions.get(sid)
            if session is not None:
                session.username = username
                session.role = role

    def delete(self, sid: str) -> bool:
        with self._lock:
            return self._sessions.pop(sid, None) is not None

    def delete_for_user(self, user_id: str) -> int:
        with self._lock:
            doomed = [sid for sid, s in self._sessions.items() if s.user_id == user_id]
            for sid in doomed:
                del self._sessions[sid]
        return len(doomed)

    def purge_expired(self) -> int:
        now = datetime.now(timezone.utc)
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info("Purged %d expired sessions", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class SessionManager:
    """Turns credentials into sessions and sessions back into live users.

    Usage:
        manager = SessionManager(user_store)
        result = manager.login("alice", "password123")
        check = manager.check(result.token)
        manager.logout(result.token)
    """

    def __init__(
        self,
        store: UserStore,
        settings: Settings | None = None,
        sessions: SessionStore | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.sessions = sessions if sessions is not None else SessionStore()
        self._sleep = sleep
        # Every unknown-user login pays exactly one bcrypt verify.
        self._dummy_hash = dummy_hash()

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(self, username: str, password: str, previous_token: str | None = None) -> LoginResult:
        """Authenticate and issue a fresh session.

        Raises AuthError("invalid_credentials") for every failure cause.
        """
        if previous_token:
            self.logout(previous_token)
        if not isinstance(password, str):
            password = ""

        user = self.store.get_by_username(username) if isinstance(username, str) else None
        if user is None:
            # Same bcrypt work as a real check; the result is irrelevant.
            verify_password(password, self._dummy_hash)
            reason = "unknown user"
        elif not self.store.check_password(user.id, password):
            reason = "wrong password"
        elif not user.is_active:
            reason = "inactive account"
        else:
            reason = None

        if reason is not None:
            logger.warning("Failed login for '%s'", username)
            self._sleep(self.settings.login_failure_delay_seconds)
            raise AuthError(detail=reason)

        now = datetime.now(timezone.utc)
        session = Session(
            sid=secrets.token_urlsafe(32),
            user_id=user.id,
            username=user.username,
            role=user.role,
            created_at=now,
            expires_at=now + timedelta(seconds=self.settings.session_max_age_seconds),
        )
        self.sessions.put(session)
        self.store.update_last_login(user.id)
        logger.info("User '%s' logged in", user.username)
        return LoginResult(token=self._encode(session), session=replace(session), user=_view(user))

    def logout(self, token: str | None) -> None:
        """Destroy the server-side session. Unknown, expired, or missing tokens are fine."""
        sid = self._decode_sid(token, verify_exp=False)
        if sid and self.sessions.delete(sid):
            logger.info("Session ended by logout")

    # ------------------------------------------------------------------
    # Revalidation
    # ------------------------------------------------------------------

    def current_session(self, token: str | None) -> Session | None:
        """Return the session with role/username refreshed from the database.

        Returns None (anonymous) for a bad or expired token, an unknown sid,
        or an account that has since been deactivated or deleted.
        """
        resolved = self._revalidate(token)
        return resolved[0] if resolved else None

    def check(self, token: str | None) -> SessionCheck:
        resolved = self._revalidate(token)
        if resolved is None:
            return SessionCheck(authenticated=False)
        return SessionCheck(authenticated=True, user=_view(resolved[1]))

    def end_sessions_for(self, user_id: str) -> int:
        """Drop every session belonging to user_id (e.g. after a password reset)."""
        return self.sessions.delete_for_user(user_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _revalidate(self, token: str | None) -> tuple[Session, User] | None:
        sid = self._decode_sid(token)
        if sid is None:
            return None
        session = self.sessions.get(sid)
        if session is None:
            return None
        user = self.store.get_by_id(session.user_id)
        if user is None or not user.is_active:
            self.sessions.delete(sid)
            logger.info("Invalidated session for '%s': account no longer active", session.username)
            return None
        if user.role != session.role or user.username != session.username:
            self.sessions.refresh(sid, user.username, user.role)
            session = replace(session, username=user.username, role=user.role)
        return session, user

    def _encode(self, session: Session) -> str:
        payload = {"sid": session.sid, "exp": session.expires_at}
        return jwt.encode(payload, self.settings.secret_key, algorithm=_ALGORITHM)

    def _decode_sid(self, token: str | None, verify_exp: bool = True) -> str | None:
        """Return the sid claim, or None on any signature/expiry/shape failure."""
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self.settings.secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": verify_exp},
            )
        except JWTError:
            return None
        sid = payload.get("sid")
        return sid if isinstance(sid, str) else None


def _view(user: User) -> SessionUserView:
    return SessionUserView(
        user_id=user.id,
        username=user.username,
        display_name=user.display_name,
        role=user.role,
    )
