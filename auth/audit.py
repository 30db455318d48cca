"""
auth/audit.py -- Append-only audit trail of security-relevant mutations.

Durability contract: every UserStore mutation passes its open transaction
into append(), so the audit row commits or rolls back together with the
change it describes. A user mutation without a trail cannot be persisted,
and an audit failure surfaces as the mutation's own failure.

The class exposes no update or delete path. Entries are never rewritten.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.engine import Connection, Engine

from auth.models import AuditAction, AuditEntry
from core.database import audit_log, users
from core.errors import ValidationError

logger = logging.getLogger("gallery.audit")

MAX_QUERY_LIMIT = 1000


class AuditLog:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def append(
        self,
        actor_id: str,
        action: AuditAction | str,
        target_username: str | None = None,
        details: str | None = None,
        conn: Connection | None = None,
    ) -> None:
        """Record one entry.

        With conn, the insert joins the caller's transaction. Without it, the
        entry is written in its own transaction.
        """
        values = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "actor_id": actor_id,
            "action": AuditAction(action).value,
            "target_username": target_username,
            "details": details,
        }
        if conn is not None:
            conn.execute(audit_log.insert().values(**values))
        else:
            with self.engine.begin() as own:
                own.execute(audit_log.insert().values(**values))
        logger.info("audit %s by %s target=%s", values["action"], actor_id, target_username)

    def query(self, limit: int = 100) -> list[AuditEntry]:
        """Return up to limit entries, newest first, with the actor's username joined in."""
        if limit < 1 or limit > MAX_QUERY_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_QUERY_LIMIT}.")
        stmt = (
            select(audit_log, users.c.username.label("actor_username"))
            .select_from(audit_log.outerjoin(users, audit_log.c.actor_id == users.c.id))
            .order_by(audit_log.c.timestamp.desc(), audit_log.c.id.desc())
            .limit(limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [
            AuditEntry(
                timestamp=r.timestamp,
                actor_id=r.actor_id,
                action=r.action,
                target_username=r.target_username,
                details=r.details,
                actor_username=r.actor_username,
            )
            for r in rows
        ]
