"""
core/database.py -- SQLAlchemy Core schema and engine factory.

The engine is created once by the application lifespan (or by a test fixture)
and passed into UserStore and AuditLog. There is no module-level connection:
every component receives the engine it should use, so two test modules never
share a database by accident.

Schema notes:
  users.username is stored lower-cased AND declared COLLATE NOCASE, so
  uniqueness is case-insensitive even if a row is written outside the store.

  users.role carries a CHECK constraint over the three known roles.

  audit_log is append-only. Nothing in the code base issues UPDATE or DELETE
  against it. actor_id is free text because the setup script and the system
  act without a user row ("setup-script", "system").

Layer rule: no imports from api/, auth/, or media/.
"""

from __future__ import annotations

import logging

from sqlalchemy import (
    CheckConstraint,
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine

logger = logging.getLogger("gallery.database")

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),  # uuid4
    Column("username", String(30, collation="NOCASE"), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(16), nullable=False),
    Column("display_name", String(100), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("created_by", String(64), nullable=False),
    Column("last_login", String(32)),
    CheckConstraint("role IN ('admin', 'uploader', 'user')", name="ck_users_role"),
)

Index("idx_users_role_active", users.c.role, users.c.is_active)

audit_log = Table(
    "audit_log",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("timestamp", String(32), nullable=False),
    Column("actor_id", String(64), nullable=False),
    Column("action", String(32), nullable=False),
    Column("target_username", String(30)),
    Column("details", Text),
)

Index("idx_audit_timestamp", audit_log.c.timestamp)


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and a busy timeout on every new SQLite connection.

    PRAGMAs are per-connection, so they must be set from the connect event
    rather than once at startup.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def create_db_engine(db_url: str) -> Engine:
    """Create an engine for db_url and make sure the schema exists.

    Named shared-memory URIs (file:name?mode=memory&cache=shared&uri=true)
    work here as well, for throwaway databases shared across threads.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    logger.debug("Database ready at %s", engine.url.render_as_string(hide_password=True))
    return engine
