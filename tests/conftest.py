"""
tests/conftest.py -- Shared test fixtures for gallery unit and integration tests.

This module provides:
  - engine / store / audit: a fresh file-backed SQLite database per test
  - manager: SessionManager whose failure delay is recorded, not slept
  - admin / make_user: account factories
  - media_root: a small on-disk media tree under tmp_path
  - api_client: TestClient over the real app with a patched lifespan

Design: file databases under tmp_path (not plain :memory:) are required
because TestClient and the concurrency tests run work in other threads.
A plain ':memory:' engine hands each thread its own blank database.

The environment must be set before any core/auth/api import: DEBUG lets
get_settings() generate SECRET_KEY, and the rate limits are read when the
route modules are imported.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from pathlib import Path

# CRITICAL: set before any core/auth/api import (see module docstring).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "10")
os.environ.setdefault("LOGIN_FAILURE_DELAY_SECONDS", "0")
os.environ.setdefault("LOGIN_RATE_LIMIT", "10000/minute")
os.environ.setdefault("API_RATE_LIMIT", "10000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_services
from auth.audit import AuditLog
from auth.models import Role, User
from auth.sessions import SessionManager
from auth.store import UserStore
from core.config import get_settings
from core.database import create_db_engine

ADMIN_PASSWORD = "adminpass123"
USER_PASSWORD = "userpass123"

# Smallest valid GIF; enough for extension-based classification and streaming.
GIF_BYTES = b"GIF89a\x01\x00\x01\x00\x80\x00\x00\x00\x00\x00\xff\xff\xff!\xf9\x04\x01\x00\x00\x00\x00,\x00\x00\x00\x00\x01\x00\x01\x00\x00\x02\x02D\x01\x00;"


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine(tmp_path):
    eng = create_db_engine(f"sqlite:///{tmp_path / 'gallery.db'}")
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def audit(store) -> AuditLog:
    return store.audit


@pytest.fixture
def admin(store) -> User:
    return store.create_user("alice", ADMIN_PASSWORD, Role.admin, "Alice", created_by="setup-script")


@pytest.fixture
def make_user(store):
    """Return a factory: make_user("bob", role="uploader") -> User."""

    def _make(username: str, role: str = "user", password: str = USER_PASSWORD, created_by: str = "system") -> User:
        return store.create_user(username, password, role, created_by=created_by)

    return _make


class SleepRecorder:
    """Stands in for time.sleep and remembers every requested delay."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def manager(store, sleeper) -> SessionManager:
    return SessionManager(store, get_settings(), sleep=sleeper)


# ---------------------------------------------------------------------------
# Media fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def media_root(tmp_path) -> Path:
    """Build:

    images/
      Beach.jpg, apple.png, clip.mp4, notes.txt, .hidden.jpg
      holidays/   (contains sunset.webp)
      Zoo/
      .thumbs/
    """
    root = tmp_path / "images"
    root.mkdir()
    for name in ("Beach.jpg", "apple.png", "clip.mp4", ".hidden.jpg"):
        (root / name).write_bytes(GIF_BYTES)
    (root / "notes.txt").write_text("not media")
    (root / "holidays").mkdir()
    (root / "holidays" / "sunset.webp").write_bytes(GIF_BYTES)
    (root / "Zoo").mkdir()
    (root / ".thumbs").mkdir()
    return root


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(db_url: str, media_root: Path):
    """Return an async context manager that replaces the real lifespan.

    Wires a test database and media root into app.state through the same
    wire_services() the real lifespan uses. The purge_task is a long-sleeping
    coroutine so shutdown can cancel a real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, create_db_engine(db_url), get_settings(), media_root)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        app.state.user_store.close()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, UserStore, Path], None, None]:
    """Yield (client, user_store, media_root) for API integration tests.

    One TestClient per test module for speed. The admin "apiadmin" is
    created before any request; tests log in through the real route.
    """
    base = tmp_path_factory.mktemp("api")
    media = base / "images"
    media.mkdir()
    (media / "holidays").mkdir()
    (media / "holidays" / "sunset.jpg").write_bytes(GIF_BYTES)
    (media / "cover.png").write_bytes(GIF_BYTES)
    (media / "secret.txt").write_text("not served")
    (base / "outside.jpg").write_bytes(GIF_BYTES)

    db_url = f"sqlite:///{base / 'gallery.db'}"
    seed = UserStore(create_db_engine(db_url))
    seed.create_user("apiadmin", ADMIN_PASSWORD, Role.admin, "API Admin", created_by="setup-script")
    seed.close()

    app.router.lifespan_context = _patch_lifespan(db_url, media)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, app.state.user_store, media


def bearer(client: TestClient, username: str, password: str) -> dict[str, str]:
    """Log in and return an Authorization header, leaving the cookie jar empty."""
    resp = client.post("/api/v1/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    token = resp.cookies.get("gallery_session")
    client.cookies.clear()
    return {"Authorization": f"Bearer {token}"}
