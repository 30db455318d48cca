"""
api/main.py -- FastAPI application entry point for the gallery.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost; Starlette puts the LAST registered
middleware outermost):
  1. log_requests          -- method, path, status, latency, client
  2. security_headers      -- CSP, nosniff, frame and referrer policy
  3. SlowAPIMiddleware     -- enforces default and per-route rate limits
  4. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Lifespan builds the object graph once: engine -> UserStore -> SessionManager
-> UserAdmin, and MediaLibrary -> MediaService. Everything is hung on
app.state; nothing is a module-level singleton, so tests wire their own
graph through wire_services().
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.media import router as media_router
from api.routes.v1.users import router as users_router
from auth.admin import UserAdmin
from auth.sessions import SessionManager
from auth.store import UserStore
from core.config import Settings, get_settings
from core.database import create_db_engine
from core.errors import AuthError, GalleryError, PathError
from media.library import MediaLibrary
from media.service import MediaService

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gallery.api")

_SESSION_PURGE_INTERVAL = 10 * 60


# ---------------------------------------------------------------------------
# Object graph
# ---------------------------------------------------------------------------


def wire_services(app: FastAPI, engine: Engine, settings: Settings, media_root: str | Path) -> None:
    """Build stores and services on top of engine and attach them to app.state."""
    user_store = UserStore(engine)
    session_manager = SessionManager(user_store, settings)
    app.state.engine = engine
    app.state.user_store = user_store
    app.state.session_manager = session_manager
    app.state.user_admin = UserAdmin(user_store, session_manager)
    app.state.media = MediaService(MediaLibrary(media_root), settings.max_upload_bytes)
    app.state.setup_required = not user_store.has_users()


async def _purge_loop(app: FastAPI) -> None:
    """Drop expired sessions every few minutes.

    Expired sessions are already refused on lookup; this only bounds memory.
    CancelledError from task.cancel() at shutdown unwinds through asyncio.sleep.
    """
    while True:
        await asyncio.sleep(_SESSION_PURGE_INTERVAL)
        app.state.session_manager.sessions.purge_expired()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create resources on startup, release them on shutdown."""
    settings = get_settings()
    logger.info("Gallery API starting up")

    media_root = Path(settings.media_root)
    if not media_root.is_dir():
        media_root.mkdir(parents=True, exist_ok=True)
        logger.warning("Media root %s did not exist -- created empty directory", media_root.resolve())

    wire_services(app, create_db_engine(settings.database_url), settings, media_root)
    if app.state.setup_required:
        logger.warning("No users exist yet. Run `python setup_admin.py` to create the first admin.")
    logger.info("Media root: %s", app.state.media.library.root)
    if not settings.secure_cookies:
        logger.warning("Running without secure cookies. Set SECURE_COOKIES=true when serving over HTTPS.")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.user_store.close()
    logger.info("Gallery API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Gallery API",
    description="Self-hosted media gallery: accounts, roles, and confined media browsing.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=get_settings().allowed_hosts)
app.add_middleware(SlowAPIMiddleware)

# SlowAPIMiddleware finds the limiter on app.state.
app.state.limiter = limiter

_SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self'; style-src 'self' 'unsafe-inline'; script-src 'self'; "
        "img-src 'self' data: blob:; media-src 'self' blob:"
    ),
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    if get_settings().secure_cookies:
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Admin"])
app.include_router(media_router, prefix="/api/v1", tags=["Media"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves the API as {"error": {code, message, detail}}.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(GalleryError)
async def gallery_error_handler(request: Request, exc: GalleryError) -> JSONResponse:
    """Render core errors.

    Auth and path errors are flattened to their generic public message; the
    specific reason (exc.detail) is logged here and never sent to the client.
    """
    if isinstance(exc, (AuthError, PathError)) and exc.detail:
        logger.info("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.detail)
    response = _error(exc.status_code, exc.code, exc.client_message)
    if isinstance(exc, AuthError):
        response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests. Please try again later.", str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and out-of-range query params."""
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Starlette-level errors (unknown route, wrong method) in the same envelope."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the server log only. Clients get a generic message,
    never a stack trace or an internal path.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
@limiter.exempt
async def health(request: Request) -> HealthResponse:
    """Return liveness, version, and database reachability. No auth, no rate limit."""
    components = {"app": "ok", "database": "ok"}
    engine: Engine = request.app.state.engine
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
