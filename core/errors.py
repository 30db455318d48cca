"""
core/errors.py -- Error taxonomy shared by every layer.

Every rejected operation raises one of these. Each class carries a stable
`code` (machine-readable, part of the API contract) and an HTTP status that
api/main.py uses when rendering the error envelope. The core never imports
FastAPI; the mapping to HTTP happens in exactly one place.

Disclosure policy:
  ValidationError / InvariantError -- operator-facing, message shown verbatim.
  AuthError / PathError            -- flattened to a generic message before it
                                      reaches the client. The specific reason
                                      goes to the server log via `detail`.
  NotFoundError                    -- generic not-found.
  Unauthorized / Forbidden         -- RBAC gate failures.

Layer rule: no imports from api/, auth/, or media/.
"""

from __future__ import annotations


class GalleryError(Exception):
    """Base class. `detail` is for server-side logs only, never for clients."""

    code: str = "error"
    status_code: int = 500
    public_message: str = "An unexpected error occurred."
    # When False the client sees public_message instead of the raised message.
    disclose: bool = False

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.public_message
        self.detail = detail
        super().__init__(self.message)

    @property
    def client_message(self) -> str:
        return self.message if self.disclose else self.public_message


class ValidationError(GalleryError):
    code = "validation_error"
    status_code = 400
    public_message = "Invalid input."
    disclose = True


class InvariantError(GalleryError):
    code = "last_admin"
    status_code = 409
    public_message = "At least one active administrator must remain."
    disclose = True


class NotFoundError(GalleryError):
    code = "not_found"
    status_code = 404
    public_message = "Not found."


class AuthError(GalleryError):
    code = "invalid_credentials"
    status_code = 401
    public_message = "Invalid username or password."


class PathError(GalleryError):
    code = "access_denied"
    status_code = 403
    public_message = "Access denied."


class Unauthorized(GalleryError):
    code = "unauthorized"
    status_code = 401
    public_message = "Authentication required."


class Forbidden(GalleryError):
    code = "forbidden"
    status_code = 403
    public_message = "You do not have permission to do that."
    disclose = True
