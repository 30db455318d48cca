"""
API request and response models for the gallery REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py and
media/models.py, which own the internal domain representation. Route
handlers map between the two.

Request models only bound the payload shape (types, coarse length caps).
Domain rules -- username charset, password length, role values -- are
enforced by UserStore so every caller, HTTP or not, gets the same checks and
the same messages.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AuditEntry, SessionUserView, User
from media.models import Listing, MediaEntry

# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    username: str = Field(max_length=255)
    password: str = Field(max_length=255)


class SessionUserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    display_name: str
    role: str

    @classmethod
    def from_view(cls, view: SessionUserView) -> "SessionUserResponse":
        return cls(username=view.username, display_name=view.display_name, role=view.role)


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    user: SessionUserResponse


class SessionCheckResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    authenticated: bool
    user: Optional[SessionUserResponse] = None


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(max_length=255)
    new_password: str = Field(max_length=255)


# ---------------------------------------------------------------------------
# User management
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str = Field(max_length=255)
    password: str = Field(max_length=255)
    role: str = "user"
    display_name: Optional[str] = Field(default=None, max_length=255)


class UserPatch(BaseModel):
    """Partial update. Only fields present in the request body are applied.

    extra="forbid" rejects unknown keys instead of silently dropping them.
    """

    model_config = ConfigDict(extra="forbid")

    username: Optional[str] = Field(default=None, max_length=255)
    display_name: Optional[str] = Field(default=None, max_length=255)
    role: Optional[str] = None
    is_active: Optional[bool] = None


class ResetPasswordRequest(BaseModel):
    new_password: str = Field(max_length=255)


class UserResponse(BaseModel):
    """A user as shown to admins. There is no password hash to leave out."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    role: str
    display_name: str
    is_active: bool
    created_at: str
    created_by: str
    last_login: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            role=user.role,
            display_name=user.display_name,
            is_active=user.is_active,
            created_at=user.created_at,
            created_by=user.created_by,
            last_login=user.last_login,
        )


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: str
    username: Optional[str]
    action: str
    target_user: Optional[str]
    details: Optional[str]

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls(
            timestamp=entry.timestamp,
            username=entry.actor_username or entry.actor_id,
            action=entry.action,
            target_user=entry.target_username,
            details=entry.details,
        )


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------


class MediaEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    path: str

    @classmethod
    def from_entry(cls, entry: MediaEntry) -> "MediaEntryResponse":
        return cls(name=entry.name, type=entry.type.value, path=entry.relative_path)


class BrowseResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_path: str
    folders: list[MediaEntryResponse]
    files: list[MediaEntryResponse]

    @classmethod
    def from_listing(cls, listing: Listing) -> "BrowseResponse":
        return cls(
            current_path=listing.current_path,
            folders=[MediaEntryResponse.from_entry(e) for e in listing.folders],
            files=[MediaEntryResponse.from_entry(e) for e in listing.files],
        )


class FolderCreate(BaseModel):
    folder_name: str = Field(max_length=255)
    parent_path: str = Field(default="", max_length=1024)


class UploadResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    uploaded: list[MediaEntryResponse]
