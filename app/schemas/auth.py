"""Request/response schemas for auth endpoints and session tokens."""

import re
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from app.core.security import EMAIL_MAX_LEN, NAME_MAX_LEN
from app.models.user import UserRole
from app.schemas.identity import CREDENTIALS_PROVIDER, OAUTH_PROVIDERS

# Deliberately loose: one "@", no whitespace, a dot in the domain.
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _validate_email(v: str) -> str:
    v = v.strip()
    if not EMAIL_PATTERN.match(v):
        raise ValueError("Please enter a valid email address")
    return v


class RegisterRequest(BaseModel):
    """Body of POST /auth/register. Password length is checked against settings in the service."""

    name: str = Field(..., min_length=1, max_length=NAME_MAX_LEN, description="Display name")
    email: str = Field(..., min_length=3, max_length=EMAIL_MAX_LEN, description="Email")
    password: str = Field(..., min_length=1, max_length=128, description="Password")
    image: str | None = Field(default=None, description="Profile image URL")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _validate_email(v)

    @field_validator("image")
    @classmethod
    def blank_image_is_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()


class PublicUser(BaseModel):
    """User fields safe to return to clients (no password)."""

    id: str
    name: str | None = None
    email: str
    image: str | None = None
    role: UserRole = UserRole.USER
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class RegisterResponse(BaseModel):
    message: str = "User created successfully"
    user: PublicUser


class SignInRequest(BaseModel):
    """Credentials for sign-in."""

    email: str = Field(..., min_length=1, max_length=EMAIL_MAX_LEN, description="Email")
    password: str = Field(..., min_length=1, max_length=128, description="Password")


class TokenResponse(BaseModel):
    """Signed session token returned after successful sign-in."""

    access_token: str = Field(..., description="Signed session token")
    token_type: str = Field(default="bearer", description="Token type")
    expires_at: int = Field(..., description="Absolute expiry (unix seconds)")


class SessionClaims(BaseModel):
    """Claims carried by the session token. Derived from the User row, never the source of truth."""

    sub: str
    name: str | None = None
    email: str | None = None
    picture: str | None = None
    role: UserRole | None = None
    iat: int
    exp: int
    auth_time: int


class SessionView(BaseModel):
    """Session claims as exposed to presentation layers."""

    id: str
    name: str | None = None
    email: str | None = None
    image: str | None = None
    role: UserRole = UserRole.USER


class SessionResponse(BaseModel):
    """Response for GET/POST /auth/session."""

    user: SessionView
    expires_at: int
    access_token: str | None = Field(
        default=None,
        description="Re-signed token when the session was refreshed; keep using the old one otherwise.",
    )


class SessionUpdateRequest(BaseModel):
    """Client-initiated session update (voluntary profile refresh)."""

    name: str | None = Field(default=None, max_length=NAME_MAX_LEN)
    email: str | None = Field(default=None, max_length=EMAIL_MAX_LEN)
    image: str | None = None


class LinkAccountRequest(BaseModel):
    """
    Form fields posted after the provider redirected back to the client.

    Only the authorization code is accepted; the linked identity is whatever the
    provider reports for it.
    """

    provider: str = Field(..., min_length=1, max_length=64)
    code: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if v == CREDENTIALS_PROVIDER:
            raise ValueError("the credentials provider cannot be linked")
        if v not in OAUTH_PROVIDERS:
            raise ValueError(f"Unsupported OAuth provider: {v}")
        return v


class LinkAccountResponse(BaseModel):
    success: bool = True


class CurrentUser(BaseModel):
    """Authenticated user (re-read from the database) for dependency injection."""

    id: str
    email: str
    name: str | None = None
    role: UserRole

    class Config:
        from_attributes = True


class UserListItem(BaseModel):
    """User entry for admin list (no password)."""

    id: str
    email: str
    name: str | None = None
    role: UserRole
    is_active: bool | None = None
    providers: list[str] = Field(default_factory=list)


class UsersListResponse(BaseModel):
    """Response for GET /auth/users (admin only)."""

    users: list[UserListItem]
