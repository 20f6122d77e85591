"""Pydantic request/response schemas."""

from app.schemas.auth import (
    PublicUser,
    RegisterRequest,
    RegisterResponse,
    SessionClaims,
    SessionResponse,
    SessionView,
    SignInRequest,
    TokenResponse,
)
from app.schemas.health import HealthResponse
from app.schemas.identity import (
    AlreadyLinked,
    CredentialsAssertion,
    IdentityAssertion,
    LinkedToExisting,
    OAuthAssertion,
    OAuthTokens,
    ProceedAsNewUser,
    Rejected,
    RejectionReason,
    ResolutionOutcome,
    UserIdentity,
    VerificationError,
    VerificationErrorKind,
)
from app.schemas.upload import ImageUploadResponse

__all__ = [
    "AlreadyLinked",
    "CredentialsAssertion",
    "HealthResponse",
    "IdentityAssertion",
    "ImageUploadResponse",
    "LinkedToExisting",
    "OAuthAssertion",
    "OAuthTokens",
    "ProceedAsNewUser",
    "PublicUser",
    "RegisterRequest",
    "RegisterResponse",
    "Rejected",
    "RejectionReason",
    "ResolutionOutcome",
    "SessionClaims",
    "SessionResponse",
    "SessionView",
    "SignInRequest",
    "TokenResponse",
    "UserIdentity",
    "VerificationError",
    "VerificationErrorKind",
]
