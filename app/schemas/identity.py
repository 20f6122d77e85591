"""Identity assertions, resolution outcomes and verification results.

Assertions are a tagged variant over credentials and OAuth sign-ins. Outcomes
and verification errors are returned as values; callers branch on ``kind``
instead of catching exceptions.
"""

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator

from app.models.user import UserRole

CREDENTIALS_PROVIDER = "credentials"
# Providers this service can run an authorization-code flow against.
OAUTH_PROVIDERS = ("github", "google")


class UserIdentity(BaseModel):
    """Minimal projection of a user after successful authentication (never the password hash)."""

    id: str
    email: str
    name: str | None = None
    image: str | None = None
    role: UserRole = UserRole.USER

    class Config:
        from_attributes = True


class OAuthTokens(BaseModel):
    """Token material returned by a provider; all fields optional and replaceable."""

    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: int | None = None
    token_type: str | None = None
    scope: str | None = None
    id_token: str | None = None
    session_state: str | None = None


class CredentialsAssertion(BaseModel):
    """Sign-in already authenticated by the credential verifier."""

    kind: Literal["credentials"] = "credentials"
    provider: Literal["credentials"] = CREDENTIALS_PROVIDER
    identity: UserIdentity


class OAuthAssertion(BaseModel):
    """Identity asserted by an OAuth provider callback."""

    kind: Literal["oauth"] = "oauth"
    provider: str = Field(..., min_length=1, max_length=64)
    provider_account_id: str = Field(..., min_length=1, max_length=255)
    account_type: str = Field(default="oauth", min_length=1, max_length=64)
    email: str | None = None
    name: str | None = None
    image: str | None = Field(default=None, description="Profile picture URL")
    tokens: OAuthTokens = Field(default_factory=OAuthTokens)

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("provider must be non-empty")
        if v == CREDENTIALS_PROVIDER:
            raise ValueError("the credentials provider cannot be used for OAuth sign-in")
        return v

    @field_validator("provider_account_id")
    @classmethod
    def validate_provider_account_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("provider_account_id must be non-empty")
        return v

    @field_validator("email")
    @classmethod
    def blank_email_is_missing(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()


IdentityAssertion = Annotated[
    Union[CredentialsAssertion, OAuthAssertion],
    Field(discriminator="kind"),
]


class RejectionReason(str, Enum):
    MISSING_EMAIL = "missing_email"
    DUPLICATE_EMAIL = "duplicate_email"
    DUPLICATE_ACCOUNT = "duplicate_account"
    LINK_ERROR = "link_error"
    DEACTIVATED = "deactivated"


class ProceedAsNewUser(BaseModel):
    """No local user matches; the caller creates the user and its first account."""

    kind: Literal["proceed_as_new_user"] = "proceed_as_new_user"


class LinkedToExisting(BaseModel):
    """A new LinkedAccount row was written for an existing user."""

    kind: Literal["linked_to_existing"] = "linked_to_existing"
    user_id: str


class AlreadyLinked(BaseModel):
    """The provider identity was already linked to the matched user; nothing written."""

    kind: Literal["already_linked"] = "already_linked"
    user_id: str


class Rejected(BaseModel):
    """Sign-in must be denied."""

    kind: Literal["rejected"] = "rejected"
    reason: RejectionReason


ResolutionOutcome = Annotated[
    Union[ProceedAsNewUser, LinkedToExisting, AlreadyLinked, Rejected],
    Field(discriminator="kind"),
]


class VerificationErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    NO_PASSWORD_SET = "no_password_set"
    DEACTIVATED = "deactivated"
    INVALID_PASSWORD = "invalid_password"


# Wrong email and wrong password share one message so callers cannot enumerate accounts.
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password."

_PUBLIC_MESSAGES = {
    VerificationErrorKind.VALIDATION: "Email and password are required.",
    VerificationErrorKind.NOT_FOUND: INVALID_CREDENTIALS_MESSAGE,
    VerificationErrorKind.INVALID_PASSWORD: INVALID_CREDENTIALS_MESSAGE,
    VerificationErrorKind.NO_PASSWORD_SET: "This account doesn't have a password set.",
    VerificationErrorKind.DEACTIVATED: "This account has been deactivated.",
}


class VerificationError(BaseModel):
    """Failed credential check. ``kind`` is internal; ``public_message`` is safe to show."""

    kind: VerificationErrorKind

    @property
    def public_message(self) -> str:
        return _PUBLIC_MESSAGES[self.kind]

    @property
    def is_account_state_error(self) -> bool:
        return self.kind in (
            VerificationErrorKind.NO_PASSWORD_SET,
            VerificationErrorKind.DEACTIVATED,
        )


class SignInResult(BaseModel):
    """Result of completing an OAuth sign-in: the resolved identity or a rejection."""

    outcome: ResolutionOutcome
    identity: UserIdentity | None = None

    @property
    def ok(self) -> bool:
        return self.identity is not None
