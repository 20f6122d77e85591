"""Sign-in, registration and session routes, plus auth dependencies (get_current_user, require_admin)."""

import logging
from typing import Annotated

from authlib.integrations.starlette_client import OAuth
from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.responses import RedirectResponse

from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.schemas.auth import (
    CurrentUser,
    LinkAccountRequest,
    LinkAccountResponse,
    PublicUser,
    RegisterRequest,
    RegisterResponse,
    SessionResponse,
    SessionUpdateRequest,
    SignInRequest,
    TokenResponse,
    UserListItem,
    UsersListResponse,
)
from app.schemas.identity import (
    RejectionReason,
    UserIdentity,
    VerificationError,
    VerificationErrorKind,
)
from app.services.credentials import CredentialVerifier
from app.services.identity import OAuthSignIn
from app.services.oauth_providers import (
    OAuthNotConfiguredError,
    OAuthProviderError,
    build_oauth,
    complete_authorization,
    start_authorization,
)
from app.services.registration import RegistrationError, register_user
from app.services.session_claims import (
    InvalidSessionError,
    SessionClaimsBuilder,
    SessionRead,
)
from app.services.store import ConflictError, IdentityStore

logger = logging.getLogger(__name__)
router = APIRouter()
security = HTTPBearer(auto_error=False)

_REJECTION_MESSAGES = {
    RejectionReason.MISSING_EMAIL: "The provider did not return an email address.",
    RejectionReason.DUPLICATE_EMAIL: "An account with this email was just created. Please sign in again.",
    RejectionReason.DUPLICATE_ACCOUNT: "This account is already linked to another user.",
    RejectionReason.LINK_ERROR: "Could not link your account. Please try again.",
    RejectionReason.DEACTIVATED: "This account has been deactivated.",
}


def get_store(db: Annotated[Session, Depends(get_db)]) -> IdentityStore:
    """Dependency: identity store bound to the request's DB session."""
    return IdentityStore(db)


def get_claims_builder(
    store: Annotated[IdentityStore, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> SessionClaimsBuilder:
    return SessionClaimsBuilder(store, settings)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _bearer_token(credentials: HTTPAuthorizationCredentials | None) -> str:
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Not authenticated")
    return credentials.credentials


def _token_response(builder: SessionClaimsBuilder, identity: UserIdentity) -> TokenResponse:
    claims, token = builder.issue(identity)
    return TokenResponse(access_token=token, token_type="bearer", expires_at=claims.exp)


def _session_response(builder: SessionClaimsBuilder, read: SessionRead) -> SessionResponse:
    return SessionResponse(
        user=builder.project(read.claims),
        expires_at=read.claims.exp,
        access_token=read.token,
    )


@router.post("/register", response_model=RegisterResponse, status_code=201)
def register(
    body: RegisterRequest,
    store: Annotated[IdentityStore, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> RegisterResponse:
    """Create a credentials account. 400 on invalid input or duplicate email."""
    try:
        user = register_user(store, body, settings)
    except RegistrationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except Exception as e:
        logger.exception("Registration error: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )
    return RegisterResponse(
        message="User created successfully",
        user=PublicUser.model_validate(user),
    )


@router.post("/signin", response_model=TokenResponse)
def sign_in(
    body: SignInRequest,
    store: Annotated[IdentityStore, Depends(get_store)],
    builder: Annotated[SessionClaimsBuilder, Depends(get_claims_builder)],
) -> TokenResponse:
    """
    Authenticate with email and password; returns a signed session token.
    Include the token in the Authorization header as: Bearer <access_token>
    """
    result = CredentialVerifier(store).verify(body.email, body.password)
    if isinstance(result, VerificationError):
        if result.kind == VerificationErrorKind.VALIDATION:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.public_message)
        if result.is_account_state_error:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=result.public_message)
        raise _unauthorized(result.public_message)
    return _token_response(builder, result)


def get_oauth(settings: Annotated[Settings, Depends(get_settings)]) -> OAuth:
    """Dependency: Authlib registry for the configured providers."""
    return build_oauth(settings)


def _oauth_failure(e: OAuthNotConfiguredError | OAuthProviderError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)


@router.get("/signin/{provider}")
async def oauth_signin(
    provider: str,
    request: Request,
    oauth: Annotated[OAuth, Depends(get_oauth)],
    redirect_uri: Annotated[str | None, Query()] = None,
) -> RedirectResponse:
    """
    Start an OAuth sign-in: redirect to the provider's consent page.

    redirect_uri defaults to this service's callback; a client that links an
    account passes its own page and posts the returned code to /link-account.
    """
    target = redirect_uri or str(request.url_for("oauth_callback", provider=provider))
    try:
        return await start_authorization(provider, request, oauth, target)
    except (OAuthNotConfiguredError, OAuthProviderError) as e:
        raise _oauth_failure(e)


@router.get("/callback/{provider}", response_model=TokenResponse)
async def oauth_callback(
    provider: str,
    request: Request,
    store: Annotated[IdentityStore, Depends(get_store)],
    builder: Annotated[SessionClaimsBuilder, Depends(get_claims_builder)],
    settings: Annotated[Settings, Depends(get_settings)],
    oauth: Annotated[OAuth, Depends(get_oauth)],
) -> TokenResponse:
    """OAuth redirect target: check state, exchange the code, resolve the identity, return a session token."""
    try:
        assertion = await complete_authorization(provider, request, oauth, settings)
    except (OAuthNotConfiguredError, OAuthProviderError) as e:
        raise _oauth_failure(e)

    result = await run_in_threadpool(OAuthSignIn(store, settings).complete, assertion)
    if not result.ok:
        reason = result.outcome.reason
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": reason.value, "message": _REJECTION_MESSAGES[reason]},
        )
    return await run_in_threadpool(_token_response, builder, result.identity)


def get_current_session(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    builder: Annotated[SessionClaimsBuilder, Depends(get_claims_builder)],
) -> SessionRead:
    """Dependency: validate the Bearer session token and refresh its claims. Raises 401."""
    try:
        return builder.read(_bearer_token(credentials))
    except InvalidSessionError as e:
        raise _unauthorized(e.message)


def get_current_user(
    session: Annotated[SessionRead, Depends(get_current_session)],
) -> CurrentUser:
    """Dependency: require a valid session and return the current user. Raises 401 if missing or invalid."""
    claims = session.claims
    return CurrentUser(id=claims.sub, email=claims.email or "", name=claims.name, role=claims.role)


def require_admin(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> CurrentUser:
    """Dependency: require authenticated user with role 'admin'. Raises 403 for non-admin."""
    if current_user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


@router.get("/session", response_model=SessionResponse)
def read_session(
    session: Annotated[SessionRead, Depends(get_current_session)],
    builder: Annotated[SessionClaimsBuilder, Depends(get_claims_builder)],
) -> SessionResponse:
    """Current session view. access_token is set when the token was re-signed."""
    return _session_response(builder, session)


@router.post("/session", response_model=SessionResponse)
def update_session(
    body: SessionUpdateRequest,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    builder: Annotated[SessionClaimsBuilder, Depends(get_claims_builder)],
) -> SessionResponse:
    """Client-initiated update: merge the patch, re-derive from the user row, re-sign."""
    patch = {"name": body.name, "email": body.email, "picture": body.image}
    try:
        read = builder.read(_bearer_token(credentials), trigger="update", patch=patch)
    except InvalidSessionError as e:
        raise _unauthorized(e.message)
    return _session_response(builder, read)


@router.post("/signout")
def sign_out() -> dict[str, bool]:
    """Tokens are client-held; signing out means the client discards its token."""
    return {"ok": True}


@router.post("/link-account", response_model=LinkAccountResponse)
async def link_account(
    body: Annotated[LinkAccountRequest, Form()],
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    store: Annotated[IdentityStore, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_settings)],
    oauth: Annotated[OAuth, Depends(get_oauth)],
) -> LinkAccountResponse:
    """
    Link a provider account to the signed-in user.

    The client posts the code and state the provider redirected back with; the
    account id is taken from the provider's profile, never from the client.
    """
    try:
        assertion = await complete_authorization(body.provider, request, oauth, settings)
    except (OAuthNotConfiguredError, OAuthProviderError) as e:
        raise _oauth_failure(e)

    try:
        await run_in_threadpool(
            store.insert_linked_account,
            user_id=current_user.id,
            provider=assertion.provider,
            provider_account_id=assertion.provider_account_id,
            account_type=assertion.account_type,
            tokens=assertion.tokens,
        )
    except ConflictError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="This account is already linked to a user.",
        )
    except SQLAlchemyError as e:
        logger.exception("Error linking account: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to link account",
        )
    logger.info("Linked %s account to user %s", assertion.provider, current_user.id)
    return LinkAccountResponse(success=True)


@router.get("/users", response_model=UsersListResponse)
def list_users(
    _admin: Annotated[CurrentUser, Depends(require_admin)],
    store: Annotated[IdentityStore, Depends(get_store)],
) -> UsersListResponse:
    """List all users with their linked providers (admin only)."""
    return UsersListResponse(
        users=[
            UserListItem(
                id=u.id,
                email=u.email,
                name=u.name,
                role=u.role,
                is_active=u.is_active,
                providers=[a.provider for a in store.list_accounts_for_user(u.id)],
            )
            for u in store.list_users()
        ]
    )
