"""OAuth provider clients: authorization redirect, code exchange and profile mapping.

Authlib's Starlette integration runs the authorization-code flow. It keeps
``state`` (and, for Google, the OpenID nonce) in the session cookie and checks
both on the way back. Google's id_token is validated against its published
keys before its claims are used. Each provider's profile is then turned into an
OAuthAssertion; the identity resolver never sees provider-specific payloads.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx
from authlib.integrations.base_client import OAuthError
from authlib.integrations.starlette_client import OAuth
from authlib.jose.errors import JoseError
from starlette.requests import Request
from starlette.responses import RedirectResponse

from app.core.security import utc_timestamp
from app.schemas.identity import OAUTH_PROVIDERS, OAuthAssertion, OAuthTokens

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_API_BASE_URL = "https://api.github.com/"
GITHUB_SCOPE = "read:user user:email"

GOOGLE_METADATA_URL = "https://accounts.google.com/.well-known/openid-configuration"
GOOGLE_SCOPE = "openid email profile"

SUPPORTED_PROVIDERS = OAUTH_PROVIDERS


class OAuthNotConfiguredError(Exception):
    """Raised when a provider is unknown or its client credentials are missing."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class OAuthProviderError(Exception):
    """Raised when the provider flow fails: bad state, rejected code, unusable profile."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def _client_credentials(provider: str, settings: "Settings") -> tuple[str, str]:
    if provider == "github":
        client_id, secret = settings.GITHUB_CLIENT_ID, settings.GITHUB_CLIENT_SECRET
    elif provider == "google":
        client_id, secret = settings.GOOGLE_CLIENT_ID, settings.GOOGLE_CLIENT_SECRET
    else:
        raise OAuthNotConfiguredError(f"Unknown OAuth provider: {provider}")
    if not client_id or secret is None or not secret.get_secret_value():
        raise OAuthNotConfiguredError(f"OAuth provider {provider} is not configured")
    return client_id, secret.get_secret_value()


def configured_providers(settings: "Settings") -> list[str]:
    """Providers whose client credentials are set."""
    enabled = []
    for provider in SUPPORTED_PROVIDERS:
        try:
            _client_credentials(provider, settings)
        except OAuthNotConfiguredError:
            continue
        enabled.append(provider)
    return enabled


def build_oauth(settings: "Settings") -> OAuth:
    """Authlib registry with one client per configured provider."""
    oauth = OAuth()
    timeout = settings.OAUTH_REQUEST_TIMEOUT_SEC
    for provider in configured_providers(settings):
        client_id, client_secret = _client_credentials(provider, settings)
        if provider == "github":
            oauth.register(
                name="github",
                client_id=client_id,
                client_secret=client_secret,
                authorize_url=GITHUB_AUTHORIZE_URL,
                access_token_url=GITHUB_TOKEN_URL,
                api_base_url=GITHUB_API_BASE_URL,
                client_kwargs={"scope": GITHUB_SCOPE, "timeout": timeout},
            )
        else:
            oauth.register(
                name="google",
                client_id=client_id,
                client_secret=client_secret,
                server_metadata_url=GOOGLE_METADATA_URL,
                client_kwargs={"scope": GOOGLE_SCOPE, "timeout": timeout},
            )
    return oauth


def get_client(oauth: OAuth, provider: str):
    provider = provider.strip().lower()
    if provider not in SUPPORTED_PROVIDERS:
        raise OAuthNotConfiguredError(f"Unknown OAuth provider: {provider}")
    client = oauth.create_client(provider)
    if client is None:
        raise OAuthNotConfiguredError(f"OAuth provider {provider} is not configured")
    return client


def _json_or_error(response: httpx.Response, what: str) -> Any:
    if response.status_code >= 400:
        raise OAuthProviderError(
            f"{what} failed with HTTP {response.status_code}",
            status_code=response.status_code,
        )
    try:
        return response.json()
    except ValueError as e:
        raise OAuthProviderError(f"{what} returned invalid JSON") from e


def _tokens_from_response(token: dict[str, Any], settings: "Settings") -> OAuthTokens:
    if not token.get("access_token"):
        raise OAuthProviderError("Token exchange returned no access_token")
    expires_at = token.get("expires_at")
    if expires_at is None:
        expires_at = utc_timestamp() + settings.ACCESS_TOKEN_WINDOW_SEC
    return OAuthTokens(
        access_token=token.get("access_token"),
        refresh_token=token.get("refresh_token"),
        expires_at=int(expires_at),
        token_type=(token.get("token_type") or "bearer").lower(),
        scope=token.get("scope"),
        id_token=token.get("id_token"),
    )


def _github_assertion(
    profile: dict[str, Any], emails: list[dict[str, Any]] | None, tokens: OAuthTokens
) -> OAuthAssertion:
    if not profile.get("id"):
        raise OAuthProviderError("GitHub profile has no id")
    email = profile.get("email")
    if not email and emails:
        # Private emails are only available from /user/emails; use the verified primary.
        primary = next((e for e in emails if e.get("primary") and e.get("verified")), None)
        email = primary.get("email") if primary else None
    return OAuthAssertion(
        provider="github",
        provider_account_id=str(profile["id"]),
        email=email,
        name=profile.get("name") or profile.get("login"),
        image=profile.get("avatar_url"),
        tokens=tokens,
    )


def _google_assertion(userinfo: dict[str, Any], tokens: OAuthTokens) -> OAuthAssertion:
    if not userinfo.get("sub"):
        raise OAuthProviderError("Google profile has no sub")
    email = userinfo.get("email")
    if email and userinfo.get("email_verified") is False:
        email = None
    return OAuthAssertion(
        provider="google",
        provider_account_id=str(userinfo["sub"]),
        email=email,
        name=userinfo.get("name"),
        image=userinfo.get("picture"),
        tokens=tokens,
    )


async def fetch_oauth_assertion(
    provider: str, client, token: dict[str, Any], settings: "Settings"
) -> OAuthAssertion:
    """Read the provider profile for an exchanged token and map it to an OAuthAssertion."""
    tokens = _tokens_from_response(token, settings)
    if provider == "github":
        profile = _json_or_error(await client.get("user", token=token), "GitHub profile")
        emails = None
        if not profile.get("email"):
            emails = _json_or_error(await client.get("user/emails", token=token), "GitHub emails")
        return _github_assertion(profile, emails, tokens)

    # Present when the id_token was validated during the exchange.
    userinfo = token.get("userinfo")
    if userinfo is None:
        userinfo = await client.userinfo(token=token)
    return _google_assertion(dict(userinfo), tokens)


async def start_authorization(
    provider: str, request: Request, oauth: OAuth, redirect_uri: str
) -> RedirectResponse:
    """Redirect to the provider's consent page, remembering state in the session."""
    client = get_client(oauth, provider)
    try:
        return await client.authorize_redirect(request, redirect_uri)
    except httpx.HTTPError as e:
        logger.warning("Could not start %s authorization: %s", provider, e)
        raise OAuthProviderError(f"Could not reach {provider}") from e


async def complete_authorization(
    provider: str, request: Request, oauth: OAuth, settings: "Settings"
) -> OAuthAssertion:
    """
    Exchange the authorization code carried by ``request`` and return the asserted identity.

    The code and state are read from the query string (provider redirect) or the
    form body (client post). Raises OAuthNotConfiguredError for unknown or
    unconfigured providers and OAuthProviderError for a mismatching state, a
    rejected code, an invalid id_token or a network failure.
    """
    provider = provider.strip().lower()
    client = get_client(oauth, provider)
    try:
        token = await client.authorize_access_token(request)
        return await fetch_oauth_assertion(provider, client, token, settings)
    except OAuthError as e:
        logger.warning("%s authorization failed: %s", provider, e.error)
        raise OAuthProviderError(f"{provider} authorization failed: {e.error}") from e
    except JoseError as e:
        logger.warning("%s id_token rejected: %s", provider, e)
        raise OAuthProviderError(f"{provider} returned an invalid id_token") from e
    except httpx.HTTPError as e:
        logger.warning("OAuth request to %s failed: %s", provider, e)
        raise OAuthProviderError(f"Could not reach {provider}") from e
