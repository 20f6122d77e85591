"""Unit tests for app.services.oauth_providers (Authlib registry, profile mapping, flow errors)."""

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
from authlib.integrations.base_client import MismatchingStateError, OAuthError
from authlib.jose.errors import JoseError
from starlette.responses import RedirectResponse

from db_support import make_settings

from app.services.oauth_providers import (
    GITHUB_AUTHORIZE_URL,
    GITHUB_SCOPE,
    GOOGLE_SCOPE,
    OAuthNotConfiguredError,
    OAuthProviderError,
    build_oauth,
    complete_authorization,
    configured_providers,
    fetch_oauth_assertion,
    get_client,
    start_authorization,
)

NOW = 1_800_000_000


def _settings(**overrides: object):
    values = {
        "GITHUB_CLIENT_ID": "gh-id",
        "GITHUB_CLIENT_SECRET": "gh-secret",
        "GOOGLE_CLIENT_ID": "g-id",
        "GOOGLE_CLIENT_SECRET": "g-secret",
    }
    values.update(overrides)
    return make_settings(**values)


def _github_client(routes: dict[str, httpx.Response]) -> MagicMock:
    """Stand-in for Authlib's GitHub client: get(path) answers from ``routes``."""
    client = MagicMock()

    async def get(path, token=None):
        return routes.get(path, httpx.Response(404, json={"message": "not found"}))

    client.get = AsyncMock(side_effect=get)
    return client


def _oauth_with(client: MagicMock) -> MagicMock:
    oauth = MagicMock()
    oauth.create_client.return_value = client
    return oauth


class TestConfiguredProviders(unittest.TestCase):
    def test_lists_only_configured(self) -> None:
        self.assertEqual(configured_providers(make_settings()), [])
        self.assertEqual(
            configured_providers(make_settings(GOOGLE_CLIENT_ID="g", GOOGLE_CLIENT_SECRET="s")),
            ["google"],
        )
        self.assertEqual(configured_providers(_settings()), ["github", "google"])

    def test_blank_secret_is_not_configured(self) -> None:
        settings = make_settings(GITHUB_CLIENT_ID="gh", GITHUB_CLIENT_SECRET="")
        self.assertEqual(configured_providers(settings), [])


class TestBuildOAuth(unittest.TestCase):
    def test_registers_configured_providers_only(self) -> None:
        oauth = build_oauth(make_settings(GITHUB_CLIENT_ID="gh", GITHUB_CLIENT_SECRET="s"))
        github = oauth.create_client("github")
        self.assertIsNotNone(github)
        self.assertEqual(github.authorize_url, GITHUB_AUTHORIZE_URL)
        self.assertEqual(github.client_kwargs["scope"], GITHUB_SCOPE)
        self.assertIsNone(oauth.create_client("google"))

    def test_google_requests_openid_scope(self) -> None:
        google = build_oauth(_settings()).create_client("google")
        self.assertEqual(google.client_kwargs["scope"], GOOGLE_SCOPE)
        self.assertIn("openid", google.client_kwargs["scope"].split())

    def test_get_client_rejects_unknown_and_unconfigured(self) -> None:
        oauth = build_oauth(make_settings())
        with self.assertRaises(OAuthNotConfiguredError):
            get_client(oauth, "myspace")
        with self.assertRaises(OAuthNotConfiguredError):
            get_client(oauth, "github")

    def test_get_client_normalizes_name(self) -> None:
        oauth = build_oauth(_settings())
        self.assertIsNotNone(get_client(oauth, " GitHub "))


@patch("app.services.oauth_providers.utc_timestamp", return_value=NOW)
class TestGitHubProfile(unittest.TestCase):
    token = {"access_token": "gho_1", "token_type": "bearer", "scope": "read:user"}

    def test_maps_profile_and_tokens(self, _now) -> None:
        client = _github_client(
            {
                "user": httpx.Response(
                    200,
                    json={
                        "id": 42,
                        "login": "octo",
                        "name": None,
                        "email": "Octo@Example.com",
                        "avatar_url": "https://avatars.example/42",
                    },
                ),
            }
        )
        assertion = asyncio.run(fetch_oauth_assertion("github", client, self.token, _settings()))
        self.assertEqual(assertion.provider, "github")
        self.assertEqual(assertion.provider_account_id, "42")
        self.assertEqual(assertion.email, "Octo@Example.com")
        self.assertEqual(assertion.name, "octo")
        self.assertEqual(assertion.image, "https://avatars.example/42")
        self.assertEqual(assertion.tokens.access_token, "gho_1")
        self.assertEqual(assertion.tokens.expires_at, NOW + 300)
        # Public email present, so /user/emails is not consulted.
        self.assertEqual(client.get.await_count, 1)

    def test_private_email_falls_back_to_verified_primary(self, _now) -> None:
        client = _github_client(
            {
                "user": httpx.Response(200, json={"id": 7, "login": "quiet", "email": None}),
                "user/emails": httpx.Response(
                    200,
                    json=[
                        {"email": "old@example.com", "primary": False, "verified": True},
                        {"email": "quiet@example.com", "primary": True, "verified": True},
                    ],
                ),
            }
        )
        assertion = asyncio.run(fetch_oauth_assertion("github", client, self.token, _settings()))
        self.assertEqual(assertion.email, "quiet@example.com")

    def test_unverified_primary_gives_no_email(self, _now) -> None:
        client = _github_client(
            {
                "user": httpx.Response(200, json={"id": 7, "login": "quiet"}),
                "user/emails": httpx.Response(
                    200, json=[{"email": "quiet@example.com", "primary": True, "verified": False}]
                ),
            }
        )
        assertion = asyncio.run(fetch_oauth_assertion("github", client, self.token, _settings()))
        self.assertIsNone(assertion.email)

    def test_http_error_status_is_provider_error(self, _now) -> None:
        client = _github_client({"user": httpx.Response(401, json={})})
        with self.assertRaises(OAuthProviderError) as ctx:
            asyncio.run(fetch_oauth_assertion("github", client, self.token, _settings()))
        self.assertEqual(ctx.exception.status_code, 401)

    def test_token_without_access_token_is_error(self, _now) -> None:
        client = _github_client({})
        with self.assertRaises(OAuthProviderError):
            asyncio.run(fetch_oauth_assertion("github", client, {"token_type": "bearer"}, _settings()))


@patch("app.services.oauth_providers.utc_timestamp", return_value=NOW)
class TestGoogleProfile(unittest.TestCase):
    def _token(self, userinfo: dict | None) -> dict:
        token = {
            "access_token": "ya29",
            "refresh_token": "1//r",
            "expires_at": NOW + 3599,
            "token_type": "Bearer",
            "id_token": "eyJ",
        }
        if userinfo is not None:
            token["userinfo"] = userinfo
        return token

    def test_maps_validated_id_token_claims(self, _now) -> None:
        client = MagicMock()
        client.userinfo = AsyncMock()
        token = self._token(
            {
                "sub": "1098",
                "email": "g@example.com",
                "email_verified": True,
                "name": "Gee",
                "picture": "https://lh3.example/p",
            }
        )
        assertion = asyncio.run(fetch_oauth_assertion("google", client, token, _settings()))
        self.assertEqual(assertion.provider_account_id, "1098")
        self.assertEqual(assertion.email, "g@example.com")
        self.assertEqual(assertion.image, "https://lh3.example/p")
        self.assertEqual(assertion.tokens.refresh_token, "1//r")
        self.assertEqual(assertion.tokens.expires_at, NOW + 3599)
        self.assertEqual(assertion.tokens.token_type, "bearer")
        self.assertEqual(assertion.tokens.id_token, "eyJ")
        client.userinfo.assert_not_awaited()

    def test_falls_back_to_userinfo_endpoint(self, _now) -> None:
        client = MagicMock()
        client.userinfo = AsyncMock(return_value={"sub": "5", "email": "u@example.com"})
        assertion = asyncio.run(fetch_oauth_assertion("google", client, self._token(None), _settings()))
        self.assertEqual(assertion.provider_account_id, "5")
        client.userinfo.assert_awaited_once()

    def test_unverified_email_is_dropped(self, _now) -> None:
        token = self._token({"sub": "1", "email": "g@example.com", "email_verified": False})
        assertion = asyncio.run(fetch_oauth_assertion("google", MagicMock(), token, _settings()))
        self.assertIsNone(assertion.email)

    def test_profile_without_sub_is_error(self, _now) -> None:
        token = self._token({"email": "g@example.com"})
        with self.assertRaises(OAuthProviderError):
            asyncio.run(fetch_oauth_assertion("google", MagicMock(), token, _settings()))


class TestStartAuthorization(unittest.TestCase):
    def test_returns_provider_redirect(self) -> None:
        client = MagicMock()
        client.authorize_redirect = AsyncMock(
            return_value=RedirectResponse(f"{GITHUB_AUTHORIZE_URL}?state=s1", status_code=302)
        )
        request = MagicMock()
        response = asyncio.run(
            start_authorization("github", request, _oauth_with(client), "https://app.example/cb")
        )
        self.assertEqual(response.status_code, 302)
        client.authorize_redirect.assert_awaited_once_with(request, "https://app.example/cb")

    def test_metadata_failure_is_provider_error(self) -> None:
        client = MagicMock()
        client.authorize_redirect = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with self.assertRaises(OAuthProviderError) as ctx:
            asyncio.run(start_authorization("google", MagicMock(), _oauth_with(client), "https://x/cb"))
        self.assertIn("google", ctx.exception.message)


class TestCompleteAuthorization(unittest.TestCase):
    def _run(self, client: MagicMock, provider: str = "github"):
        return asyncio.run(complete_authorization(provider, MagicMock(), _oauth_with(client), _settings()))

    def test_mismatching_state_is_provider_error(self) -> None:
        client = MagicMock()
        client.authorize_access_token = AsyncMock(side_effect=MismatchingStateError())
        with self.assertRaises(OAuthProviderError) as ctx:
            self._run(client)
        self.assertIn("mismatching_state", ctx.exception.message)
        client.get.assert_not_called()

    def test_rejected_code_is_provider_error(self) -> None:
        client = MagicMock()
        client.authorize_access_token = AsyncMock(
            side_effect=OAuthError(error="bad_verification_code", description="The code is incorrect")
        )
        with self.assertRaises(OAuthProviderError) as ctx:
            self._run(client)
        self.assertIn("bad_verification_code", ctx.exception.message)

    def test_invalid_id_token_is_provider_error(self) -> None:
        client = MagicMock()
        client.authorize_access_token = AsyncMock(side_effect=JoseError("bad signature"))
        with self.assertRaises(OAuthProviderError) as ctx:
            self._run(client, provider="google")
        self.assertIn("id_token", ctx.exception.message)

    def test_network_failure_is_provider_error(self) -> None:
        client = MagicMock()
        client.authorize_access_token = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with self.assertRaises(OAuthProviderError) as ctx:
            self._run(client)
        self.assertIn("github", ctx.exception.message)

    @patch("app.services.oauth_providers.utc_timestamp", return_value=NOW)
    def test_exchanged_token_is_mapped(self, _now) -> None:
        client = _github_client(
            {"user": httpx.Response(200, json={"id": 9, "login": "nine", "email": "n@example.com"})}
        )
        client.authorize_access_token = AsyncMock(return_value={"access_token": "gho_9"})
        assertion = self._run(client, provider=" GitHub ")
        self.assertEqual(assertion.provider, "github")
        self.assertEqual(assertion.provider_account_id, "9")

    def test_unknown_provider(self) -> None:
        with self.assertRaises(OAuthNotConfiguredError):
            asyncio.run(complete_authorization("myspace", MagicMock(), build_oauth(_settings()), _settings()))


if __name__ == "__main__":
    unittest.main()
