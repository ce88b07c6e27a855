"""Tests for the Google (OIDC) and GitHub (OAuth2) providers.

HTTP calls go through httpx.MockTransport; the JWKS lookup is replaced
with a stub that returns the test RSA public key.
"""

import time
from types import SimpleNamespace
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from nrs_webapp.core.config import Settings
from nrs_webapp.core.errors import (
    IdentityFetchError,
    InvalidIdTokenClaimsError,
    InvalidIdTokenTypeError,
    NonceMissingError,
    OAuth2InvalidConfigurationError,
    OidcDiscoveryError,
    ProviderNotFoundError,
    TokenExchangeError,
)
from nrs_webapp.core.oauth import OAuthTokens, generate_code_challenge
from nrs_webapp.core.oauth_providers import (
    GitHubProvider,
    GoogleProvider,
    OidcDiscoveryClient,
    ProviderRegistry,
    build_provider_registry,
    select_github_email,
)

ISSUER = "https://accounts.test"
CLIENT_ID = "google-client"
CLIENT_SECRET = "google-secret"  # nosec B105
REDIRECT_URI = "http://test/auth/oauth/callback/google"

DISCOVERY_DOCUMENT = {
    "issuer": ISSUER,
    "authorization_endpoint": f"{ISSUER}/o/oauth2/auth",
    "token_endpoint": f"{ISSUER}/token",
    "jwks_uri": f"{ISSUER}/certs",
}


@pytest.fixture(scope="module")
def signing_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _id_token(private_key: rsa.RSAPrivateKey, **overrides: object) -> str:
    now = int(time.time())
    claims = {
        "iss": ISSUER,
        "aud": CLIENT_ID,
        "sub": "google-sub-1",
        "iat": now,
        "exp": now + 300,
        "nonce": "expected-nonce",
        "email": "alice@example.com",
        "email_verified": True,
        "preferred_username": "alice",
        "picture": "https://img.test/alice.png",
    }
    claims.update(overrides)
    claims = {k: v for k, v in claims.items() if v is not None}
    return jwt.encode(claims, private_key, algorithm="RS256")


class _Router:
    """Minimal MockTransport handler keyed by (method, url without query)."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], httpx.Response] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, url: str, response: httpx.Response) -> None:
        self.routes[(method, url)] = response

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = request.url
        key = (request.method, f"{url.scheme}://{url.host}{url.path}")
        return self.routes.get(key, httpx.Response(404))

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def router() -> _Router:
    router = _Router()
    router.add(
        "GET",
        f"{ISSUER}/.well-known/openid-configuration",
        httpx.Response(200, json=DISCOVERY_DOCUMENT),
    )
    return router


def _google(router: _Router, signing_key=None) -> GoogleProvider:
    http_client = router.client()
    provider = GoogleProvider(
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        issuer_url=ISSUER,
        discovery=OidcDiscoveryClient(http_client, cache_ttl_seconds=3600),
        http_client=http_client,
    )
    if signing_key is not None:
        jwks_client = MagicMock()
        jwks_client.get_signing_key_from_jwt.return_value = SimpleNamespace(
            key=signing_key.public_key()
        )
        provider._jwks_client = lambda jwks_uri: jwks_client
    return provider


# =============================================================================
# Discovery
# =============================================================================


class TestOidcDiscovery:
    """Tests for OidcDiscoveryClient."""

    @pytest.mark.asyncio
    async def test_fetches_metadata(self, router):
        discovery = OidcDiscoveryClient(router.client(), cache_ttl_seconds=60)
        metadata = await discovery.get(ISSUER)
        assert metadata.token_endpoint == f"{ISSUER}/token"
        assert metadata.jwks_uri == f"{ISSUER}/certs"

    @pytest.mark.asyncio
    async def test_caches_document(self, router):
        discovery = OidcDiscoveryClient(router.client(), cache_ttl_seconds=60)
        await discovery.get(ISSUER)
        await discovery.get(ISSUER)
        assert len(router.requests) == 1

    @pytest.mark.asyncio
    async def test_clear_forces_refetch(self, router):
        discovery = OidcDiscoveryClient(router.client(), cache_ttl_seconds=60)
        await discovery.get(ISSUER)
        discovery.clear()
        await discovery.get(ISSUER)
        assert len(router.requests) == 2

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        router = _Router()
        discovery = OidcDiscoveryClient(router.client(), cache_ttl_seconds=60)
        with pytest.raises(OidcDiscoveryError):
            await discovery.get(ISSUER)

    @pytest.mark.asyncio
    async def test_missing_endpoint_raises_configuration_error(self):
        router = _Router()
        document = {k: v for k, v in DISCOVERY_DOCUMENT.items() if k != "jwks_uri"}
        router.add(
            "GET",
            f"{ISSUER}/.well-known/openid-configuration",
            httpx.Response(200, json=document),
        )
        discovery = OidcDiscoveryClient(router.client(), cache_ttl_seconds=60)
        with pytest.raises(OAuth2InvalidConfigurationError):
            await discovery.get(ISSUER)


# =============================================================================
# Google
# =============================================================================


class TestGoogleAuthorize:
    """Tests for GoogleProvider.authorize_url()."""

    def test_requires_client_credentials(self, router):
        with pytest.raises(OAuth2InvalidConfigurationError):
            GoogleProvider(
                client_id="",
                client_secret=CLIENT_SECRET,
                issuer_url=ISSUER,
                discovery=OidcDiscoveryClient(router.client(), cache_ttl_seconds=60),
                http_client=router.client(),
            )

    @pytest.mark.asyncio
    async def test_url_carries_state_nonce_and_pkce(self, router):
        authorize = await _google(router).authorize_url(REDIRECT_URI)
        parsed = urlparse(authorize.url)
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}

        assert authorize.url.startswith(f"{ISSUER}/o/oauth2/auth?")
        assert params["client_id"] == CLIENT_ID
        assert params["redirect_uri"] == REDIRECT_URI
        assert params["scope"] == "openid email profile"
        assert params["state"] == authorize.state.csrf_state
        assert params["nonce"] == authorize.state.nonce
        assert params["code_challenge"] == generate_code_challenge(
            authorize.state.pkce_verifier
        )


class TestGoogleExchange:
    """Tests for the token exchange."""

    @pytest.mark.asyncio
    async def test_posts_code_and_verifier(self, router):
        router.add(
            "POST",
            f"{ISSUER}/token",
            httpx.Response(
                200,
                json={
                    "access_token": "ya29.token",
                    "refresh_token": "1//refresh",
                    "expires_in": 3600,
                    "id_token": "header.payload.sig",
                    "token_type": "Bearer",
                },
            ),
        )
        tokens, id_token = await _google(router).exchange_code(
            "auth-code", REDIRECT_URI, "verifier-value"
        )

        assert tokens.access_token == "ya29.token"
        assert tokens.refresh_token == "1//refresh"
        assert tokens.expires_at is not None
        assert id_token == "header.payload.sig"

        token_request = router.requests[-1]
        form = {k: v[0] for k, v in parse_qs(token_request.content.decode()).items()}
        assert form == {
            "grant_type": "authorization_code",
            "code": "auth-code",
            "redirect_uri": REDIRECT_URI,
            "client_id": CLIENT_ID,
            "client_secret": CLIENT_SECRET,
            "code_verifier": "verifier-value",
        }
        assert token_request.headers["Accept"] == "application/json"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(400, json={"error": "invalid_grant"}),
            httpx.Response(200, json={"error": "bad_verification_code"}),
            httpx.Response(200, json={"token_type": "Bearer"}),
            httpx.Response(200, content=b"not json"),
        ],
    )
    async def test_rejected_exchange_raises(self, router, response):
        router.add("POST", f"{ISSUER}/token", response)
        with pytest.raises(TokenExchangeError):
            await _google(router).exchange_code("code", REDIRECT_URI, "v")


class TestGoogleIdentity:
    """Tests for ID token verification."""

    @pytest.mark.asyncio
    async def test_valid_token(self, router, signing_key):
        identity = await _google(router, signing_key).fetch_identity(
            OAuthTokens(access_token="at"), _id_token(signing_key), "expected-nonce"
        )
        assert identity.id == "google-sub-1"
        assert identity.username == "alice"
        assert identity.email == "alice@example.com"
        assert identity.email_verified is True
        assert identity.profile_picture == "https://img.test/alice.png"

    @pytest.mark.asyncio
    async def test_string_email_verified(self, router, signing_key):
        identity = await _google(router, signing_key).fetch_identity(
            OAuthTokens(access_token="at"),
            _id_token(signing_key, email_verified="true"),
            "expected-nonce",
        )
        assert identity.email_verified is True

    @pytest.mark.asyncio
    async def test_verified_flag_without_email_is_false(self, router, signing_key):
        identity = await _google(router, signing_key).fetch_identity(
            OAuthTokens(access_token="at"),
            _id_token(signing_key, email=None),
            "expected-nonce",
        )
        assert identity.email is None
        assert identity.email_verified is False

    @pytest.mark.asyncio
    async def test_missing_id_token(self, router, signing_key):
        with pytest.raises(InvalidIdTokenTypeError):
            await _google(router, signing_key).fetch_identity(
                OAuthTokens(access_token="at"), None, "expected-nonce"
            )

    @pytest.mark.asyncio
    async def test_missing_nonce(self, router, signing_key):
        with pytest.raises(NonceMissingError):
            await _google(router, signing_key).fetch_identity(
                OAuthTokens(access_token="at"), _id_token(signing_key), None
            )

    @pytest.mark.asyncio
    async def test_undecodable_token(self, router, signing_key):
        with pytest.raises(InvalidIdTokenTypeError):
            await _google(router, signing_key).fetch_identity(
                OAuthTokens(access_token="at"), "garbage", "expected-nonce"
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"nonce": "other-nonce"},
            {"nonce": None},
            {"aud": "someone-else"},
            {"iss": "https://evil.test"},
            {"exp": int(time.time()) - 3600, "iat": int(time.time()) - 7200},
        ],
    )
    async def test_rejected_claims(self, router, signing_key, overrides):
        with pytest.raises(InvalidIdTokenClaimsError):
            await _google(router, signing_key).fetch_identity(
                OAuthTokens(access_token="at"),
                _id_token(signing_key, **overrides),
                "expected-nonce",
            )

    @pytest.mark.asyncio
    async def test_token_signed_by_other_key(self, router, signing_key):
        other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        with pytest.raises(InvalidIdTokenClaimsError):
            await _google(router, signing_key).fetch_identity(
                OAuthTokens(access_token="at"),
                _id_token(other_key),
                "expected-nonce",
            )

    @pytest.mark.asyncio
    async def test_jwks_unreachable(self, router, signing_key):
        provider = _google(router)
        jwks_client = MagicMock()
        jwks_client.get_signing_key_from_jwt.side_effect = (
            jwt.PyJWKClientConnectionError("down")
        )
        provider._jwks_client = lambda jwks_uri: jwks_client
        with pytest.raises(OidcDiscoveryError):
            await provider.fetch_identity(
                OAuthTokens(access_token="at"), _id_token(signing_key), "expected-nonce"
            )


# =============================================================================
# GitHub
# =============================================================================


def _github(router: _Router) -> GitHubProvider:
    return GitHubProvider(
        client_id="gh-client", client_secret="gh-secret", http_client=router.client()
    )


class TestGitHubProvider:
    """Tests for GitHubProvider."""

    @pytest.mark.asyncio
    async def test_authorize_url_has_no_nonce(self):
        authorize = await _github(_Router()).authorize_url(
            "http://test/auth/oauth/callback/github"
        )
        params = parse_qs(urlparse(authorize.url).query)
        assert authorize.url.startswith("https://github.com/login/oauth/authorize?")
        assert "nonce" not in params
        assert authorize.state.nonce is None
        assert params["scope"] == ["user:email read:user"]
        assert params["code_challenge_method"] == ["S256"]

    @pytest.mark.asyncio
    async def test_error_with_200_status_raises(self):
        router = _Router()
        router.add(
            "POST",
            GitHubProvider.token_endpoint,
            httpx.Response(200, json={"error": "bad_verification_code"}),
        )
        with pytest.raises(TokenExchangeError):
            await _github(router).exchange_code("code", "uri", "verifier")

    @pytest.mark.asyncio
    async def test_fetch_identity(self):
        router = _Router()
        router.add(
            "GET",
            GitHubProvider.user_url,
            httpx.Response(
                200,
                json={"id": 583231, "login": "octocat", "avatar_url": "https://a.test/o"},
            ),
        )
        router.add(
            "GET",
            GitHubProvider.emails_url,
            httpx.Response(
                200,
                json=[
                    {"email": "old@example.com", "verified": False, "primary": True},
                    {"email": "octo@example.com", "verified": True, "primary": False},
                ],
            ),
        )
        identity = await _github(router).fetch_identity(
            OAuthTokens(access_token="gho_token"), None, None
        )

        assert identity.id == "583231"
        assert identity.username == "octocat"
        assert identity.email == "octo@example.com"
        assert identity.email_verified is True
        assert identity.profile_picture == "https://a.test/o"
        for request in router.requests:
            assert request.headers["Authorization"] == "Bearer gho_token"
            assert request.headers["Accept"] == "application/vnd.github.v3+json"

    @pytest.mark.asyncio
    async def test_profile_without_id_raises(self):
        router = _Router()
        router.add("GET", GitHubProvider.user_url, httpx.Response(200, json={"login": "x"}))
        router.add("GET", GitHubProvider.emails_url, httpx.Response(200, json=[]))
        with pytest.raises(IdentityFetchError):
            await _github(router).fetch_identity(OAuthTokens(access_token="t"), None, None)

    @pytest.mark.asyncio
    async def test_unauthorized_profile_raises(self):
        router = _Router()
        router.add("GET", GitHubProvider.user_url, httpx.Response(401))
        with pytest.raises(IdentityFetchError):
            await _github(router).fetch_identity(OAuthTokens(access_token="t"), None, None)


class TestSelectGithubEmail:
    """Tests for select_github_email()."""

    def test_verified_primary_wins(self):
        emails = [
            {"email": "a@x.test", "verified": True, "primary": False},
            {"email": "b@x.test", "verified": True, "primary": True},
        ]
        assert select_github_email(emails)["email"] == "b@x.test"

    def test_verified_beats_primary(self):
        emails = [
            {"email": "a@x.test", "verified": False, "primary": True},
            {"email": "b@x.test", "verified": True, "primary": False},
        ]
        assert select_github_email(emails)["email"] == "b@x.test"

    def test_list_order_breaks_ties(self):
        emails = [
            {"email": "a@x.test", "verified": False, "primary": False},
            {"email": "b@x.test", "verified": False, "primary": False},
        ]
        assert select_github_email(emails)["email"] == "a@x.test"

    def test_no_usable_entries(self):
        assert select_github_email([]) is None
        assert select_github_email([{"verified": True}, "junk"]) is None


# =============================================================================
# Registry
# =============================================================================


class TestProviderRegistry:
    """Tests for ProviderRegistry and build_provider_registry()."""

    def test_unknown_provider_raises(self):
        with pytest.raises(ProviderNotFoundError) as exc_info:
            ProviderRegistry().get("myspace")
        assert exc_info.value.status_code == 404

    def test_names_are_sorted(self, router):
        registry = ProviderRegistry([_github(router), _google(router)])
        assert registry.names() == ["github", "google"]

    def test_only_fully_configured_providers_registered(self):
        settings = Settings(
            google_client_id="gid",
            google_client_secret="gsecret",
            github_client_id="ghid",
            github_client_secret="",
        )
        registry = build_provider_registry(settings, httpx.AsyncClient())
        assert registry.names() == ["google"]
        assert isinstance(registry.get("google"), GoogleProvider)

    def test_no_providers_configured(self):
        settings = Settings(
            google_client_id="",
            google_client_secret="",
            github_client_id="",
            github_client_secret="",
        )
        assert build_provider_registry(settings, httpx.AsyncClient()).names() == []
