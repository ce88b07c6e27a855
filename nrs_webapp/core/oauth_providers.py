"""OAuth providers: Google over OIDC discovery, GitHub over plain OAuth2.

Every provider offers the same three steps of the federated login:
- ``authorize_url``: where to send the browser, plus the flow state to keep.
- ``exchange_code``: trade the authorization code (+ PKCE verifier) for
  tokens, server to server.
- ``fetch_identity``: who the user is at the provider.

Providers are registered by name in a ProviderRegistry built from settings;
only providers with both a client id and secret configured are available.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import jwt
from starlette.concurrency import run_in_threadpool

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
from nrs_webapp.core.oauth import (
    AuthFlowState,
    AuthorizeUrl,
    OAuthTokens,
    UserIdentity,
    build_authorize_url,
    generate_code_challenge,
    generate_code_verifier,
    generate_nonce,
    generate_state,
    states_match,
)

logger = logging.getLogger(__name__)

# HTTP client timeout for discovery, token exchange and profile calls
OAUTH_HTTP_TIMEOUT = 10.0

_USER_AGENT = "nrs-webapp"

# PyJWKClient keeps fetched keys for this long before refetching
_JWKS_LIFESPAN_SECONDS = 300


class AuthProvider(ABC):
    """One external identity provider."""

    name: str
    issuer: str | None = None

    @abstractmethod
    async def authorize_url(self, redirect_uri: str) -> AuthorizeUrl:
        """Build the provider redirect and the state to remember for the callback."""

    @abstractmethod
    async def exchange_code(
        self, code: str, redirect_uri: str, pkce_verifier: str | None
    ) -> tuple[OAuthTokens, str | None]:
        """Exchange an authorization code.

        Returns:
            Tuple of (tokens, raw ID token if the provider sent one).

        Raises:
            TokenExchangeError: If the provider rejects the exchange.
        """

    @abstractmethod
    async def fetch_identity(
        self, tokens: OAuthTokens, id_token: str | None, nonce: str | None
    ) -> UserIdentity:
        """Resolve the external identity behind the tokens."""


async def exchange_authorization_code(
    http_client: httpx.AsyncClient,
    *,
    provider: str,
    token_endpoint: str,
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    pkce_verifier: str | None,
) -> tuple[OAuthTokens, str | None]:
    """POST an authorization_code grant to a token endpoint.

    Some providers (GitHub) answer errors with 200 and an ``error`` field, so
    the payload is checked as well as the status code.

    Raises:
        TokenExchangeError: On transport errors, non-2xx responses, error
            payloads, or a response without an access token.
    """
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": client_id,
        "client_secret": client_secret,
    }
    if pkce_verifier:
        data["code_verifier"] = pkce_verifier

    try:
        resp = await http_client.post(
            token_endpoint,
            data=data,
            headers={"Accept": "application/json", "User-Agent": _USER_AGENT},
            timeout=OAUTH_HTTP_TIMEOUT,
        )
        resp.raise_for_status()
        payload: dict[str, Any] = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning(
            "OAuth token exchange failed",
            extra={"provider": provider, "error_type": type(exc).__name__},
        )
        raise TokenExchangeError() from exc

    if not isinstance(payload, dict) or "error" in payload:
        logger.warning(
            "OAuth token endpoint returned an error",
            extra={
                "provider": provider,
                "error": payload.get("error") if isinstance(payload, dict) else None,
            },
        )
        raise TokenExchangeError()

    access_token = payload.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        logger.warning("OAuth token response without access_token", extra={"provider": provider})
        raise TokenExchangeError()

    expires_at = None
    expires_in = payload.get("expires_in")
    if isinstance(expires_in, int | float) and not isinstance(expires_in, bool):
        expires_at = datetime.now(UTC) + timedelta(seconds=int(expires_in))

    refresh_token = payload.get("refresh_token")
    id_token = payload.get("id_token")
    return (
        OAuthTokens(
            access_token=access_token,
            refresh_token=refresh_token if isinstance(refresh_token, str) else None,
            expires_at=expires_at,
        ),
        id_token if isinstance(id_token, str) else None,
    )


# ===================================================================
# OIDC discovery
# ===================================================================


@dataclass(frozen=True)
class OidcMetadata:
    """The parts of an OIDC discovery document the login flow uses."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str


class OidcDiscoveryClient:
    """Fetches ``/.well-known/openid-configuration`` with an in-process cache.

    Args:
        http_client: Shared HTTP client.
        cache_ttl_seconds: How long a fetched document is reused.
    """

    def __init__(self, http_client: httpx.AsyncClient, *, cache_ttl_seconds: int) -> None:
        self._http_client = http_client
        self._cache_ttl_seconds = cache_ttl_seconds
        self._cache: dict[str, tuple[float, OidcMetadata]] = {}
        self._lock = asyncio.Lock()

    async def get(self, issuer_url: str) -> OidcMetadata:
        """Return discovery metadata for an issuer.

        Raises:
            OidcDiscoveryError: If the document cannot be fetched or parsed.
            OAuth2InvalidConfigurationError: If required endpoints are missing.
        """
        cached = self._cache.get(issuer_url)
        if cached and cached[0] > time.monotonic():
            return cached[1]

        async with self._lock:
            cached = self._cache.get(issuer_url)
            if cached and cached[0] > time.monotonic():
                return cached[1]
            metadata = await self._fetch(issuer_url)
            self._cache[issuer_url] = (
                time.monotonic() + self._cache_ttl_seconds,
                metadata,
            )
            return metadata

    def clear(self) -> None:
        self._cache.clear()

    async def _fetch(self, issuer_url: str) -> OidcMetadata:
        url = f"{issuer_url.rstrip('/')}/.well-known/openid-configuration"
        try:
            resp = await self._http_client.get(url, timeout=OAUTH_HTTP_TIMEOUT)
            resp.raise_for_status()
            document = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "OIDC discovery failed",
                extra={"issuer": issuer_url, "error_type": type(exc).__name__},
            )
            raise OidcDiscoveryError() from exc

        if not isinstance(document, dict):
            raise OidcDiscoveryError()

        missing = [
            key
            for key in ("issuer", "authorization_endpoint", "token_endpoint", "jwks_uri")
            if not isinstance(document.get(key), str)
        ]
        if missing:
            raise OAuth2InvalidConfigurationError(
                f"discovery document missing {', '.join(missing)}"
            )

        return OidcMetadata(
            issuer=document["issuer"],
            authorization_endpoint=document["authorization_endpoint"],
            token_endpoint=document["token_endpoint"],
            jwks_uri=document["jwks_uri"],
        )


# ===================================================================
# Providers
# ===================================================================


class GoogleProvider(AuthProvider):
    """Google sign-in over OpenID Connect.

    Endpoints come from discovery. The ID token is verified against the
    provider's JWKS (RS256, audience = client id, issuer from discovery)
    and must carry the nonce stored in the flow state.
    """

    name = "google"
    scopes = ("openid", "email", "profile")

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        issuer_url: str,
        discovery: OidcDiscoveryClient,
        http_client: httpx.AsyncClient,
    ) -> None:
        if not client_id or not client_secret:
            raise OAuth2InvalidConfigurationError("google client id/secret missing")
        self._client_id = client_id
        self._client_secret = client_secret
        self.issuer = issuer_url
        self._discovery = discovery
        self._http_client = http_client
        self._jwks_clients: dict[str, jwt.PyJWKClient] = {}

    async def authorize_url(self, redirect_uri: str) -> AuthorizeUrl:
        metadata = await self._discovery.get(self.issuer)
        state = AuthFlowState(
            csrf_state=generate_state(),
            nonce=generate_nonce(),
            pkce_verifier=generate_code_verifier(),
        )
        url = build_authorize_url(
            metadata.authorization_endpoint,
            client_id=self._client_id,
            redirect_uri=redirect_uri,
            scopes=self.scopes,
            state=state.csrf_state,
            code_challenge=generate_code_challenge(state.pkce_verifier),
            nonce=state.nonce,
        )
        return AuthorizeUrl(url=url, state=state)

    async def exchange_code(
        self, code: str, redirect_uri: str, pkce_verifier: str | None
    ) -> tuple[OAuthTokens, str | None]:
        metadata = await self._discovery.get(self.issuer)
        return await exchange_authorization_code(
            self._http_client,
            provider=self.name,
            token_endpoint=metadata.token_endpoint,
            client_id=self._client_id,
            client_secret=self._client_secret,
            code=code,
            redirect_uri=redirect_uri,
            pkce_verifier=pkce_verifier,
        )

    def _jwks_client(self, jwks_uri: str) -> jwt.PyJWKClient:
        client = self._jwks_clients.get(jwks_uri)
        if client is None:
            client = jwt.PyJWKClient(
                jwks_uri,
                cache_jwk_set=True,
                lifespan=_JWKS_LIFESPAN_SECONDS,
            )
            self._jwks_clients[jwks_uri] = client
        return client

    async def fetch_identity(
        self, tokens: OAuthTokens, id_token: str | None, nonce: str | None
    ) -> UserIdentity:
        """Verify the ID token and read the identity from its claims.

        Raises:
            InvalidIdTokenTypeError: No ID token, or it is not a decodable JWT.
            NonceMissingError: The flow state carried no nonce.
            InvalidIdTokenClaimsError: Signature, iss, aud, exp or nonce rejected.
            OidcDiscoveryError: The JWKS could not be fetched.
        """
        if not id_token:
            raise InvalidIdTokenTypeError()
        if not nonce:
            raise NonceMissingError()

        metadata = await self._discovery.get(self.issuer)
        jwks_client = self._jwks_client(metadata.jwks_uri)

        try:
            # PyJWKClient fetches with urllib; keep it off the event loop
            signing_key = await run_in_threadpool(
                jwks_client.get_signing_key_from_jwt, id_token
            )
            claims = jwt.decode(
                id_token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self._client_id,
                issuer=metadata.issuer,
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.PyJWKClientConnectionError as exc:
            logger.warning("Could not fetch OIDC signing keys", extra={"provider": self.name})
            raise OidcDiscoveryError() from exc
        except jwt.InvalidSignatureError as exc:
            logger.warning("ID token signature rejected", extra={"provider": self.name})
            raise InvalidIdTokenClaimsError() from exc
        except jwt.DecodeError as exc:
            logger.warning("Undecodable ID token", extra={"provider": self.name})
            raise InvalidIdTokenTypeError() from exc
        except jwt.PyJWTError as exc:
            logger.warning(
                "ID token rejected",
                extra={"provider": self.name, "error_type": type(exc).__name__},
            )
            raise InvalidIdTokenClaimsError() from exc

        if not states_match(nonce, claims.get("nonce")):
            logger.warning("ID token nonce mismatch", extra={"provider": self.name})
            raise InvalidIdTokenClaimsError()

        email = claims.get("email")
        email_verified = claims.get("email_verified", False)
        if isinstance(email_verified, str):
            email_verified = email_verified.lower() == "true"
        return UserIdentity(
            id=str(claims["sub"]),
            username=claims.get("preferred_username"),
            email=email if isinstance(email, str) else None,
            email_verified=bool(email_verified) and isinstance(email, str),
            profile_picture=claims.get("picture"),
        )


class GitHubProvider(AuthProvider):
    """GitHub sign-in over plain OAuth2 with REST profile calls."""

    name = "github"
    scopes = ("user:email", "read:user")

    authorization_endpoint = "https://github.com/login/oauth/authorize"
    token_endpoint = "https://github.com/login/oauth/access_token"  # nosec B105
    user_url = "https://api.github.com/user"
    emails_url = "https://api.github.com/user/emails"

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        http_client: httpx.AsyncClient,
    ) -> None:
        if not client_id or not client_secret:
            raise OAuth2InvalidConfigurationError("github client id/secret missing")
        self._client_id = client_id
        self._client_secret = client_secret
        self._http_client = http_client

    async def authorize_url(self, redirect_uri: str) -> AuthorizeUrl:
        state = AuthFlowState(
            csrf_state=generate_state(),
            pkce_verifier=generate_code_verifier(),
        )
        url = build_authorize_url(
            self.authorization_endpoint,
            client_id=self._client_id,
            redirect_uri=redirect_uri,
            scopes=self.scopes,
            state=state.csrf_state,
            code_challenge=generate_code_challenge(state.pkce_verifier),
        )
        return AuthorizeUrl(url=url, state=state)

    async def exchange_code(
        self, code: str, redirect_uri: str, pkce_verifier: str | None
    ) -> tuple[OAuthTokens, str | None]:
        return await exchange_authorization_code(
            self._http_client,
            provider=self.name,
            token_endpoint=self.token_endpoint,
            client_id=self._client_id,
            client_secret=self._client_secret,
            code=code,
            redirect_uri=redirect_uri,
            pkce_verifier=pkce_verifier,
        )

    async def _get_json(self, url: str, access_token: str) -> Any:
        try:
            resp = await self._http_client.get(
                url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/vnd.github.v3+json",
                    "User-Agent": _USER_AGENT,
                },
                timeout=OAUTH_HTTP_TIMEOUT,
            )
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "GitHub profile request failed",
                extra={"url": url, "error_type": type(exc).__name__},
            )
            raise IdentityFetchError() from exc

    async def fetch_identity(
        self, tokens: OAuthTokens, id_token: str | None, nonce: str | None
    ) -> UserIdentity:
        """Read the profile and pick the best email.

        Raises:
            IdentityFetchError: If either call fails or the profile has no id.
        """
        profile = await self._get_json(self.user_url, tokens.access_token)
        emails = await self._get_json(self.emails_url, tokens.access_token)

        if not isinstance(profile, dict) or profile.get("id") is None:
            raise IdentityFetchError()

        chosen = select_github_email(emails if isinstance(emails, list) else [])
        return UserIdentity(
            id=str(profile["id"]),
            username=profile.get("login"),
            email=chosen["email"] if chosen else None,
            email_verified=bool(chosen and chosen.get("verified")),
            profile_picture=profile.get("avatar_url"),
        )


def select_github_email(emails: list[Any]) -> dict[str, Any] | None:
    """Pick an email from GitHub's ``/user/emails`` list.

    Verified beats unverified, then primary beats non-primary, then list
    order decides.

    Returns:
        The chosen entry, or None when the list has no usable entry.
    """
    candidates = [
        (not entry.get("verified", False), not entry.get("primary", False), index, entry)
        for index, entry in enumerate(emails)
        if isinstance(entry, dict) and isinstance(entry.get("email"), str)
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda c: c[:3])[3]


# ===================================================================
# Registry
# ===================================================================


class ProviderRegistry:
    """Providers keyed by name."""

    def __init__(self, providers: Iterable[AuthProvider] = ()) -> None:
        self._providers: dict[str, AuthProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: AuthProvider) -> None:
        self._providers[provider.name] = provider

    def get(self, name: str) -> AuthProvider:
        """Look up a provider.

        Raises:
            ProviderNotFoundError: If no provider with that name is configured.
        """
        provider = self._providers.get(name)
        if provider is None:
            raise ProviderNotFoundError(name)
        return provider

    def names(self) -> list[str]:
        return sorted(self._providers)


def build_provider_registry(
    settings: Settings, http_client: httpx.AsyncClient
) -> ProviderRegistry:
    """Register every provider with a complete client id/secret pair.

    A half-configured provider (id without secret or the reverse) is skipped
    with a warning rather than failing startup.
    """
    registry = ProviderRegistry()

    google_secret = settings.google_client_secret.get_secret_value()
    if settings.google_client_id and google_secret:
        registry.register(
            GoogleProvider(
                client_id=settings.google_client_id,
                client_secret=google_secret,
                issuer_url=settings.google_issuer_url,
                discovery=OidcDiscoveryClient(
                    http_client, cache_ttl_seconds=settings.oidc_discovery_cache_secs
                ),
                http_client=http_client,
            )
        )
    elif settings.google_client_id or google_secret:
        logger.warning("Google OAuth partially configured; provider disabled")

    github_secret = settings.github_client_secret.get_secret_value()
    if settings.github_client_id and github_secret:
        registry.register(
            GitHubProvider(
                client_id=settings.github_client_id,
                client_secret=github_secret,
                http_client=http_client,
            )
        )
    elif settings.github_client_id or github_secret:
        logger.warning("GitHub OAuth partially configured; provider disabled")

    return registry
