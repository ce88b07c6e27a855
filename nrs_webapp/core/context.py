"""Authentication context.

AuthContext bundles everything the auth flows need that is derived from
settings once at startup: hashers, codecs, cookie transport, providers,
keyed limiters and the mailer. ``create_app`` builds one and stores it on
``app.state``; routes resolve it with the ``get_auth_context`` dependency.
Tests build their own instances with cheap hashing parameters.
"""

from dataclasses import dataclass

import httpx

from nrs_webapp.core.config import Settings
from nrs_webapp.core.cookies import CookieJar, CookieSigner
from nrs_webapp.core.encryption import SymmetricCipher
from nrs_webapp.core.mail import Mailer, build_mailer
from nrs_webapp.core.oauth_providers import ProviderRegistry, build_provider_registry
from nrs_webapp.core.one_time_token import TokenHasher
from nrs_webapp.core.passwords import PasswordHasher, decode_pepper
from nrs_webapp.core.rate_limiting import KeyedRateLimiter
from nrs_webapp.core.session_token import SessionTokenCodec


@dataclass
class AuthContext:
    """Read-only collaborators of the authentication flows."""

    base_url: str
    password_hasher: PasswordHasher
    token_hasher: TokenHasher
    session_codec: SessionTokenCodec
    cookies: CookieJar
    cipher: SymmetricCipher
    providers: ProviderRegistry
    mailer: Mailer
    confirm_mail_limiter: KeyedRateLimiter
    password_reset_limiter: KeyedRateLimiter
    email_verification_ttl_seconds: int
    password_reset_ttl_seconds: int

    @property
    def oauth_ttl_seconds(self) -> int:
        return self.cookies.oauth_ttl_seconds

    def oauth_redirect_uri(self, provider_name: str) -> str:
        """Callback URL registered with the provider."""
        return f"{self.base_url.rstrip('/')}/auth/oauth/callback/{provider_name}"

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient
    ) -> "AuthContext":
        """Build the context for a running service.

        Args:
            settings: Application settings.
            http_client: Shared client for providers and the mail API.

        Raises:
            ValueError: If the pepper or encryption key is malformed.
        """
        cipher = SymmetricCipher(settings.service_encryption_key.get_secret_value())
        return cls(
            base_url=settings.service_base_url,
            password_hasher=PasswordHasher(
                decode_pepper(settings.service_password_pepper.get_secret_value()),
                time_cost=settings.argon2_time_cost,
                memory_cost=settings.argon2_memory_cost,
                parallelism=settings.argon2_parallelism,
            ),
            token_hasher=TokenHasher(
                settings.service_token_secret.get_secret_value().encode("utf-8")
            ),
            session_codec=SessionTokenCodec(settings.service_session_expiry_secs),
            cookies=CookieJar(
                signer=CookieSigner(settings.service_cookie_key.get_secret_value()),
                cipher=cipher,
                session_ttl_seconds=settings.service_session_expiry_secs,
                oauth_ttl_seconds=settings.service_oauth_expiry_secs,
                secure=settings.cookie_secure,
            ),
            cipher=cipher,
            providers=build_provider_registry(settings, http_client),
            mailer=build_mailer(settings, http_client),
            confirm_mail_limiter=KeyedRateLimiter(
                "confirm_mail",
                settings.rate_limit_confirm_mail,
                enabled=settings.rate_limit_enabled,
            ),
            password_reset_limiter=KeyedRateLimiter(
                "password_reset",
                settings.rate_limit_password_reset,
                enabled=settings.rate_limit_enabled,
            ),
            email_verification_ttl_seconds=settings.service_email_verification_expiry_secs,
            password_reset_ttl_seconds=settings.service_password_reset_expiry_secs,
        )
