"""OAuth utilities: PKCE, state and nonce, and the flow's carried state.

PKCE code verifier/challenge generation, CSRF state and OIDC nonce
generation, and the small value types that travel between the authorize
redirect, the callback and the OAuth registration form.
"""

import base64
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlencode

# PKCE code verifier length (RFC 7636 allows 43-128)
_VERIFIER_LENGTH = 128

# Characters allowed in PKCE code verifier (RFC 7636 §4.1)
# unreserved = ALPHA / DIGIT / "-" / "." / "_" / "~"
_UNRESERVED_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"


def generate_code_verifier() -> str:
    """Generate a PKCE code verifier.

    RFC 7636 §4.1: 128-character string from unreserved characters.

    Returns:
        Random 128-character code verifier string.
    """
    return "".join(secrets.choice(_UNRESERVED_CHARS) for _ in range(_VERIFIER_LENGTH))


def generate_code_challenge(verifier: str) -> str:
    """Generate a PKCE code challenge from a verifier.

    RFC 7636 §4.2: BASE64URL(SHA256(code_verifier)), no padding.

    Args:
        verifier: PKCE code verifier string.

    Returns:
        Base64url-encoded SHA256 hash without padding.
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_state() -> str:
    """Opaque value for CSRF protection; returned in callback."""
    return secrets.token_urlsafe(32)


def generate_nonce() -> str:
    """Random value bound into the ID token; OIDC only."""
    return secrets.token_urlsafe(32)


def states_match(expected: str | None, received: str | None) -> bool:
    """Constant-time comparison of the stored and returned state.

    A missing value on either side never matches.
    """
    if not expected or not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


def build_authorize_url(
    authorization_endpoint: str,
    *,
    client_id: str,
    redirect_uri: str,
    scopes: tuple[str, ...],
    state: str,
    code_challenge: str,
    nonce: str | None = None,
) -> str:
    """Build a provider authorize URL with the required and optional params."""
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": " ".join(scopes),
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    if nonce:
        params["nonce"] = nonce
    separator = "&" if "?" in authorization_endpoint else "?"
    return f"{authorization_endpoint}{separator}{urlencode(params)}"


# ===================================================================
# Flow state carried between steps
# ===================================================================


@dataclass(frozen=True)
class AuthFlowState:
    """In-progress state between the authorize redirect and the callback.

    Attributes:
        csrf_state: Value the provider must echo back as ``state``.
        nonce: OIDC nonce expected in the ID token (None for plain OAuth2).
        pkce_verifier: PKCE code verifier for the token exchange.
    """

    csrf_state: str
    nonce: str | None = None
    pkce_verifier: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "csrf_state": self.csrf_state,
            "nonce": self.nonce,
            "pkce_verifier": self.pkce_verifier,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthFlowState":
        """Raises KeyError/TypeError on a malformed payload."""
        csrf_state = data["csrf_state"]
        if not isinstance(csrf_state, str):
            raise TypeError("csrf_state must be a string")
        return cls(
            csrf_state=csrf_state,
            nonce=_optional_str(data.get("nonce")),
            pkce_verifier=_optional_str(data.get("pkce_verifier")),
        )


@dataclass(frozen=True)
class AuthorizeUrl:
    """Provider redirect target plus the state to remember for the callback."""

    url: str
    state: AuthFlowState


@dataclass(frozen=True)
class OAuthTokens:
    """Tokens returned by a provider's token endpoint.

    Attributes:
        access_token: Bearer token for provider APIs.
        refresh_token: Refresh token, when the provider issues one.
        expires_at: Absolute access token expiry, when the provider reports one.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": int(self.expires_at.timestamp()) if self.expires_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OAuthTokens":
        access_token = data["access_token"]
        if not isinstance(access_token, str):
            raise TypeError("access_token must be a string")
        expires_at = data.get("expires_at")
        return cls(
            access_token=access_token,
            refresh_token=_optional_str(data.get("refresh_token")),
            expires_at=(
                datetime.fromtimestamp(int(expires_at), tz=UTC)
                if expires_at is not None
                else None
            ),
        )


@dataclass(frozen=True)
class UserIdentity:
    """External identity as reported by a provider.

    Attributes:
        id: Provider-side subject id.
        username: Suggested username, if the provider has one.
        email: Provider email, if any.
        email_verified: Whether the provider asserts the email is verified.
        profile_picture: Avatar URL, if any.
    """

    id: str
    username: str | None = None
    email: str | None = None
    email_verified: bool = False
    profile_picture: str | None = None


@dataclass(frozen=True)
class TempTokens:
    """Pending OAuth registration, carried in an encrypted cookie.

    Holds everything the registration submit needs so the provider exchange
    does not have to run again.
    """

    tokens: OAuthTokens
    subject: str
    provider_name: str
    email: str | None = None
    email_verified: bool = False
    issuer: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokens": self.tokens.to_dict(),
            "email": self.email,
            "email_verified": self.email_verified,
            "subject": self.subject,
            "provider_name": self.provider_name,
            "issuer": self.issuer,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TempTokens":
        """Raises KeyError/TypeError/ValueError on a malformed payload."""
        subject = data["subject"]
        provider_name = data["provider_name"]
        if not isinstance(subject, str) or not isinstance(provider_name, str):
            raise TypeError("subject and provider_name must be strings")
        return cls(
            tokens=OAuthTokens.from_dict(data["tokens"]),
            subject=subject,
            provider_name=provider_name,
            email=_optional_str(data.get("email")),
            email_verified=bool(data.get("email_verified", False)),
            issuer=_optional_str(data.get("issuer")),
        )


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError("expected a string or null")
    return value
