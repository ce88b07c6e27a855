"""Cookie transport for the session, OAuth flow state and pending registration.

- ``nrs_auth_token`` (path ``/``): signed session token.
- ``nrs_auth_flow_state`` (path ``/auth/oauth``): signed AuthFlowState.
- ``nrs_temp_tokens`` (path ``/auth/oauth``): encrypted TempTokens.

Signed values are HS256 JWTs (PyJWT) with an ``exp`` claim, encrypted values
are Fernet tokens checked against a TTL. A cookie that fails verification or
decoding is logged and treated as absent.

Security: All cookies are httpOnly and SameSite=Lax. The Secure flag is on
unless the service runs in debug mode. Delete calls repeat the attributes
used when setting, otherwise browsers keep the cookie.
"""

import logging
import time
from typing import Any

import jwt
from fastapi import Request, Response

from nrs_webapp.core.encryption import SymmetricCipher
from nrs_webapp.core.oauth import AuthFlowState, TempTokens

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "nrs_auth_token"
AUTH_FLOW_STATE_COOKIE_NAME = "nrs_auth_flow_state"
TEMP_TOKENS_COOKIE_NAME = "nrs_temp_tokens"

OAUTH_COOKIE_PATH = "/auth/oauth"

_ALGORITHM = "HS256"
_SAMESITE = "lax"


class CookieSigner:
    """Signs and verifies small JSON payloads for cookies.

    Args:
        secret: HMAC signing secret (SERVICE_COOKIE_KEY).

    Each value is signed with the cookie name as its audience, so a value
    cannot be moved from one cookie to another.
    """

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("Cookie signing secret must not be empty")
        self._secret = secret

    def sign(self, payload: dict[str, Any], *, audience: str, ttl_seconds: int) -> str:
        claims = {
            **payload,
            "aud": audience,
            "exp": int(time.time()) + ttl_seconds,
        }
        return jwt.encode(claims, self._secret, algorithm=_ALGORITHM)

    def unsign(self, value: str, *, audience: str) -> dict[str, Any] | None:
        """Verify signature, audience and expiry.

        Returns:
            The payload without the registered claims, or None if invalid.
        """
        try:
            claims = jwt.decode(
                value,
                self._secret,
                algorithms=[_ALGORITHM],
                audience=audience,
                options={"require": ["exp", "aud"]},
            )
        except jwt.InvalidTokenError:
            logger.warning(
                "Discarding cookie with invalid signature",
                extra={"cookie": audience},
            )
            return None
        claims.pop("aud", None)
        claims.pop("exp", None)
        return claims


class CookieJar:
    """Reads and writes the authentication cookies.

    Args:
        signer: Signs session and flow-state cookies.
        cipher: Encrypts the pending-registration cookie.
        session_ttl_seconds: Max-age of the session cookie.
        oauth_ttl_seconds: Max-age of the flow-state and temp-tokens cookies.
        secure: Whether to set the Secure flag.
    """

    def __init__(
        self,
        *,
        signer: CookieSigner,
        cipher: SymmetricCipher,
        session_ttl_seconds: int,
        oauth_ttl_seconds: int,
        secure: bool,
    ) -> None:
        self.signer = signer
        self.cipher = cipher
        self.session_ttl_seconds = session_ttl_seconds
        self.oauth_ttl_seconds = oauth_ttl_seconds
        self.secure = secure

    def _set(
        self, response: Response, key: str, value: str, *, path: str, max_age: int
    ) -> None:
        response.set_cookie(
            key=key,
            value=value,
            httponly=True,
            secure=self.secure,
            samesite=_SAMESITE,
            path=path,
            max_age=max_age,
        )

    def _delete(self, response: Response, key: str, *, path: str) -> None:
        response.delete_cookie(
            key=key,
            path=path,
            httponly=True,
            secure=self.secure,
            samesite=_SAMESITE,
        )

    # -----------------------------------------------------------------
    # Session
    # -----------------------------------------------------------------

    def set_session(self, response: Response, encoded_token: str) -> None:
        value = self.signer.sign(
            {"session": encoded_token},
            audience=SESSION_COOKIE_NAME,
            ttl_seconds=self.session_ttl_seconds,
        )
        self._set(
            response,
            SESSION_COOKIE_NAME,
            value,
            path="/",
            max_age=self.session_ttl_seconds,
        )

    def get_session(self, request: Request) -> str | None:
        """Return the encoded session token from a validly signed cookie."""
        raw = request.cookies.get(SESSION_COOKIE_NAME)
        if not raw:
            return None
        payload = self.signer.unsign(raw, audience=SESSION_COOKIE_NAME)
        if payload is None:
            return None
        session = payload.get("session")
        return session if isinstance(session, str) else None

    def delete_session(self, response: Response) -> None:
        self._delete(response, SESSION_COOKIE_NAME, path="/")

    # -----------------------------------------------------------------
    # OAuth flow state
    # -----------------------------------------------------------------

    def set_auth_flow_state(self, response: Response, state: AuthFlowState) -> None:
        value = self.signer.sign(
            state.to_dict(),
            audience=AUTH_FLOW_STATE_COOKIE_NAME,
            ttl_seconds=self.oauth_ttl_seconds,
        )
        self._set(
            response,
            AUTH_FLOW_STATE_COOKIE_NAME,
            value,
            path=OAUTH_COOKIE_PATH,
            max_age=self.oauth_ttl_seconds,
        )

    def get_auth_flow_state(self, request: Request) -> AuthFlowState | None:
        raw = request.cookies.get(AUTH_FLOW_STATE_COOKIE_NAME)
        if not raw:
            return None
        payload = self.signer.unsign(raw, audience=AUTH_FLOW_STATE_COOKIE_NAME)
        if payload is None:
            return None
        try:
            return AuthFlowState.from_dict(payload)
        except (KeyError, TypeError):
            logger.warning("Discarding malformed auth flow state cookie")
            return None

    def delete_auth_flow_state(self, response: Response) -> None:
        self._delete(response, AUTH_FLOW_STATE_COOKIE_NAME, path=OAUTH_COOKIE_PATH)

    # -----------------------------------------------------------------
    # Pending OAuth registration
    # -----------------------------------------------------------------

    def set_temp_tokens(self, response: Response, temp_tokens: TempTokens) -> None:
        self._set(
            response,
            TEMP_TOKENS_COOKIE_NAME,
            self.cipher.seal_json(temp_tokens.to_dict()),
            path=OAUTH_COOKIE_PATH,
            max_age=self.oauth_ttl_seconds,
        )

    def get_temp_tokens(self, request: Request) -> TempTokens | None:
        raw = request.cookies.get(TEMP_TOKENS_COOKIE_NAME)
        if not raw:
            return None
        payload = self.cipher.open_json(raw, ttl=self.oauth_ttl_seconds)
        if payload is None:
            return None
        try:
            return TempTokens.from_dict(payload)
        except (KeyError, TypeError, ValueError, OverflowError):
            logger.warning("Discarding malformed temp tokens cookie")
            return None

    def delete_temp_tokens(self, response: Response) -> None:
        self._delete(response, TEMP_TOKENS_COOKIE_NAME, path=OAUTH_COOKIE_PATH)
