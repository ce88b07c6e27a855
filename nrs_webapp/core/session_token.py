"""Session token codec.

A session token is ``{"sub": <user uuid>, "expires_at": <unix seconds>}``
serialized as JSON and encoded as unpadded base64url. It is not persisted
and carries no MAC of its own: the cookie layer signs it
(see ``core.cookies.CookieSigner``), so this module only handles shape and
expiry.

Security: There is no revocation list. A session stays valid until it
expires; logging off deletes the cookie in the browser and nothing else.
"""

import base64
import binascii
import json
import time
import uuid
from dataclasses import dataclass

from nrs_webapp.core.errors import InvalidTokenFormatError, TokenExpiredError


@dataclass(frozen=True)
class SessionToken:
    """Decoded session token.

    Attributes:
        sub: User id.
        expires_at: Unix timestamp (seconds) after which the token is rejected.
    """

    sub: uuid.UUID
    expires_at: int

    def is_expired(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current > self.expires_at


class SessionTokenCodec:
    """Issues, encodes and validates session tokens.

    Args:
        ttl_seconds: Lifetime of newly issued tokens.
    """

    def __init__(self, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("Session TTL must be positive")
        self.ttl_seconds = ttl_seconds

    def issue(self, user_id: uuid.UUID, *, now: float | None = None) -> SessionToken:
        current = time.time() if now is None else now
        return SessionToken(sub=user_id, expires_at=int(current) + self.ttl_seconds)

    @staticmethod
    def encode(token: SessionToken) -> str:
        payload = json.dumps(
            {"sub": str(token.sub), "expires_at": token.expires_at},
            separators=(",", ":"),
        )
        return base64.urlsafe_b64encode(payload.encode("utf-8")).rstrip(b"=").decode(
            "ascii"
        )

    @staticmethod
    def decode(text: str) -> SessionToken:
        """Decode a token without checking expiry.

        Raises:
            InvalidTokenFormatError: Bad base64, bad JSON, or missing/invalid fields.
        """
        padded = text + "=" * (-len(text) % 4)
        try:
            raw = base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
            data = json.loads(raw)
            sub = uuid.UUID(data["sub"])
            expires_at = data["expires_at"]
        except (
            binascii.Error,
            UnicodeError,
            ValueError,
            KeyError,
            TypeError,
            AttributeError,
        ) as exc:
            raise InvalidTokenFormatError() from exc
        if not isinstance(expires_at, int) or isinstance(expires_at, bool):
            raise InvalidTokenFormatError()
        return SessionToken(sub=sub, expires_at=expires_at)

    def validate(self, text: str, *, now: float | None = None) -> uuid.UUID:
        """Decode a token and check it has not expired.

        Args:
            text: Encoded token from the session cookie.
            now: Override for the current time (seconds).

        Returns:
            The user id carried by the token.

        Raises:
            InvalidTokenFormatError: If the token cannot be decoded.
            TokenExpiredError: If now is past expires_at.
        """
        token = self.decode(text)
        if token.is_expired(now):
            raise TokenExpiredError()
        return token.sub
