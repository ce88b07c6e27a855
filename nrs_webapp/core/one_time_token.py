"""One-time token primitives for email verification and password reset.

A token is 32 random bytes. Users see it as unpadded base64url in a link;
the database only ever holds its HMAC-SHA256 under the service token secret,
so a leaked table cannot be replayed as links.
"""

import base64
import binascii
import hashlib
import hmac
import secrets
from dataclasses import dataclass

from nrs_webapp.core.errors import InvalidTokenFormatError

TOKEN_LENGTH = 32


@dataclass(frozen=True)
class OneTimeToken:
    """Raw one-time token bytes."""

    value: bytes

    @classmethod
    def generate(cls) -> "OneTimeToken":
        return cls(secrets.token_bytes(TOKEN_LENGTH))

    @classmethod
    def parse(cls, text: str) -> "OneTimeToken":
        """Decode the link form of a token.

        Args:
            text: Unpadded base64url text from a query string or form.

        Returns:
            Parsed token.

        Raises:
            InvalidTokenFormatError: Not base64url, or not 32 bytes once decoded.
        """
        padded = text + "=" * (-len(text) % 4)
        try:
            raw = base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
        except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
            raise InvalidTokenFormatError() from exc
        if len(raw) != TOKEN_LENGTH:
            raise InvalidTokenFormatError()
        return cls(raw)

    def __str__(self) -> str:
        return base64.urlsafe_b64encode(self.value).rstrip(b"=").decode("ascii")


class TokenHasher:
    """Keyed hash for storing one-time tokens.

    Args:
        secret: Service token secret.
    """

    def __init__(self, secret: bytes) -> None:
        if not secret:
            raise ValueError("Token secret must not be empty")
        self._secret = secret

    def hash(self, token: OneTimeToken) -> str:
        """Return the standard-base64 HMAC-SHA256 of the token bytes."""
        digest = hmac.new(self._secret, token.value, hashlib.sha256).digest()
        return base64.b64encode(digest).decode("ascii")


def generate_token(hasher: TokenHasher) -> tuple[str, str]:
    """Create a new token.

    Args:
        hasher: Token hasher keyed with the service secret.

    Returns:
        Tuple of (plaintext for the email link, hash for the database).
    """
    token = OneTimeToken.generate()
    return str(token), hasher.hash(token)
