"""Symmetric encryption for OAuth tokens at rest and sealed cookies.

Fernet (AES-128-CBC + HMAC-SHA256) from ``cryptography``. Ciphertexts are
url-safe text, so they fit in a Text column or a cookie value unchanged.
"""

import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class SymmetricCipher:
    """Encrypts and decrypts with one Fernet key.

    Args:
        key: Fernet key (url-safe base64 of 32 random bytes).

    Raises:
        ValueError: If the key is not a valid Fernet key.
    """

    def __init__(self, key: str | bytes) -> None:
        self._fernet = Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str, *, ttl: int | None = None) -> str:
        """Decrypt a ciphertext.

        Args:
            ciphertext: Output of ``encrypt``.
            ttl: When set, reject ciphertexts older than this many seconds.

        Raises:
            cryptography.fernet.InvalidToken: Tampered, foreign key, or too old.
        """
        return self._fernet.decrypt(ciphertext.encode("ascii"), ttl=ttl).decode(
            "utf-8"
        )

    def seal_json(self, payload: dict[str, Any]) -> str:
        return self.encrypt(json.dumps(payload, separators=(",", ":")))

    def open_json(self, sealed: str, *, ttl: int | None = None) -> dict[str, Any] | None:
        """Decrypt and parse a sealed JSON object.

        Returns:
            The object, or None when the value is tampered, expired, or not a
            JSON object.
        """
        try:
            data = json.loads(self.decrypt(sealed, ttl=ttl))
        except (InvalidToken, UnicodeError, ValueError):
            logger.warning("Discarding undecryptable sealed value")
            return None
        if not isinstance(data, dict):
            logger.warning("Discarding sealed value that is not an object")
            return None
        return data
