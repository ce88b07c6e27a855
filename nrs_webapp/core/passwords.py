"""Password hashing with Argon2id and a server-wide pepper.

Security:
- Argon2id (memory-hard) with a random salt per hash.
- The pepper is a server secret from configuration, never stored with the
  hash. The password is keyed with it (HMAC-SHA256) before Argon2 runs, so a
  leaked database alone is not enough to run an offline attack.
- ``dummy_hash`` lets the login path run a full verification even when the
  user does not exist, so response time does not reveal valid usernames.
"""

import base64
import hashlib
import hmac
import re
from functools import cached_property

from argon2 import PasswordHasher as Argon2Hasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from nrs_webapp.core.errors import PasswordHashError, ValidationError

# Verified against when no user matches, never stored anywhere.
_DUMMY_PASSWORD = "tententengokujigokugoku"  # nosec B105

_PASSWORD_MIN_LENGTH = 8
_PASSWORD_MAX_LENGTH = 50


def decode_pepper(value: str) -> bytes:
    """Decode a base64url pepper, padding optional.

    Raises:
        ValueError: If the value is not valid base64url or is empty.
    """
    padded = value + "=" * (-len(value) % 4)
    try:
        pepper = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (ValueError, UnicodeEncodeError) as exc:
        raise ValueError("Password pepper must be base64url encoded") from exc
    if not pepper:
        raise ValueError("Password pepper must not be empty")
    return pepper


class PasswordHasher:
    """Peppered Argon2id hasher.

    Args:
        pepper: Server-wide secret bytes.
        time_cost: Argon2 iterations.
        memory_cost: Argon2 memory in KiB.
        parallelism: Argon2 lanes.
    """

    def __init__(
        self,
        pepper: bytes,
        *,
        time_cost: int = 3,
        memory_cost: int = 64 * 1024,
        parallelism: int = 4,
    ) -> None:
        self._pepper = pepper
        self._hasher = Argon2Hasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
        )

    def _keyed(self, password: str) -> str:
        digest = hmac.new(self._pepper, password.encode("utf-8"), hashlib.sha256)
        return base64.b64encode(digest.digest()).decode("ascii")

    def hash(self, password: str) -> str:
        """Hash a password.

        Args:
            password: Plain-text password.

        Returns:
            Encoded Argon2id hash (``$argon2id$...``).
        """
        return self._hasher.hash(self._keyed(password))

    def verify(self, password: str, password_hash: str) -> bool:
        """Check a password against a stored hash.

        Args:
            password: Plain-text password.
            password_hash: Stored encoded hash.

        Returns:
            True if the password matches, False otherwise.

        Raises:
            PasswordHashError: If the stored hash is malformed.
        """
        try:
            return self._hasher.verify(password_hash, self._keyed(password))
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError) as exc:
            raise PasswordHashError() from exc

    def needs_rehash(self, password_hash: str) -> bool:
        """True when the hash was made with weaker parameters than the current ones."""
        return self._hasher.check_needs_rehash(password_hash)

    @cached_property
    def dummy_hash(self) -> str:
        """Hash of a fixed string, computed once per hasher."""
        return self.hash(_DUMMY_PASSWORD)


def validate_password_strength(password: str) -> None:
    """Validate password meets strength requirements.

    8-50 chars with at least one lowercase letter, one uppercase letter and
    one digit.

    Args:
        password: Plain-text password to validate.

    Raises:
        ValidationError: If password doesn't meet requirements.
    """
    if len(password) < _PASSWORD_MIN_LENGTH:
        raise ValidationError(
            f"Password must be at least {_PASSWORD_MIN_LENGTH} characters"
        )
    if len(password) > _PASSWORD_MAX_LENGTH:
        raise ValidationError(
            f"Password must be at most {_PASSWORD_MAX_LENGTH} characters"
        )
    if not re.search(r"[a-z]", password):
        raise ValidationError("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        raise ValidationError("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        raise ValidationError("Password must contain at least one digit")
