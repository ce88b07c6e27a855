"""Username/password sign-in and registration.

Security:
- Unknown usernames and OAuth-only accounts (no password hash) are verified
  against the hasher's dummy hash, so every failed login costs one Argon2
  verification and takes about the same time.
- Both failure cases raise the same InvalidCredentialsError.
- Argon2 runs in the threadpool; it is CPU and memory bound.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from nrs_webapp.core.context import AuthContext
from nrs_webapp.core.errors import InvalidCredentialsError
from nrs_webapp.core.logging import mask_email, mask_username
from nrs_webapp.core.passwords import PasswordHasher, validate_password_strength
from nrs_webapp.models.user import User
from nrs_webapp.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


def _verify(hasher: PasswordHasher, password: str, password_hash: str | None) -> bool:
    if password_hash is None:
        hasher.verify(password, hasher.dummy_hash)
        return False
    return hasher.verify(password, password_hash)


async def authenticate(
    db: AsyncSession, ctx: AuthContext, *, username: str, password: str
) -> User:
    """Check a username/password pair.

    Does not look at email verification; the caller decides what an
    unverified account may do.

    Args:
        db: Async database session.
        ctx: Authentication context.
        username: Username as typed (matched case-insensitively).
        password: Plain-text password.

    Returns:
        The authenticated user.

    Raises:
        InvalidCredentialsError: Unknown user, no password, or wrong password.
        PasswordHashError: If the stored hash is malformed.
    """
    hasher = ctx.password_hasher
    user = await UserRepository.get_by_username(db, username)
    stored_hash = user.password_hash if user is not None else None

    verified = await run_in_threadpool(_verify, hasher, password, stored_hash)
    if user is None or stored_hash is None or not verified:
        logger.info("Login failed", extra={"username": mask_username(username)})
        raise InvalidCredentialsError()

    if hasher.needs_rehash(stored_hash):
        new_hash = await run_in_threadpool(hasher.hash, password)
        await UserRepository.reset_password(db, user.id, new_hash)
        logger.info("Password hash upgraded", extra={"user_id": str(user.id)})

    return user


async def register_user(
    db: AsyncSession,
    ctx: AuthContext,
    *,
    username: str,
    email: str,
    password: str,
) -> User:
    """Create an unverified account with a password.

    Args:
        db: Async database session.
        ctx: Authentication context.
        username: Validated username.
        email: Validated email address.
        password: Plain-text password.

    Returns:
        The new user.

    Raises:
        ValidationError: If the password fails the strength rules.
        EmailOrUsernameAlreadyExistsError: If the username or email is taken.
    """
    validate_password_strength(password)
    password_hash = await run_in_threadpool(ctx.password_hasher.hash, password)
    user = await UserRepository.create(
        db, username=username, email=email, password_hash=password_hash
    )
    logger.info(
        "User registered",
        extra={"user_id": str(user.id), "email": mask_email(email)},
    )
    return user
