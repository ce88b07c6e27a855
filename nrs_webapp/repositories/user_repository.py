"""Repository for User operations.

Provides database access for the app_user table. Username and email
lookups are case-insensitive to match the functional unique indexes.
"""

import uuid

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from nrs_webapp.core.errors import EmailOrUsernameAlreadyExistsError
from nrs_webapp.models.user import User


class UserRepository:
    """Stateless repository for User table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: uuid.UUID) -> User | None:
        """Fetch a user by primary key.

        Args:
            db: Async database session.
            user_id: UUID primary key.

        Returns:
            User if found, None otherwise.
        """
        return await db.get(User, user_id)

    @staticmethod
    async def get_by_username(db: AsyncSession, username: str) -> User | None:
        """Fetch a user by username (case-insensitive).

        Args:
            db: Async database session.
            username: Username to look up.

        Returns:
            User if found, None otherwise.
        """
        stmt = select(User).where(func.lower(User.username) == username.lower())
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> User | None:
        """Fetch a user by email address (case-insensitive).

        Args:
            db: Async database session.
            email: Email address to look up.

        Returns:
            User if found, None otherwise.
        """
        stmt = select(User).where(func.lower(User.email) == email.lower())
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        username: str,
        email: str,
        password_hash: str | None,
    ) -> User:
        """Create a new, unverified user.

        Runs inside a savepoint so a duplicate does not poison the caller's
        transaction.

        Args:
            db: Async database session.
            username: Username as entered.
            email: Email address as entered.
            password_hash: Argon2id hash (None for OAuth-only users).

        Returns:
            Created User with database-generated fields populated.

        Raises:
            EmailOrUsernameAlreadyExistsError: If the username or email is taken.
        """
        user = User(username=username, email=email, password_hash=password_hash)
        try:
            async with db.begin_nested():
                db.add(user)
                await db.flush()
        except IntegrityError as exc:
            raise EmailOrUsernameAlreadyExistsError() from exc
        await db.refresh(user)
        return user

    @staticmethod
    async def mark_email_verified(db: AsyncSession, user_id: uuid.UUID) -> bool:
        """Set email_verified_at to now, keeping an earlier verification time.

        Args:
            db: Async database session.
            user_id: UUID of the user.

        Returns:
            True if the user exists, False otherwise.
        """
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(
                email_verified_at=func.coalesce(User.email_verified_at, func.now()),
                updated_at=func.now(),
            )
            .returning(User.id)
            .execution_options(synchronize_session="fetch")
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def reset_password(
        db: AsyncSession, user_id: uuid.UUID, password_hash: str
    ) -> bool:
        """Replace a user's password hash.

        Args:
            db: Async database session.
            user_id: UUID of the user.
            password_hash: New Argon2id hash.

        Returns:
            True if the user exists, False otherwise.
        """
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(password_hash=password_hash, updated_at=func.now())
            .returning(User.id)
            .execution_options(synchronize_session="fetch")
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None
