"""Repository for OAuth link operations.

Links tie a local user to an external (provider, subject) identity. Token
columns hold ciphertext only; encryption happens before these methods are
called. Revocation is a soft delete.
"""

import uuid
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from nrs_webapp.core.errors import NotFoundError
from nrs_webapp.models.oauth_link import OAuthLink


class OAuthLinkRepository:
    """Stateless repository for OAuthLink table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        provider: str,
        provider_user_id: str,
        access_token: str,
        refresh_token: str | None,
        access_token_expires_at: datetime | None,
        issuer: str | None = None,
    ) -> OAuthLink:
        """Create a link for a user.

        Args:
            db: Async database session.
            user_id: Local user id.
            provider: Provider name.
            provider_user_id: Provider subject id.
            access_token: Encrypted access token.
            refresh_token: Encrypted refresh token, if any.
            access_token_expires_at: Access token expiry, if known.
            issuer: OIDC issuer, if any.

        Returns:
            Created OAuthLink with database-generated fields populated.

        Raises:
            sqlalchemy.exc.IntegrityError: If an active link already exists for
                (user, provider) or (provider, subject).
        """
        link = OAuthLink(
            user_id=user_id,
            provider=provider,
            provider_user_id=provider_user_id,
            issuer=issuer,
            access_token=access_token,
            refresh_token=refresh_token,
            access_token_expires_at=access_token_expires_at,
        )
        db.add(link)
        await db.flush()
        await db.refresh(link)
        return link

    @staticmethod
    async def update_tokens_if_active(
        db: AsyncSession,
        *,
        provider: str,
        provider_user_id: str,
        access_token: str,
        refresh_token: str | None,
        access_token_expires_at: datetime | None,
    ) -> uuid.UUID | None:
        """Refresh stored tokens on the active link for an external identity.

        A single conditional UPDATE, so lookup and refresh cannot race with
        a concurrent revoke.

        Args:
            db: Async database session.
            provider: Provider name.
            provider_user_id: Provider subject id.
            access_token: Encrypted access token.
            refresh_token: Encrypted refresh token, if any.
            access_token_expires_at: Access token expiry, if known.

        Returns:
            The linked user id, or None if no active link exists.
        """
        stmt = (
            update(OAuthLink)
            .where(
                OAuthLink.provider == provider,
                OAuthLink.provider_user_id == provider_user_id,
                OAuthLink.revoked_at.is_(None),
            )
            .values(
                access_token=access_token,
                refresh_token=refresh_token,
                access_token_expires_at=access_token_expires_at,
                updated_at=func.now(),
            )
            .returning(OAuthLink.user_id)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_active_for_user(
        db: AsyncSession, user_id: uuid.UUID
    ) -> list[OAuthLink]:
        """List a user's active links, oldest first.

        Args:
            db: Async database session.
            user_id: Local user id.

        Returns:
            Active OAuthLink rows.
        """
        stmt = (
            select(OAuthLink)
            .where(OAuthLink.user_id == user_id, OAuthLink.revoked_at.is_(None))
            .order_by(OAuthLink.created_at)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def revoke(db: AsyncSession, *, user_id: uuid.UUID, provider: str) -> None:
        """Revoke a user's active link to a provider.

        Args:
            db: Async database session.
            user_id: Local user id.
            provider: Provider name.

        Raises:
            NotFoundError: If the user has no active link to the provider.
        """
        stmt = (
            update(OAuthLink)
            .where(
                OAuthLink.user_id == user_id,
                OAuthLink.provider == provider,
                OAuthLink.revoked_at.is_(None),
            )
            .values(revoked_at=func.now(), updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        if result.rowcount == 0:
            raise NotFoundError("OAuth link")
