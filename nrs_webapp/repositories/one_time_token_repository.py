"""Repository for one-time token operations.

Tokens are stored as keyed hashes with a purpose and expiry. Both writes
are single statements so concurrency is handled by PostgreSQL:
- create_or_refresh upserts against the partial unique index on
  (user_id, purpose) WHERE last_used_at IS NULL.
- check_and_consume is one conditional UPDATE ... RETURNING; two concurrent
  requests cannot both redeem the same token.
"""

import uuid
from datetime import datetime

from sqlalchemy import delete, func, or_, text, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from nrs_webapp.core.errors import InvalidOrExpiredTokenError
from nrs_webapp.models.one_time_token import TokenPurpose, UserOneTimeToken


class OneTimeTokenRepository:
    """Stateless repository for UserOneTimeToken table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def create_or_refresh(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        purpose: TokenPurpose,
        token_hash: str,
        expires_at: datetime,
        request_ip: str | None = None,
        user_agent: str | None = None,
    ) -> uuid.UUID:
        """Store a token, replacing the user's unused token for this purpose.

        If an unused token already exists for (user_id, purpose) its hash,
        expiry, audit fields and created_at are overwritten, so the old link
        stops working. Used tokens are never touched.

        Args:
            db: Async database session.
            user_id: Owner of the token.
            purpose: What the token authorizes.
            token_hash: Keyed hash of the raw token.
            expires_at: Expiry timestamp.
            request_ip: Client IP of the issuing request (audit).
            user_agent: User-Agent of the issuing request (audit).

        Returns:
            Id of the inserted or refreshed row.
        """
        stmt = insert(UserOneTimeToken).values(
            user_id=user_id,
            purpose=purpose.value,
            token_hash=token_hash,
            expires_at=expires_at,
            request_ip=request_ip,
            user_agent=user_agent,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserOneTimeToken.user_id, UserOneTimeToken.purpose],
            index_where=text("last_used_at IS NULL"),
            set_={
                "token_hash": stmt.excluded.token_hash,
                "expires_at": stmt.excluded.expires_at,
                "request_ip": stmt.excluded.request_ip,
                "user_agent": stmt.excluded.user_agent,
                "created_at": func.now(),
            },
        ).returning(UserOneTimeToken.id)
        result = await db.execute(stmt)
        return result.scalar_one()

    @staticmethod
    async def check_and_consume(
        db: AsyncSession,
        *,
        token_hash: str,
        purpose: TokenPurpose,
    ) -> uuid.UUID:
        """Atomically mark a valid token as used.

        Succeeds only for a row with this hash and purpose that has not
        expired and has not been used.

        Args:
            db: Async database session.
            token_hash: Keyed hash of the raw token.
            purpose: Purpose the caller is redeeming the token for.

        Returns:
            The token owner's user id.

        Raises:
            InvalidOrExpiredTokenError: Unknown, expired, used, or wrong purpose.
        """
        stmt = (
            update(UserOneTimeToken)
            .where(
                UserOneTimeToken.token_hash == token_hash,
                UserOneTimeToken.purpose == purpose.value,
                UserOneTimeToken.expires_at > func.now(),
                UserOneTimeToken.last_used_at.is_(None),
            )
            .values(last_used_at=func.now())
            .returning(UserOneTimeToken.user_id)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        user_id = result.scalar_one_or_none()
        if user_id is None:
            raise InvalidOrExpiredTokenError()
        return user_id

    @staticmethod
    async def delete_expired(db: AsyncSession) -> int:
        """Delete expired and used tokens (periodic cleanup).

        The service does not schedule this itself; run it from an external
        periodic job. Consumption never depends on it, since expired and used
        rows are already rejected by ``check_and_consume``.

        Args:
            db: Async database session.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(UserOneTimeToken).where(
            or_(
                UserOneTimeToken.expires_at <= func.now(),
                UserOneTimeToken.last_used_at.is_not(None),
            )
        )
        result = await db.execute(stmt)
        return result.rowcount
