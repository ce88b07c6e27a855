"""Password reset by emailed one-time link.

Security: The request step behaves the same whether or not the email
belongs to an account; the background job decides silently. Only verified
accounts receive a reset link, since an unverified address was never proven
to belong to the account holder.
"""

import logging
import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.concurrency import run_in_threadpool

from nrs_webapp.core.context import AuthContext
from nrs_webapp.core.errors import InvalidOrExpiredTokenError
from nrs_webapp.core.logging import mask_email
from nrs_webapp.core.mail import password_reset_message
from nrs_webapp.core.one_time_token import OneTimeToken, generate_token
from nrs_webapp.core.passwords import validate_password_strength
from nrs_webapp.models.one_time_token import TokenPurpose
from nrs_webapp.repositories.one_time_token_repository import OneTimeTokenRepository
from nrs_webapp.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


async def send_password_reset(
    session_factory: async_sessionmaker[AsyncSession],
    ctx: AuthContext,
    email: str,
    *,
    request_ip: str | None = None,
    user_agent: str | None = None,
) -> None:
    """Issue a password-reset token and mail the link. Background task.

    Args:
        session_factory: Factory for a session independent of the request.
        ctx: Authentication context.
        email: Address typed into the forgot-password form.
        request_ip: Client IP of the triggering request (audit).
        user_agent: User-Agent of the triggering request (audit).
    """
    try:
        async with session_factory() as db:
            user = await UserRepository.get_by_email(db, email)
            if user is None or not user.is_email_verified:
                logger.info("Password reset skipped", extra={"email": mask_email(email)})
                return

            plaintext, token_hash = generate_token(ctx.token_hasher)
            await OneTimeTokenRepository.create_or_refresh(
                db,
                user_id=user.id,
                purpose=TokenPurpose.PASSWORD_RESET,
                token_hash=token_hash,
                expires_at=datetime.now(UTC)
                + timedelta(seconds=ctx.password_reset_ttl_seconds),
                request_ip=request_ip,
                user_agent=user_agent,
            )
            recipient, display_name = user.email, user.username
            await db.commit()

        await ctx.mailer.send_message(
            password_reset_message(
                to=recipient,
                username=display_name,
                base_url=ctx.base_url,
                token=plaintext,
            )
        )
        logger.info("Password reset mail sent", extra={"email": mask_email(email)})
    except Exception:
        logger.warning(
            "Failed to send password reset mail",
            extra={"email": mask_email(email)},
            exc_info=True,
        )


async def reset_password(
    db: AsyncSession, ctx: AuthContext, raw_token: str, new_password: str
) -> uuid.UUID:
    """Redeem a reset token and store the new password.

    The strength check and token parsing run before the token is consumed,
    so a rejected password does not burn the link.

    Args:
        db: Async database session (request transaction).
        ctx: Authentication context.
        raw_token: Token from the reset link.
        new_password: Plain-text new password.

    Returns:
        Id of the user whose password changed.

    Raises:
        ValidationError: If the password fails the strength rules.
        InvalidTokenFormatError: If the token text is not a token.
        InvalidOrExpiredTokenError: Unknown, expired or already used token.
    """
    validate_password_strength(new_password)
    token = OneTimeToken.parse(raw_token)
    password_hash = await run_in_threadpool(ctx.password_hasher.hash, new_password)

    user_id = await OneTimeTokenRepository.check_and_consume(
        db,
        token_hash=ctx.token_hasher.hash(token),
        purpose=TokenPurpose.PASSWORD_RESET,
    )
    if not await UserRepository.reset_password(db, user_id, password_hash):
        raise InvalidOrExpiredTokenError()
    logger.info("Password reset", extra={"user_id": str(user_id)})
    return user_id
