"""Email address confirmation.

``send_confirm_mail`` runs as a background task after the response is sent.
It opens its own session, issues (or rotates) the user's email-verification
token, commits, then mails the link. Nothing it does is reported back to the
client, so every failure is logged and swallowed.

``confirm_email`` redeems a token inside the request transaction: the token
is consumed and the user marked verified together or not at all.
"""

import logging
import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nrs_webapp.core.context import AuthContext
from nrs_webapp.core.errors import InvalidOrExpiredTokenError
from nrs_webapp.core.logging import mask_username
from nrs_webapp.core.mail import confirm_mail_message
from nrs_webapp.core.one_time_token import OneTimeToken, generate_token
from nrs_webapp.models.one_time_token import TokenPurpose
from nrs_webapp.repositories.one_time_token_repository import OneTimeTokenRepository
from nrs_webapp.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


async def send_confirm_mail(
    session_factory: async_sessionmaker[AsyncSession],
    ctx: AuthContext,
    username: str,
    *,
    request_ip: str | None = None,
    user_agent: str | None = None,
) -> None:
    """Issue a verification token and mail the confirmation link.

    Does nothing for unknown or already verified users.

    Args:
        session_factory: Factory for a session independent of the request.
        ctx: Authentication context.
        username: Account to confirm.
        request_ip: Client IP of the triggering request (audit).
        user_agent: User-Agent of the triggering request (audit).
    """
    try:
        async with session_factory() as db:
            user = await UserRepository.get_by_username(db, username)
            if user is None or user.is_email_verified:
                logger.info(
                    "Confirmation mail skipped",
                    extra={"username": mask_username(username)},
                )
                return

            plaintext, token_hash = generate_token(ctx.token_hasher)
            await OneTimeTokenRepository.create_or_refresh(
                db,
                user_id=user.id,
                purpose=TokenPurpose.EMAIL_VERIFICATION,
                token_hash=token_hash,
                expires_at=datetime.now(UTC)
                + timedelta(seconds=ctx.email_verification_ttl_seconds),
                request_ip=request_ip,
                user_agent=user_agent,
            )
            recipient, display_name = user.email, user.username
            await db.commit()

        await ctx.mailer.send_message(
            confirm_mail_message(
                to=recipient,
                username=display_name,
                base_url=ctx.base_url,
                token=plaintext,
            )
        )
        logger.info("Confirmation mail sent", extra={"username": mask_username(username)})
    except Exception:
        logger.warning(
            "Failed to send confirmation mail",
            extra={"username": mask_username(username)},
            exc_info=True,
        )


async def confirm_email(db: AsyncSession, ctx: AuthContext, raw_token: str) -> uuid.UUID:
    """Redeem an email-verification token.

    Args:
        db: Async database session (request transaction).
        ctx: Authentication context.
        raw_token: Token from the confirmation link.

    Returns:
        Id of the verified user.

    Raises:
        InvalidTokenFormatError: If the token text is not a token.
        InvalidOrExpiredTokenError: Unknown, expired or already used token.
    """
    token = OneTimeToken.parse(raw_token)
    user_id = await OneTimeTokenRepository.check_and_consume(
        db,
        token_hash=ctx.token_hasher.hash(token),
        purpose=TokenPurpose.EMAIL_VERIFICATION,
    )
    if not await UserRepository.mark_email_verified(db, user_id):
        raise InvalidOrExpiredTokenError()
    logger.info("Email confirmed", extra={"user_id": str(user_id)})
    return user_id
