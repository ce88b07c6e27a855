"""Helpers shared by the auth routers."""

import logging
import uuid
from urllib.parse import quote, urlencode

from fastapi import BackgroundTasks, Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nrs_webapp.api.deps import ClientInfo
from nrs_webapp.core.context import AuthContext
from nrs_webapp.core.errors import RateLimitedError
from nrs_webapp.core.logging import mask_username
from nrs_webapp.services.email_confirmation import send_confirm_mail

logger = logging.getLogger(__name__)

HOME_URL = "/"
LOGIN_URL = "/auth/login"


def confirm_page_url(username: str) -> str:
    return f"/auth/confirmmail?{urlencode({'username': username}, quote_via=quote)}"


def start_session(response: Response, ctx: AuthContext, user_id: uuid.UUID) -> None:
    """Issue a session token and set it as the signed session cookie."""
    token = ctx.session_codec.issue(user_id)
    ctx.cookies.set_session(response, ctx.session_codec.encode(token))


def schedule_confirm_mail(
    background_tasks: BackgroundTasks,
    session_factory: async_sessionmaker[AsyncSession],
    ctx: AuthContext,
    username: str,
    client: ClientInfo,
    *,
    raise_when_limited: bool = False,
) -> bool:
    """Queue a confirmation mail unless the username is over its limit.

    Args:
        background_tasks: Request background tasks.
        session_factory: Session factory for the job.
        ctx: Authentication context.
        username: Account to confirm.
        client: Request metadata for the token audit columns.
        raise_when_limited: Raise instead of silently skipping when limited.

    Returns:
        True if a mail was queued.

    Raises:
        RateLimitedError: Over the limit and ``raise_when_limited`` is set.
    """
    try:
        ctx.confirm_mail_limiter.check(username)
    except RateLimitedError:
        if raise_when_limited:
            raise
        logger.info(
            "Confirmation mail not queued (rate limited)",
            extra={"username": mask_username(username)},
        )
        return False

    background_tasks.add_task(
        send_confirm_mail,
        session_factory,
        ctx,
        username,
        request_ip=client.ip,
        user_agent=client.user_agent,
    )
    return True
