"""Shared dependencies for the auth routes.

WHY DEPENDENCY INJECTION:
- One place resolves the database session, the auth context and the
  signed-in user
- Tests swap any of them through ``app.dependency_overrides``
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nrs_webapp.core.context import AuthContext
from nrs_webapp.core.database import get_db, get_session_factory
from nrs_webapp.core.errors import InvalidTokenFormatError, TokenExpiredError

logger = logging.getLogger(__name__)

# Audit columns are bounded; longer user agents are cut.
_USER_AGENT_MAX_LENGTH = 512


def get_auth_context(request: Request) -> AuthContext:
    """Return the AuthContext built by ``create_app``."""
    return request.app.state.auth_context


def get_current_user_id(
    request: Request,
    ctx: Annotated[AuthContext, Depends(get_auth_context)],
) -> uuid.UUID | None:
    """Resolve the signed-in user from the session cookie.

    A missing, tampered, malformed or expired session counts as signed out.
    The user row is not loaded; pages that need it look it up themselves.

    Returns:
        User id, or None when not signed in.
    """
    encoded = ctx.cookies.get_session(request)
    if encoded is None:
        return None
    try:
        return ctx.session_codec.validate(encoded)
    except (InvalidTokenFormatError, TokenExpiredError) as exc:
        logger.info("Ignoring unusable session", extra={"reason": exc.code})
        return None


@dataclass(frozen=True)
class ClientInfo:
    """Request metadata stored with issued one-time tokens."""

    ip: str | None
    user_agent: str | None


def get_client_info(request: Request) -> ClientInfo:
    user_agent = request.headers.get("User-Agent")
    return ClientInfo(
        ip=request.client.host if request.client else None,
        user_agent=user_agent[:_USER_AGENT_MAX_LENGTH] if user_agent else None,
    )


# Type aliases for cleaner endpoint signatures
DbSession = Annotated[AsyncSession, Depends(get_db)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
AuthCtx = Annotated[AuthContext, Depends(get_auth_context)]
OptionalUserId = Annotated[uuid.UUID | None, Depends(get_current_user_id)]
Client = Annotated[ClientInfo, Depends(get_client_info)]
