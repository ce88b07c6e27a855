"""Password reset pages.

Security: The request form always answers with the same "sent" page; the
background job alone decides whether a mail goes out. Requests are limited
per IP and per email address (RATE_LIMIT_PASSWORD_RESET).
"""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Form, Query, Request, Response

from nrs_webapp.api.auth.common import LOGIN_URL
from nrs_webapp.api.deps import AuthCtx, Client, DbSession, SessionFactory
from nrs_webapp.core.config import settings
from nrs_webapp.core.htmx import redirect
from nrs_webapp.core.one_time_token import OneTimeToken
from nrs_webapp.core.rate_limiting import limiter
from nrs_webapp.core.responses import DataResponse
from nrs_webapp.schemas.auth import (
    AuthPage,
    ForgotPasswordForm,
    ForgotPasswordSentPage,
    ResetPasswordForm,
    ResetPasswordPage,
)
from nrs_webapp.services.password_reset import reset_password, send_password_reset

router = APIRouter()


@router.get("")
async def forgot_password_page() -> DataResponse[AuthPage]:
    return DataResponse(data=AuthPage(page="forgot_password"))


@router.post("")
@limiter.limit(settings.rate_limit_auth_forms)
async def forgot_password_submit(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    form: Annotated[ForgotPasswordForm, Form()],
    background_tasks: BackgroundTasks,
    ctx: AuthCtx,
    session_factory: SessionFactory,
    client: Client,
) -> DataResponse[ForgotPasswordSentPage]:
    """Queue a reset mail for the address.

    Raises:
        RateLimitedError: Too many requests for this email address.
    """
    ctx.password_reset_limiter.check(form.email)
    background_tasks.add_task(
        send_password_reset,
        session_factory,
        ctx,
        form.email,
        request_ip=client.ip,
        user_agent=client.user_agent,
    )
    return DataResponse(data=ForgotPasswordSentPage())


@router.get("/reset")
async def reset_password_page(
    token: Annotated[str, Query(min_length=1, max_length=128)],
) -> DataResponse[ResetPasswordPage]:
    """Reset form context.

    Only the token format is checked here; validity is checked on submit so
    opening the page does not consume anything.

    Raises:
        InvalidTokenFormatError: The link is mangled.
    """
    OneTimeToken.parse(token)
    return DataResponse(data=ResetPasswordPage(token=token))


@router.post("/reset")
@limiter.limit(settings.rate_limit_auth_forms)
async def reset_password_submit(
    request: Request,
    form: Annotated[ResetPasswordForm, Form()],
    db: DbSession,
    ctx: AuthCtx,
) -> Response:
    """Store the new password and send the user to the login page."""
    await reset_password(db, ctx, form.token, form.password)
    return redirect(
        request,
        LOGIN_URL,
        toast="Your password has been reset. Please sign in.",
    )
