"""Email confirmation pages: resend form and link target.

Security: The resend endpoint answers 204 whether or not the username
exists or is already verified. It is limited per IP and per username
(RATE_LIMIT_CONFIRM_MAIL).
"""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Form, Query, Request, Response

from nrs_webapp.api.auth.common import LOGIN_URL, schedule_confirm_mail
from nrs_webapp.api.deps import AuthCtx, Client, DbSession, SessionFactory
from nrs_webapp.core.config import settings
from nrs_webapp.core.htmx import redirect
from nrs_webapp.core.rate_limiting import limiter
from nrs_webapp.core.responses import DataResponse
from nrs_webapp.schemas.auth import ConfirmMailForm, ConfirmMailPage
from nrs_webapp.services.email_confirmation import confirm_email

router = APIRouter()


@router.get("")
async def confirm_mail_page(
    username: Annotated[str | None, Query(max_length=20)] = None,
) -> DataResponse[ConfirmMailPage]:
    return DataResponse(data=ConfirmMailPage(username=username))


@router.post("", status_code=204)
@limiter.limit(settings.rate_limit_auth_forms)
async def resend_confirm_mail(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    form: Annotated[ConfirmMailForm, Form()],
    background_tasks: BackgroundTasks,
    ctx: AuthCtx,
    session_factory: SessionFactory,
    client: Client,
) -> Response:
    """Queue another confirmation mail.

    Raises:
        RateLimitedError: The username already had a mail within the window.
    """
    schedule_confirm_mail(
        background_tasks,
        session_factory,
        ctx,
        form.username,
        client,
        raise_when_limited=True,
    )
    return Response(status_code=204)


@router.get("/confirm")
async def confirm_mail_link(
    request: Request,
    token: Annotated[str, Query(min_length=1, max_length=128)],
    db: DbSession,
    ctx: AuthCtx,
) -> Response:
    """Redeem the link from the confirmation mail."""
    await confirm_email(db, ctx, token)
    return redirect(
        request,
        LOGIN_URL,
        toast="Email confirmed. You can sign in now.",
    )
