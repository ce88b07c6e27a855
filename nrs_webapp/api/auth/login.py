"""Username/password sign-in.

Security:
- Per-IP rate limit on the form post
- Unverified accounts get no session; a fresh confirmation mail is queued
  and the client is sent to the confirmation page
"""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Form, Request, Response

from nrs_webapp.api.auth.common import (
    HOME_URL,
    confirm_page_url,
    schedule_confirm_mail,
    start_session,
)
from nrs_webapp.api.deps import AuthCtx, Client, DbSession, OptionalUserId, SessionFactory
from nrs_webapp.core.config import settings
from nrs_webapp.core.htmx import redirect
from nrs_webapp.core.rate_limiting import limiter
from nrs_webapp.core.responses import DataResponse
from nrs_webapp.schemas.auth import AuthPage, LoginForm
from nrs_webapp.services.local_auth import authenticate

router = APIRouter()


@router.get("", response_model=None)
async def login_page(
    request: Request, ctx: AuthCtx, user_id: OptionalUserId
) -> DataResponse[AuthPage] | Response:
    """Login page context, or home when already signed in."""
    if user_id is not None:
        return redirect(request, HOME_URL)
    return DataResponse(data=AuthPage(page="login", providers=ctx.providers.names()))


@router.post("")
@limiter.limit(settings.rate_limit_auth_forms)
async def login_submit(
    request: Request,
    form: Annotated[LoginForm, Form()],
    background_tasks: BackgroundTasks,
    db: DbSession,
    ctx: AuthCtx,
    session_factory: SessionFactory,
    client: Client,
) -> Response:
    """Check credentials and start a session.

    Rate limit: per IP, RATE_LIMIT_AUTH_FORMS.
    """
    user = await authenticate(db, ctx, username=form.username, password=form.password)

    if not user.is_email_verified:
        schedule_confirm_mail(background_tasks, session_factory, ctx, user.username, client)
        return redirect(
            request,
            confirm_page_url(user.username),
            toast="Please confirm your email address first.",
            toast_level="info",
        )

    response = redirect(request, HOME_URL)
    start_session(response, ctx, user.id)
    return response
