"""Local account registration."""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Form, Request, Response

from nrs_webapp.api.auth.common import confirm_page_url, schedule_confirm_mail
from nrs_webapp.api.deps import AuthCtx, Client, DbSession, SessionFactory
from nrs_webapp.core.config import settings
from nrs_webapp.core.htmx import redirect
from nrs_webapp.core.rate_limiting import limiter
from nrs_webapp.core.responses import DataResponse
from nrs_webapp.schemas.auth import AuthPage, RegisterForm
from nrs_webapp.services.local_auth import register_user

router = APIRouter()


@router.get("")
async def register_page(ctx: AuthCtx) -> DataResponse[AuthPage]:
    return DataResponse(data=AuthPage(page="register", providers=ctx.providers.names()))


@router.post("")
@limiter.limit(settings.rate_limit_auth_forms)
async def register_submit(
    request: Request,
    form: Annotated[RegisterForm, Form()],
    background_tasks: BackgroundTasks,
    db: DbSession,
    ctx: AuthCtx,
    session_factory: SessionFactory,
    client: Client,
) -> Response:
    """Create the account and send the confirmation mail.

    The user row is committed before the mail job is queued; the job reads
    it through its own session.

    Rate limit: per IP, RATE_LIMIT_AUTH_FORMS.
    """
    user = await register_user(
        db, ctx, username=form.username, email=form.email, password=form.password
    )
    await db.commit()

    schedule_confirm_mail(background_tasks, session_factory, ctx, user.username, client)
    return redirect(
        request,
        confirm_page_url(user.username),
        toast="Account created. Check your inbox to confirm your email.",
    )
