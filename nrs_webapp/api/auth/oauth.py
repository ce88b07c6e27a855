"""OAuth sign-in routes.

- ``GET /authorize/{provider}``: store the flow state cookie, redirect (307)
  to the provider.
- ``GET /callback/{provider}``: provider redirect target. Signs in a linked
  identity or returns the registration form context.
- ``POST /register``: completes the registration for a pending identity.

Both flow cookies are scoped to ``/auth/oauth``.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Form, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from nrs_webapp.api.auth.common import (
    HOME_URL,
    LOGIN_URL,
    confirm_page_url,
    schedule_confirm_mail,
    start_session,
)
from nrs_webapp.api.deps import AuthCtx, Client, DbSession, SessionFactory
from nrs_webapp.core.config import settings
from nrs_webapp.core.errors import ValidationError
from nrs_webapp.core.htmx import redirect
from nrs_webapp.core.rate_limiting import limiter
from nrs_webapp.core.responses import DataResponse
from nrs_webapp.schemas.auth import OAuthRegistrationPage, RegisterForm
from nrs_webapp.services.oauth_login import (
    LinkedLogin,
    begin_authorization,
    complete_registration,
    handle_callback,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ===================================================================
# GET /auth/oauth/authorize/{provider}
# ===================================================================


@router.get("/authorize/{provider}")
async def oauth_authorize(provider: str, ctx: AuthCtx) -> Response:
    """Redirect to the provider's authorization endpoint.

    Raises:
        ProviderNotFoundError: Provider is not configured.
        OidcDiscoveryError: Provider metadata unavailable.
    """
    authorize = await begin_authorization(ctx, provider)
    response = RedirectResponse(url=authorize.url, status_code=307)
    ctx.cookies.set_auth_flow_state(response, authorize.state)
    return response


# ===================================================================
# GET /auth/oauth/callback/{provider}
# ===================================================================


@router.get("/callback/{provider}")
async def oauth_callback(
    provider: str,
    request: Request,
    db: DbSession,
    ctx: AuthCtx,
    code: Annotated[str | None, Query(max_length=2048)] = None,
    state: Annotated[str | None, Query(max_length=512)] = None,
    error: Annotated[str | None, Query(max_length=256)] = None,
) -> Response:
    """Handle the provider redirect.

    A provider-reported error (e.g. the user pressed cancel) sends the user
    back to the login page with a toast.
    """
    if error is not None:
        logger.info(
            "OAuth authorization denied",
            extra={"provider": provider, "error": error},
        )
        response = redirect(
            request,
            LOGIN_URL,
            toast="Sign-in was cancelled.",
            toast_level="warning",
        )
        ctx.cookies.delete_auth_flow_state(response)
        return response

    if not code:
        raise ValidationError("Missing authorization code")

    result = await handle_callback(
        db,
        ctx,
        provider,
        code=code,
        state=state,
        flow_state=ctx.cookies.get_auth_flow_state(request),
    )

    if isinstance(result, LinkedLogin):
        response = redirect(request, HOME_URL)
        start_session(response, ctx, result.user_id)
    else:
        page = OAuthRegistrationPage(
            provider=result.temp_tokens.provider_name,
            username=result.username,
            email=result.email,
            email_readonly=result.email_readonly,
        )
        response = JSONResponse(content=DataResponse(data=page).model_dump())
        ctx.cookies.set_temp_tokens(response, result.temp_tokens)

    ctx.cookies.delete_auth_flow_state(response)
    return response


# ===================================================================
# POST /auth/oauth/register
# ===================================================================


@router.post("/register")
@limiter.limit(settings.rate_limit_auth_forms)
async def oauth_register(
    request: Request,
    form: Annotated[RegisterForm, Form()],
    background_tasks: BackgroundTasks,
    db: DbSession,
    ctx: AuthCtx,
    session_factory: SessionFactory,
    client: Client,
) -> Response:
    """Create the account for a pending external identity.

    A provider-verified email signs the user in directly; otherwise the
    usual confirmation mail is sent first.

    Rate limit: per IP, RATE_LIMIT_AUTH_FORMS.
    """
    temp_tokens = ctx.cookies.get_temp_tokens(request)
    user = await complete_registration(
        db,
        ctx,
        temp_tokens,
        username=form.username,
        email=form.email,
        password=form.password,
    )
    await db.commit()

    if temp_tokens is not None and temp_tokens.email_verified:
        response = redirect(request, HOME_URL)
        start_session(response, ctx, user.id)
    else:
        schedule_confirm_mail(
            background_tasks, session_factory, ctx, user.username, client
        )
        response = redirect(
            request,
            confirm_page_url(user.username),
            toast="Account created. Check your inbox to confirm your email.",
        )

    ctx.cookies.delete_temp_tokens(response)
    return response
