"""Sign-out.

Only the session cookie is removed; session tokens are not tracked
server-side, so a copied cookie stays valid until it expires.
"""

from typing import Annotated

from fastapi import APIRouter, Form, Request, Response

from nrs_webapp.api.auth.common import HOME_URL
from nrs_webapp.api.deps import AuthCtx
from nrs_webapp.core.htmx import redirect
from nrs_webapp.schemas.auth import LogoffForm

router = APIRouter()


@router.post("")
async def logoff(
    request: Request,
    form: Annotated[LogoffForm, Form()],
    ctx: AuthCtx,
) -> Response:
    response = redirect(request, HOME_URL)
    if form.logoff:
        ctx.cookies.delete_session(response)
    return response
