"""HTMX response helpers.

HTMX requests carry ``HX-Request: true``. For them a redirect is a 204 with
``HX-Redirect`` (HTMX performs the navigation); plain browser form posts get
a 303 See Other. Toasts travel in ``HX-Trigger`` as a ``showToast`` event.
"""

import json
from typing import Literal

from fastapi import Request, Response
from starlette.responses import RedirectResponse

ToastLevel = Literal["success", "info", "warning", "error"]


def is_htmx(request: Request) -> bool:
    return request.headers.get("HX-Request", "").lower() == "true"


def toast_trigger(message: str, level: ToastLevel = "info", **extra: str) -> str:
    """Serialize a toast for the ``HX-Trigger`` header."""
    return json.dumps({"showToast": {"message": message, "level": level, **extra}})


def redirect(
    request: Request,
    url: str,
    *,
    toast: str | None = None,
    toast_level: ToastLevel = "success",
) -> Response:
    """Redirect in the way the client understands.

    Args:
        request: Incoming request, checked for ``HX-Request``.
        url: Target location (path on this service or absolute URL).
        toast: Optional message shown after navigation.
        toast_level: Toast severity.

    Returns:
        204 with HX-Redirect for HTMX, otherwise 303 with Location.
    """
    response: Response
    if is_htmx(request):
        response = Response(status_code=204, headers={"HX-Redirect": url})
    else:
        response = RedirectResponse(url, status_code=303)
    if toast:
        response.headers["HX-Trigger"] = toast_trigger(toast, toast_level)
    return response
