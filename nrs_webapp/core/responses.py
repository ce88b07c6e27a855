"""Response envelope models.

Success bodies use ``{"data": ...}``, error bodies ``{"error": {...}}``.
Page GET routes return their page context in a DataResponse.
``error_response`` is the one place error bodies are built.
"""

import logging
from typing import Generic, TypeVar

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from nrs_webapp.core.htmx import is_htmx, toast_trigger
from nrs_webapp.core.logging import REQUEST_ID_HEADER

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    """Standard response envelope for single resources.

    Usage:
        @router.get("")
        async def login_page() -> DataResponse[LoginPage]:
            return DataResponse(data=LoginPage())
    """

    data: T


class ErrorDetail(BaseModel):
    """Error detail for response body.

    Attributes:
        code: Machine-readable error code (e.g., "INVALID_CREDENTIALS").
        message: Human-readable error message.
        details: Optional list of field-level errors (for validation).
        request_id: Id of the failed request, for support and log lookup.
    """

    code: str
    message: str
    details: list[dict] | None = None
    request_id: str | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope.

    Usage in exception handlers:
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=ErrorDetail(code=exc.code, message=exc.message)
            ).model_dump(),
        )
    """

    error: ErrorDetail


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: list[dict] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build the error envelope and log one line for the failed request.

    HTMX requests additionally get an error toast in ``HX-Trigger`` and
    ``HX-Reswap: none`` so the page content is left alone.

    Args:
        request: The failed request.
        status_code: HTTP status.
        code: Machine-readable error code.
        message: Human-readable message.
        details: Optional field-level details.
        headers: Extra response headers (e.g. Retry-After).
    """
    request_id = getattr(request.state, "request_id", None)
    response = JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=code,
                message=message,
                details=details,
                request_id=request_id,
            )
        ).model_dump(),
        headers=headers,
    )
    if request_id:
        response.headers[REQUEST_ID_HEADER] = request_id
    if is_htmx(request):
        response.headers["HX-Trigger"] = toast_trigger(
            message, "error", request_id=request_id or ""
        )
        response.headers["HX-Reswap"] = "none"

    logger.log(
        logging.ERROR if status_code >= 500 else logging.WARNING,
        "Request failed",
        extra={
            "uri": request.url.path,
            "request_id": request_id,
            "method": request.method,
            "error_code": code,
            "status_code": status_code,
        },
    )
    return response
