"""FastAPI application entry point.

This module creates and configures the FastAPI application, including:
- Request id and security header middleware
- Exception handlers mapping every error to the standard envelope
- The auth router and the health check
- Startup of the shared HTTP client and the AuthContext
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from nrs_webapp.api.router import router as auth_router
from nrs_webapp.core.config import settings
from nrs_webapp.core.context import AuthContext
from nrs_webapp.core.errors import APIError, InternalError
from nrs_webapp.core.logging import (
    REQUEST_ID_HEADER,
    bind_request_id,
    clear_request_context,
    configure_logging,
    new_request_id,
)
from nrs_webapp.core.oauth_providers import OAUTH_HTTP_TIMEOUT
from nrs_webapp.core.rate_limiting import limiter, rate_limit_exceeded_handler
from nrs_webapp.core.responses import error_response

logger = structlog.get_logger()


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Assign every request an id, bind it to the log context, echo it back.

    The id is also stored on ``request.state`` for the exception handlers,
    which may run outside this middleware's context.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = new_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        bind_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Set browser security headers on every response.

    Headers added:
    - X-Frame-Options: auth forms must not be framed
    - X-Content-Type-Options: no MIME sniffing of JSON bodies
    - Referrer-Policy: Keeps OAuth codes and tokens out of Referer headers
    - Cache-Control: Auth responses carry cookies and one-time links
    - Strict-Transport-Security: production only, TLS ends at the proxy
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"

        # strict-origin: the reset and confirm pages have tokens in the URL
        response.headers["Referrer-Policy"] = "strict-origin"

        if request.url.path.startswith("/auth/"):
            response.headers["Cache-Control"] = "no-store, max-age=0"

        # Development runs over plain http
        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle custom API errors.

    Args:
        request: The incoming request.
        exc: Raised error carrying code, message and status.

    Returns:
        Error envelope with the status of ``exc``.
    """
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Map form and query validation failures to a 400 envelope.

    Converts FastAPI's validation errors (form fields included) to the
    standard format. Input values are not echoed back, they may be passwords.

    Args:
        request: The incoming request.
        exc: Validation failure raised by FastAPI.

    Returns:
        VALIDATION_ERROR envelope listing the failing fields.
    """
    return error_response(
        request,
        status_code=400,
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details=[
            {"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]}
            for e in exc.errors()
        ],
    )


def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log an unhandled exception and answer with a generic 500.

    The traceback goes to the log only.

    Args:
        request: The incoming request.
        exc: The unhandled exception.

    Returns:
        INTERNAL_ERROR envelope.
    """
    logger.exception(
        "Unhandled exception",
        exc_info=exc,
        path=str(request.url.path),
        request_id=getattr(request.state, "request_id", None),
    )
    error = InternalError()
    return error_response(
        request,
        status_code=error.status_code,
        code=error.code,
        message=error.message,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the AuthContext on startup unless one was injected."""
    configure_logging(settings)
    if getattr(app.state, "auth_context", None) is not None:
        yield
        return

    async with httpx.AsyncClient(timeout=OAUTH_HTTP_TIMEOUT) as http_client:
        app.state.auth_context = AuthContext.from_settings(settings, http_client)
        logger.info(
            "Auth context ready",
            providers=app.state.auth_context.providers.names(),
        )
        try:
            yield
        finally:
            app.state.auth_context = None


def create_app(auth_context: AuthContext | None = None) -> FastAPI:
    """Build the application: middleware, error mapping, routes.

    Tests pass a prepared AuthContext; the module-level app builds its
    own at startup.

    Args:
        auth_context: Prebuilt context (tests). When None, the lifespan
            builds one from settings.

    Returns:
        The FastAPI application.
    """
    app = FastAPI(
        title="nrs-webapp",
        version="1.0.0",
        description="Media rating web application",
        lifespan=lifespan,
    )
    app.state.auth_context = auth_context

    # Middleware order: Starlette uses LIFO, so the LAST added runs FIRST.
    # The request id must exist before anything else logs.
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # Register exception handlers
    # Order matters: specific handlers first, then catch-all
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    # Rate limiting (Security)
    app.state.limiter = limiter

    app.include_router(auth_router)

    # Liveness
    @app.get("/health")
    def health_check() -> dict:
        """Liveness probe.

        Returns:
            ``{"status": "healthy"}``.
        """
        return {"status": "healthy"}

    return app


# Module-level app for the ASGI server
# uvicorn nrs_webapp.main:app
app = create_app()
