"""Rate limiting using slowapi and limits.

Security: Two layers.
- ``limiter`` (slowapi): per-IP limit on the auth form POST endpoints, to
  slow down credential stuffing and form spam.
- ``KeyedRateLimiter`` (limits): per-username limit on confirmation mail
  resends and per-email limit on password reset mails, so one address
  cannot be flooded from many IPs.

Both use in-memory storage: limits are per process, which is fine for a
single-instance deployment and not shared across replicas.

Usage in routers:
    from nrs_webapp.core.rate_limiting import limiter

    @router.post("")
    @limiter.limit(settings.rate_limit_auth_forms)
    async def login_submit(request: Request, ...):
        ...
"""

from fastapi import Request, Response
from limits import RateLimitItem, parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from nrs_webapp.core.config import settings
from nrs_webapp.core.errors import RateLimitedError
from nrs_webapp.core.responses import error_response

# Global limiter instance
# Configured with in-memory storage (suitable for single-instance deployment)
limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(
    request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Handle slowapi rate limit exceeded errors.

    Security: Returns 429 Too Many Requests with the standard error envelope,
    the same body as the keyed limiters produce.

    Args:
        request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status and retry-after header.
    """
    # Parse retry-after from exception detail (e.g., "10 per 1 minute")
    # Fallback to 60 seconds if parsing fails
    try:
        retry_after = str(exc.detail.split()[-1])
        # Validate it looks like a time value
        int(retry_after.rstrip("s"))  # "60" or "60s" -> 60
    except (ValueError, AttributeError, IndexError):
        retry_after = "60"

    error = RateLimitedError()
    return error_response(
        request,
        status_code=error.status_code,
        code=error.code,
        message=error.message,
        headers={"Retry-After": retry_after},
    )


class KeyedRateLimiter:
    """Moving-window limiter keyed by an arbitrary string.

    Args:
        namespace: Prefix separating this limiter's keys from others.
        limit: Limit string, e.g. "1/minute".
        enabled: When False, ``check`` never raises.
    """

    def __init__(self, namespace: str, limit: str, *, enabled: bool = True) -> None:
        self.namespace = namespace
        self.enabled = enabled
        self._item: RateLimitItem = parse(limit)
        self._strategy = MovingWindowRateLimiter(MemoryStorage())

    def check(self, key: str) -> None:
        """Record one hit for ``key``.

        Keys are case-folded so "Alice" and "alice" share a budget.

        Raises:
            RateLimitedError: If the key is over its limit.
        """
        if not self.enabled:
            return
        if not self._strategy.hit(self._item, self.namespace, key.casefold()):
            raise RateLimitedError()

    def reset(self) -> None:
        self._strategy.storage.reset()
