"""Router aggregator.

All authentication routers are mounted under ``/auth``.
"""

from fastapi import APIRouter

from nrs_webapp.api.auth import (
    confirm_mail,
    forgot_password,
    login,
    logoff,
    oauth,
    register,
)

router = APIRouter()

# =============================================================================
# Authentication
# =============================================================================

_AUTH_PREFIX = "/auth"

router.include_router(login.router, prefix=f"{_AUTH_PREFIX}/login", tags=["auth"])
router.include_router(register.router, prefix=f"{_AUTH_PREFIX}/register", tags=["auth"])
router.include_router(logoff.router, prefix=f"{_AUTH_PREFIX}/logoff", tags=["auth"])
router.include_router(
    confirm_mail.router, prefix=f"{_AUTH_PREFIX}/confirmmail", tags=["auth"]
)
router.include_router(
    forgot_password.router, prefix=f"{_AUTH_PREFIX}/forgotpass", tags=["auth"]
)
router.include_router(oauth.router, prefix=f"{_AUTH_PREFIX}/oauth", tags=["auth"])
