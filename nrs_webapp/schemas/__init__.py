"""Pydantic request/response schemas for API endpoints."""

from nrs_webapp.schemas.auth import (
    AuthPage,
    ConfirmMailForm,
    ConfirmMailPage,
    ForgotPasswordForm,
    ForgotPasswordSentPage,
    LoginForm,
    LogoffForm,
    OAuthRegistrationPage,
    RegisterForm,
    ResetPasswordForm,
    ResetPasswordPage,
)

__all__ = [
    # Forms
    "ConfirmMailForm",
    "ForgotPasswordForm",
    "LoginForm",
    "LogoffForm",
    "RegisterForm",
    "ResetPasswordForm",
    # Page contexts
    "AuthPage",
    "ConfirmMailPage",
    "ForgotPasswordSentPage",
    "OAuthRegistrationPage",
    "ResetPasswordPage",
]
