"""Form and page-context schemas for the authentication routes.

Forms are posted as ``application/x-www-form-urlencoded`` and bound with
``Annotated[Model, Form()]``. Field-level failures surface as
RequestValidationError and are mapped to 400 VALIDATION_ERROR.

Password strength rules are checked in the services, not here, so the same
rules apply to every path that sets a password.
"""

from pydantic import BaseModel, EmailStr, Field, field_validator

USERNAME_PATTERN = r"^[A-Za-z0-9_\-]{3,20}$"
EMAIL_MAX_LENGTH = 100

# Upper bound before the strength check; keeps oversized bodies out of argon2.
_PASSWORD_FIELD_MAX = 128


def _check_email_length(value: str) -> str:
    if len(value) > EMAIL_MAX_LENGTH:
        msg = f"email must be at most {EMAIL_MAX_LENGTH} characters"
        raise ValueError(msg)
    return value


# ===================================================================
# Forms
# ===================================================================


class LoginForm(BaseModel):
    username: str = Field(min_length=1, max_length=20)
    password: str = Field(min_length=1, max_length=_PASSWORD_FIELD_MAX)


class RegisterForm(BaseModel):
    """Local registration, also used for completing an OAuth registration."""

    username: str = Field(pattern=USERNAME_PATTERN)
    email: EmailStr
    password: str = Field(min_length=1, max_length=_PASSWORD_FIELD_MAX)

    @field_validator("email")
    @classmethod
    def email_length(cls, value: str) -> str:
        return _check_email_length(value)


class LogoffForm(BaseModel):
    logoff: bool = False


class ConfirmMailForm(BaseModel):
    username: str = Field(min_length=1, max_length=20)


class ForgotPasswordForm(BaseModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def email_length(cls, value: str) -> str:
        return _check_email_length(value)


class ResetPasswordForm(BaseModel):
    token: str = Field(min_length=1, max_length=128)
    password: str = Field(min_length=1, max_length=_PASSWORD_FIELD_MAX)


# ===================================================================
# Page contexts
# ===================================================================


class AuthPage(BaseModel):
    """Context for a page that only needs to know which form to show."""

    page: str
    providers: list[str] = Field(default_factory=list)


class ConfirmMailPage(BaseModel):
    page: str = "confirm_mail"
    username: str | None = None


class ForgotPasswordSentPage(BaseModel):
    page: str = "forgot_password_sent"


class ResetPasswordPage(BaseModel):
    page: str = "reset_password"
    token: str


class OAuthRegistrationPage(BaseModel):
    """Prefilled registration form after an unknown external identity."""

    page: str = "oauth_register"
    provider: str
    username: str | None = None
    email: str | None = None
    email_readonly: bool = False
