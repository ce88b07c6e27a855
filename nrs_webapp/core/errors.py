"""API error classes.

Every error the authentication flows can surface is an APIError subclass,
so a single exception handler in main.py maps them all to responses.

WHY CUSTOM ERROR CLASSES:
- Consistent error response format across all endpoints
- Easy to map to HTTP status codes in exception handlers
- Type-safe error handling in services/repositories

Security: Messages are deliberately generic. Token and credential failures
never say which check failed (not found vs. expired vs. used), and protocol
violations are logged server-side with more detail than the client sees.
"""


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


# =============================================================================
# Generic request errors
# =============================================================================


class ValidationError(APIError):
    """Field validation failed (400).

    Use for form validation errors, query param errors, etc.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class NotFoundError(APIError):
    """Resource not found (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


class ConflictError(APIError):
    """Duplicate or conflicting resource (409).

    Accepts custom code for specific conflict types.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class RateLimitedError(APIError):
    """Keyed rate limit exceeded (429).

    Raised by the per-username and per-email limiters. The message does not
    reveal the limit, the key, or the remaining window.
    """

    def __init__(self) -> None:
        super().__init__(
            code="RATE_LIMITED",
            message="Too many requests. Please wait a moment and try again.",
            status_code=429,
        )


class InternalError(APIError):
    """Unexpected server error (500).

    Use for unhandled exceptions. Never expose stack traces to clients.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
        )


# =============================================================================
# Credentials and accounts
# =============================================================================


class InvalidCredentialsError(APIError):
    """Username or password wrong (401).

    Same error whether the user does not exist or the password is wrong.
    """

    def __init__(self) -> None:
        super().__init__(
            code="INVALID_CREDENTIALS",
            message="Invalid username or password",
            status_code=401,
        )


class EmailOrUsernameAlreadyExistsError(ConflictError):
    """Unique constraint on username or email violated (409).

    One error for both columns so registration cannot be used to probe
    which usernames or emails are taken.
    """

    def __init__(self) -> None:
        super().__init__(
            code="EMAIL_OR_USERNAME_EXISTS",
            message="An account with this email or username already exists",
        )


class PasswordHashError(InternalError):
    """Stored password hash is structurally malformed (500)."""

    def __init__(self) -> None:
        super().__init__()


# =============================================================================
# Tokens
# =============================================================================


class InvalidOrExpiredTokenError(APIError):
    """One-time token unknown, expired, already used, or wrong purpose (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="INVALID_OR_EXPIRED_TOKEN",
            message="This link is invalid or has expired",
            status_code=400,
        )


class InvalidTokenFormatError(APIError):
    """Token text could not be decoded (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="INVALID_TOKEN_FORMAT",
            message="This link is invalid or has expired",
            status_code=400,
        )


class TokenExpiredError(APIError):
    """Session token past its expiry (401)."""

    def __init__(self) -> None:
        super().__init__(
            code="TOKEN_EXPIRED",
            message="Your session has expired. Please sign in again.",
            status_code=401,
        )


# =============================================================================
# OAuth2 / OIDC
# =============================================================================


class ProviderNotFoundError(APIError):
    """Requested provider is not configured (404)."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(
            code="PROVIDER_NOT_FOUND",
            message="Unknown sign-in provider",
            status_code=404,
        )


class OidcDiscoveryError(APIError):
    """OIDC discovery document could not be fetched or parsed (502)."""

    def __init__(self) -> None:
        super().__init__(
            code="OIDC_DISCOVERY_FAILED",
            message="The sign-in provider is unavailable. Please try again.",
            status_code=502,
        )


class OAuth2InvalidConfigurationError(APIError):
    """Provider endpoints or credentials are misconfigured (500)."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(
            code="OAUTH_CONFIGURATION_ERROR",
            message="Sign-in provider is misconfigured",
            status_code=500,
        )


class TokenExchangeError(APIError):
    """Authorization code exchange failed (502)."""

    def __init__(self) -> None:
        super().__init__(
            code="TOKEN_EXCHANGE_FAILED",
            message="Could not complete sign-in with the provider. Please try again.",
            status_code=502,
        )


class IdentityFetchError(APIError):
    """Provider profile endpoint failed or returned an unusable profile (502)."""

    def __init__(self) -> None:
        super().__init__(
            code="IDENTITY_FETCH_FAILED",
            message="Could not load your profile from the provider. Please try again.",
            status_code=502,
        )


class AuthFlowStateCookieNotFoundError(APIError):
    """Flow-state cookie missing at callback: expired or replayed (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="AUTH_FLOW_STATE_MISSING",
            message="Your sign-in attempt expired. Please start again.",
            status_code=400,
        )


class CsrfStateMismatchError(APIError):
    """Returned state parameter does not match the stored CSRF token (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="CSRF_STATE_MISMATCH",
            message="Sign-in request could not be verified. Please start again.",
            status_code=400,
        )


class InvalidIdTokenTypeError(APIError):
    """Token response carried no usable ID token (502)."""

    def __init__(self) -> None:
        super().__init__(
            code="INVALID_ID_TOKEN",
            message="The sign-in provider returned an invalid response.",
            status_code=502,
        )


class InvalidIdTokenClaimsError(APIError):
    """ID token signature or claims (iss, aud, exp, nonce) rejected (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="INVALID_ID_TOKEN_CLAIMS",
            message="Sign-in request could not be verified. Please start again.",
            status_code=400,
        )


class NonceMissingError(APIError):
    """OIDC flow state carried no nonce (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="NONCE_MISSING",
            message="Sign-in request could not be verified. Please start again.",
            status_code=400,
        )


class EmailMismatchError(APIError):
    """Registration email differs from the provider-asserted email (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="EMAIL_MISMATCH",
            message="The email must match the one from your sign-in provider.",
            status_code=400,
        )


class TempTokenCookieNotFoundError(APIError):
    """Pending OAuth registration cookie missing or expired (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="TEMP_TOKENS_MISSING",
            message="Your sign-in attempt expired. Please start again.",
            status_code=400,
        )
