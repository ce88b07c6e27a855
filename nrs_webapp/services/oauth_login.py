"""Federated login: link-or-register over an OAuth provider.

Flow:
1. ``begin_authorization``: the route stores the returned AuthFlowState in a
   signed cookie and redirects the browser to the provider.
2. ``handle_callback``: CSRF state check, code exchange, identity lookup.
   A known external identity refreshes its stored tokens and signs in
   (LinkedLogin). An unknown one yields RegistrationRequired; the route
   parks the tokens in an encrypted cookie and shows the registration form.
3. ``complete_registration``: creates the user and the link in the request
   transaction.

Security: Provider tokens are Fernet-encrypted before they reach the
database. The callback state comparison is constant time.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from nrs_webapp.core.context import AuthContext
from nrs_webapp.core.encryption import SymmetricCipher
from nrs_webapp.core.errors import (
    AuthFlowStateCookieNotFoundError,
    ConflictError,
    CsrfStateMismatchError,
    EmailMismatchError,
    TempTokenCookieNotFoundError,
)
from nrs_webapp.core.logging import mask_email
from nrs_webapp.core.oauth import (
    AuthFlowState,
    AuthorizeUrl,
    OAuthTokens,
    TempTokens,
    states_match,
)
from nrs_webapp.core.passwords import validate_password_strength
from nrs_webapp.models.user import User
from nrs_webapp.repositories.oauth_link_repository import OAuthLinkRepository
from nrs_webapp.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinkedLogin:
    """The external identity belongs to an existing user."""

    user_id: uuid.UUID


@dataclass(frozen=True)
class RegistrationRequired:
    """No user is linked yet; the registration form must be completed."""

    temp_tokens: TempTokens
    username: str | None
    email: str | None
    email_readonly: bool


CallbackResult = LinkedLogin | RegistrationRequired


@dataclass(frozen=True)
class EncryptedTokens:
    access_token: str
    refresh_token: str | None
    access_token_expires_at: datetime | None

    @classmethod
    def seal(cls, cipher: SymmetricCipher, tokens: OAuthTokens) -> "EncryptedTokens":
        return cls(
            access_token=cipher.encrypt(tokens.access_token),
            refresh_token=(
                cipher.encrypt(tokens.refresh_token) if tokens.refresh_token else None
            ),
            access_token_expires_at=tokens.expires_at,
        )


async def begin_authorization(ctx: AuthContext, provider_name: str) -> AuthorizeUrl:
    """Start a login with a provider.

    Raises:
        ProviderNotFoundError: If the provider is not configured.
        OidcDiscoveryError: If the provider's metadata cannot be fetched.
    """
    provider = ctx.providers.get(provider_name)
    return await provider.authorize_url(ctx.oauth_redirect_uri(provider.name))


async def handle_callback(
    db: AsyncSession,
    ctx: AuthContext,
    provider_name: str,
    *,
    code: str,
    state: str | None,
    flow_state: AuthFlowState | None,
) -> CallbackResult:
    """Finish the provider round trip.

    Args:
        db: Async database session.
        ctx: Authentication context.
        provider_name: Provider from the callback path.
        code: Authorization code from the query string.
        state: ``state`` echoed by the provider.
        flow_state: State from the flow cookie, None if the cookie is gone.

    Returns:
        LinkedLogin or RegistrationRequired.

    Raises:
        ProviderNotFoundError: Unknown provider.
        AuthFlowStateCookieNotFoundError: Flow cookie missing or expired.
        CsrfStateMismatchError: Returned state differs from the stored one.
        TokenExchangeError, IdentityFetchError, OidcDiscoveryError,
        InvalidIdTokenTypeError, InvalidIdTokenClaimsError, NonceMissingError:
            Provider-side failures.
    """
    provider = ctx.providers.get(provider_name)
    if flow_state is None:
        raise AuthFlowStateCookieNotFoundError()
    if not states_match(flow_state.csrf_state, state):
        logger.warning("OAuth callback state mismatch", extra={"provider": provider.name})
        raise CsrfStateMismatchError()

    tokens, id_token = await provider.exchange_code(
        code, ctx.oauth_redirect_uri(provider.name), flow_state.pkce_verifier
    )
    identity = await provider.fetch_identity(tokens, id_token, flow_state.nonce)

    sealed = EncryptedTokens.seal(ctx.cipher, tokens)
    user_id = await OAuthLinkRepository.update_tokens_if_active(
        db,
        provider=provider.name,
        provider_user_id=identity.id,
        access_token=sealed.access_token,
        refresh_token=sealed.refresh_token,
        access_token_expires_at=sealed.access_token_expires_at,
    )
    if user_id is not None:
        logger.info(
            "OAuth login",
            extra={"provider": provider.name, "user_id": str(user_id)},
        )
        return LinkedLogin(user_id=user_id)

    logger.info(
        "OAuth identity not linked; registration required",
        extra={"provider": provider.name},
    )
    return RegistrationRequired(
        temp_tokens=TempTokens(
            tokens=tokens,
            subject=identity.id,
            provider_name=provider.name,
            email=identity.email,
            email_verified=identity.email_verified,
            issuer=provider.issuer,
        ),
        username=identity.username,
        email=identity.email,
        email_readonly=identity.email_verified and identity.email is not None,
    )


async def complete_registration(
    db: AsyncSession,
    ctx: AuthContext,
    temp_tokens: TempTokens | None,
    *,
    username: str,
    email: str,
    password: str,
) -> User:
    """Create a user for a pending external identity and link it.

    Everything runs in the caller's transaction; any failure rolls back the
    user and the link together.

    Args:
        db: Async database session (request transaction).
        ctx: Authentication context.
        temp_tokens: Pending registration from the encrypted cookie.
        username: Chosen username.
        email: Submitted email.
        password: Plain-text password for local sign-in.

    Returns:
        The new user. Its email is verified when ``temp_tokens.email_verified``.

    Raises:
        TempTokenCookieNotFoundError: Cookie missing or expired.
        EmailMismatchError: Provider asserted an email and the form differs.
        ValidationError: Weak password.
        EmailOrUsernameAlreadyExistsError: Username or email taken.
        ConflictError: The external identity was linked concurrently.
    """
    if temp_tokens is None:
        raise TempTokenCookieNotFoundError()
    if temp_tokens.email and temp_tokens.email != email:
        logger.warning(
            "OAuth registration email mismatch",
            extra={"provider": temp_tokens.provider_name, "email": mask_email(email)},
        )
        raise EmailMismatchError()

    validate_password_strength(password)
    password_hash = await run_in_threadpool(ctx.password_hasher.hash, password)

    user = await UserRepository.create(
        db, username=username, email=email, password_hash=password_hash
    )
    if temp_tokens.email_verified:
        await UserRepository.mark_email_verified(db, user.id)

    sealed = EncryptedTokens.seal(ctx.cipher, temp_tokens.tokens)
    try:
        async with db.begin_nested():
            await OAuthLinkRepository.create(
                db,
                user_id=user.id,
                provider=temp_tokens.provider_name,
                provider_user_id=temp_tokens.subject,
                issuer=temp_tokens.issuer,
                access_token=sealed.access_token,
                refresh_token=sealed.refresh_token,
                access_token_expires_at=sealed.access_token_expires_at,
            )
    except IntegrityError as exc:
        raise ConflictError(
            code="OAUTH_ACCOUNT_ALREADY_LINKED",
            message="This sign-in account is already linked to a user",
        ) from exc

    logger.info(
        "User registered via OAuth",
        extra={"provider": temp_tokens.provider_name, "user_id": str(user.id)},
    )
    return user
