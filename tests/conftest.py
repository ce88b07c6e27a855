import socket
import uuid
from collections.abc import AsyncGenerator, Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from nrs_webapp.core.config import settings
from nrs_webapp.core.context import AuthContext
from nrs_webapp.core.cookies import SESSION_COOKIE_NAME, CookieJar, CookieSigner
from nrs_webapp.core.database import get_db, get_session_factory
from nrs_webapp.core.encryption import SymmetricCipher
from nrs_webapp.core.mail import LogMailer
from nrs_webapp.core.oauth_providers import AuthProvider, ProviderRegistry
from nrs_webapp.core.one_time_token import TokenHasher
from nrs_webapp.core.passwords import PasswordHasher
from nrs_webapp.core.rate_limiting import KeyedRateLimiter
from nrs_webapp.core.session_token import SessionTokenCodec
from nrs_webapp.models.base import Base

# Use separate test database
TEST_DATABASE_URL = f"{settings.service_db_url.rsplit('/', 1)[0]}/nrs_webapp_test"

TEST_BASE_URL = "http://test"

# Security: Test-only secrets. Production values come from the environment.
TEST_PEPPER = b"test-pepper-bytes"  # nosec B105
TEST_TOKEN_SECRET = b"test-token-secret-that-is-long-enough"  # nosec B105
TEST_COOKIE_KEY = "test-cookie-key-that-is-at-least-32-characters"  # nosec B105

HTMX_HEADERS = {"HX-Request": "true"}


def make_auth_context(
    *,
    providers: list[AuthProvider] | None = None,
    limits_enabled: bool = True,
) -> AuthContext:
    """Build an AuthContext with cheap Argon2 parameters for tests.

    Args:
        providers: Providers to register.
        limits_enabled: Whether the keyed limiters enforce limits.

    Returns:
        A fresh context with a LogMailer (inspect ``ctx.mailer.outbox``).
    """
    cipher = SymmetricCipher(Fernet.generate_key())
    return AuthContext(
        base_url=TEST_BASE_URL,
        password_hasher=PasswordHasher(
            TEST_PEPPER, time_cost=1, memory_cost=1024, parallelism=1
        ),
        token_hasher=TokenHasher(TEST_TOKEN_SECRET),
        session_codec=SessionTokenCodec(3600),
        cookies=CookieJar(
            signer=CookieSigner(TEST_COOKIE_KEY),
            cipher=cipher,
            session_ttl_seconds=3600,
            oauth_ttl_seconds=600,
            secure=False,
        ),
        cipher=cipher,
        providers=ProviderRegistry(providers or []),
        mailer=LogMailer("accounts@test.dev"),
        confirm_mail_limiter=KeyedRateLimiter(
            "confirm_mail", "1/minute", enabled=limits_enabled
        ),
        password_reset_limiter=KeyedRateLimiter(
            "password_reset", "5/minute", enabled=limits_enabled
        ),
        email_verification_ttl_seconds=86400,
        password_reset_ttl_seconds=3600,
    )


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections.

    Returns:
        True if PostgreSQL is reachable on port 5432, False otherwise.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex(("127.0.0.1", 5432))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available.

    Called by fixtures that require database connection.
    """
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            "PostgreSQL not available on port 5432. "
            "Create the nrs_webapp_test database to run these tests."
        )


@pytest.fixture
def auth_context() -> AuthContext:
    return make_auth_context()


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine.

    Skips test if PostgreSQL is not available.
    """
    skip_if_no_postgres()

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def db_session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(
    db_session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with db_session_factory() as session:
        yield session
        await session.rollback()


# =============================================================================
# API Test Fixtures
# =============================================================================


@pytest.fixture
def app(auth_context: AuthContext) -> Iterator[FastAPI]:
    """Application wired to the test AuthContext."""
    from nrs_webapp.main import create_app

    application = create_app(auth_context)
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def mock_db() -> AsyncMock:
    """Stand-in session for route tests whose services are patched."""
    return AsyncMock(spec=AsyncSession)


@pytest_asyncio.fixture
async def client(app: FastAPI, mock_db: AsyncMock) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client without a database.

    Route tests patch the service functions; the session is an AsyncMock
    and background jobs get a MagicMock factory.
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: MagicMock()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=TEST_BASE_URL) as ac:
        yield ac


@pytest_asyncio.fixture
async def db_client(
    app: FastAPI,
    db_session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client backed by the test database.

    Mirrors ``get_db``: commit on success, rollback on error. Background
    jobs use the same test session factory.
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with db_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: db_session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=TEST_BASE_URL) as ac:
        yield ac


@pytest.fixture(autouse=True)
def disable_rate_limiting() -> Iterator[None]:
    """Disable the per-IP slowapi limiter for all tests.

    Tests that check slowapi behavior re-enable it explicitly. The keyed
    limiters live on the per-test AuthContext and start empty.
    """
    from nrs_webapp.core.rate_limiting import limiter

    original_enabled = limiter.enabled
    limiter.enabled = False
    yield
    limiter.enabled = original_enabled
    limiter.reset()


def session_factory_for(session: AsyncMock) -> MagicMock:
    """A stand-in async_sessionmaker whose sessions are ``session``.

    Background jobs open ``async with session_factory() as db``.
    """
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = session
    factory.return_value.__aexit__.return_value = False
    return factory


def session_cookie_header(
    ctx: AuthContext, user_id: uuid.UUID, *, now: float | None = None
) -> dict[str, str]:
    """Cookie header carrying a signed session for ``user_id``."""
    token = ctx.session_codec.issue(user_id, now=now)
    value = ctx.cookies.signer.sign(
        {"session": ctx.session_codec.encode(token)},
        audience=SESSION_COOKIE_NAME,
        ttl_seconds=ctx.cookies.session_ttl_seconds,
    )
    return {"Cookie": f"{SESSION_COOKIE_NAME}={value}"}
