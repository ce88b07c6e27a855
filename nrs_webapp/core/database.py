"""Async database engine and session management.

Configures the SQLAlchemy async engine with connection pooling and provides
dependencies for request-scoped sessions and for the session factory used by
background jobs.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from nrs_webapp.core.config import settings

engine = create_async_engine(
    settings.service_db_url,
    echo=settings.environment == "development" and settings.debug,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session.

    Commits when the request handler returns and rolls back on any error,
    so each request's writes form one transaction.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency for background jobs that open their own sessions."""
    return async_session_factory
