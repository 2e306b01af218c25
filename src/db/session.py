"""Async SQLAlchemy session management.

Provides the async engine, session factory, and FastAPI dependency
for database session injection. Services that commit per action (the
trigger orchestrator, the lifecycle recorder) receive the session factory
rather than a single request-scoped session.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from src.config import settings


def create_engine_for_url(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL.

    SQLite (aiosqlite) is used by the test-suite and local demos; it does not
    accept the pooling arguments used for PostgreSQL.

    Args:
        database_url: SQLAlchemy URL with an async driver.
        echo: Log SQL statements.

    Returns:
        AsyncEngine: Configured engine.
    """
    if database_url.startswith("sqlite"):
        return create_async_engine(
            database_url,
            echo=echo,
            connect_args={"timeout": 30},
        )
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,  # Verify connections before use
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine.

    Args:
        bind: Engine the sessions connect through.

    Returns:
        async_sessionmaker: Factory producing AsyncSession instances.
    """
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading issues after commit
    )


engine = create_engine_for_url(settings.DATABASE_URL, echo=settings.DEBUG)

async_session_maker = create_session_factory(engine)


async def get_async_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide database session for FastAPI dependency injection.

    Creates a new async session for each request and handles
    commit/rollback automatically.

    Yields:
        AsyncSession: Database session that auto-commits on success
            and rolls back on exception.
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
