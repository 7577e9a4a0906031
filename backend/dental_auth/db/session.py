"""Async SQLAlchemy engine and session helpers.

Provides the declarative ``Base``, factories for the async engine and
sessionmaker (built once by the app factory from the injected settings),
and a helper for creating the schema on startup.
"""

from dental_auth.config.config import Settings
from dental_auth.core.logging import logger
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Create the async engine for ``settings.DATABASE_URL_ASYNC``.

    SQLite URLs get a single shared connection when in-memory so every
    session sees the same database; other backends get a bounded pool.
    """
    url = settings.DATABASE_URL_ASYNC
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.endswith("sqlite+aiosqlite://"):
            kwargs["poolclass"] = StaticPool
        return create_async_engine(url, **kwargs)
    return create_async_engine(url, pool_size=5, max_overflow=10, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def initialize_database(engine: AsyncEngine):
    """Create all metadata tables defined on the declarative ``Base``.

    Raises:
        Exception: Re-raises any exception encountered while initializing.
    """

    # NOTE: models register themselves on Base when imported
    from dental_auth.models import audit, auth  # noqa: F401

    logger.info("Initializing database tables")
    async with engine.begin() as conn:
        try:
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Database initialization complete")
        except Exception:
            logger.exception("Database initialization failed")
            raise
