"""Database lifecycle for catalog-compliance.

This module owns the single async engine. Repositories receive the session
factory and open one short transaction per operation, so the engine can be
driven both from request handlers and from background webhook processing.

Key exports:
- init_database(...)     — Call at startup to create the engine and session factory
- close_database()       — Call at shutdown to dispose the engine
- get_session_factory()  — Return the initialized session factory
- create_schema()        — Create all cc_ tables (dev, tests, first boot)
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from catalog_compliance.core.models import Base
from catalog_compliance.observability import get_logger

logger = get_logger(__name__)

# Module-level engine and session factory, initialized by init_database()
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_database(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 5,
    pool_timeout: int = 30,
) -> async_sessionmaker[AsyncSession]:
    """Initialize the database engine and session factory.

    Must be called once at application startup before any repository is used.

    Args:
        database_url: SQLAlchemy async URL (postgresql+asyncpg://, sqlite+aiosqlite://).
        pool_size: Connection pool size. Ignored for SQLite.
        max_overflow: Max overflow connections above pool_size. Ignored for SQLite.
        pool_timeout: Seconds to wait for a connection before raising. Ignored for SQLite.

    Returns:
        The session factory bound to the new engine.
    """
    global _engine, _session_factory  # noqa: PLW0603

    is_sqlite = database_url.startswith("sqlite")
    logger.info(
        "Initializing database engine",
        backend="sqlite" if is_sqlite else "server",
        pool_size=None if is_sqlite else pool_size,
    )

    if is_sqlite:
        _engine = create_async_engine(database_url, echo=False)
    else:
        _engine = create_async_engine(
            database_url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            # Echo stays off: statements would log product field values
            echo=False,
            pool_pre_ping=True,
        )

    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return _session_factory


async def create_schema() -> None:
    """Create every cc_ table that does not exist yet.

    Raises:
        RuntimeError: If init_database() has not been called yet.
    """
    if _engine is None:
        raise RuntimeError("Database has not been initialized. Call init_database() first.")
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured", tables=len(Base.metadata.tables))


async def close_database() -> None:
    """Dispose the database engine.

    Must be called at application shutdown.
    """
    global _engine, _session_factory  # noqa: PLW0603

    if _engine is not None:
        logger.info("Disposing database engine")
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory created by init_database().

    Raises:
        RuntimeError: If init_database() has not been called yet.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database has not been initialized. Call init_database() in the application lifespan handler."
        )
    return _session_factory
