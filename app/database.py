"""Async SQLAlchemy database setup.

@module database
@description Database engine, session factory, schema introspection, and connection management.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Set

from sqlalchemy import event, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import AsyncAdaptedQueuePool

from app.config import get_settings

settings = get_settings()

_is_postgres = settings.DATABASE_URL.startswith("postgresql")

if _is_postgres:
    # Connection pooling and health checks
    engine = create_async_engine(
        settings.DATABASE_URL,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,  # Health check connections before use
        pool_recycle=3600,  # Recycle connections after 1 hour
        echo=settings.DEBUG,
    )

    # Set query timeout for safety
    @event.listens_for(engine.sync_engine, "connect")
    def set_query_timeout(dbapi_connection, connection_record):
        """Set query timeout to prevent long-running queries."""
        cursor = dbapi_connection.cursor()
        cursor.execute(f"SET statement_timeout = '{settings.DATABASE_QUERY_TIMEOUT}s'")
        cursor.close()

else:
    engine = create_async_engine(settings.DATABASE_URL, echo=settings.DEBUG)


# Session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Base class for models
Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting database sessions."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Context manager for database sessions outside of request context."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_table_columns(db: AsyncSession, table_name: str) -> Set[str]:
    """Return the column names currently present on a table.

    Reads the live schema rather than the ORM metadata, so columns removed
    by an irreversible drop are reported as absent.
    """
    conn = await db.connection()

    def _columns(sync_conn) -> Set[str]:
        inspector = inspect(sync_conn)
        if not inspector.has_table(table_name):
            return set()
        return {col["name"] for col in inspector.get_columns(table_name)}

    return await conn.run_sync(_columns)


async def column_exists(db: AsyncSession, table_name: str, column_name: str) -> bool:
    """Check whether a column exists on a table."""
    return column_name in await get_table_columns(db, table_name)


async def init_db() -> None:
    """Verify database connectivity on startup.

    Table creation is handled exclusively by Alembic migrations
    (alembic upgrade head) which must be run before starting the app.
    """
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))


async def check_db_health() -> bool:
    """Check database connectivity."""
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
            return True
    except Exception:
        return False


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
