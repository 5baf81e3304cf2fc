"""
Database engine and session factory.

``get_db`` is the FastAPI dependency every endpoint's service factory uses;
one request gets one :class:`AsyncSession`, closed when the request ends.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from captable.core.config import settings


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record) -> None:
    # Cascades on cap_tables and token_allocations rely on enforced FKs
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str, sqlite: bool) -> AsyncEngine:
    """
    Create the async engine.

    SQLite runs in memory on a single shared connection (``StaticPool``);
    otherwise each connection would see its own empty database.  The
    listener sits on the sync engine because aiosqlite wraps a sync
    connection.  PostgreSQL uses a pre-pinged pool sized from settings.
    """
    if sqlite:
        sqlite_engine = create_async_engine(
            url,
            echo=settings.DEBUG,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        event.listen(sqlite_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return sqlite_engine

    return create_async_engine(
        url,
        echo=settings.DEBUG,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
    )


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker:
    # expire_on_commit=False: attributes read after commit must not lazy-load
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL, settings.USE_SQLITE)
AsyncSessionLocal = build_sessionmaker(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session."""
    async with AsyncSessionLocal() as session:
        yield session
