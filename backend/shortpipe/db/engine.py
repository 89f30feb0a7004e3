"""
Database engine configuration for shortpipe.

Provides an async SQLAlchemy engine factory with SQLite WAL mode and
crash-safe PRAGMA configuration. Engines are built explicitly by each
process entry point and passed to the code that needs them.
"""
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)


def configure_sqlite_pragmas(dbapi_conn, connection_record):
    """
    Configure SQLite PRAGMA settings for crash safety and performance.

    - WAL mode: Write-Ahead Logging for better concurrency
    - FULL synchronous: Maximum crash safety
    - Busy timeout: Wait up to 5s for locks
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def create_engine(database_url: str) -> AsyncEngine:
    """Create an async engine, registering SQLite pragmas when applicable."""
    engine = create_async_engine(database_url, echo=False)
    if engine.dialect.name == "sqlite":
        # CRITICAL: Use engine.sync_engine for aiosqlite compatibility
        event.listens_for(engine.sync_engine, "connect")(configure_sqlite_pragmas)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # CRITICAL: expire_on_commit=False prevents greenlet errors
    return async_sessionmaker(
        engine,
        expire_on_commit=False,
        class_=AsyncSession,
    )
