"""
Database engine, session management, and base model class.

This module sets up SQLAlchemy 2.0 with async support. Key components:

  - engine: The async database engine (connection pool for production DBs)
  - AsyncSessionLocal: Factory for creating async database sessions
  - Base: Declarative base class that all ORM models inherit from
  - get_db(): FastAPI dependency that provides a session per request

Architecture note:
  We use async SQLAlchemy (with aiosqlite for SQLite) so the API can handle
  concurrent requests without blocking. When migrating to PostgreSQL, only
  the DATABASE_URL needs to change (to use asyncpg driver).

SQLite transactions:
  The sqlite3 driver normally defers BEGIN until the first INSERT/UPDATE and
  mishandles SAVEPOINT. configure_sqlite() turns that off and starts every
  transaction with BEGIN IMMEDIATE, so writers are serialized by the
  database and the ledger's nested SAVEPOINTs behave as on PostgreSQL.

Session lifecycle:
  Each API request gets its own session via get_db(). The session commits
  on success and on ledger errors (so FAILED audit records are kept), and
  rolls back on any other exception.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from app.config import settings
from app.exceptions import LedgerAPIError


def configure_sqlite(async_engine: AsyncEngine) -> AsyncEngine:
    """Install the BEGIN IMMEDIATE / SAVEPOINT fix on a SQLite engine (no-op otherwise)."""
    if async_engine.dialect.name != "sqlite":
        return async_engine

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return async_engine


# echo=True in debug mode logs all SQL statements — invaluable for development.
engine = configure_sqlite(
    create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
    )
)

# expire_on_commit=False: the ledger commits before building its response,
# and expired attributes would trigger lazy loads in async context.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass


async def get_db():
    """
    FastAPI dependency that provides a database session.

    Usage in a route:
        @router.get("/items")
        async def list_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except LedgerAPIError:
            # Business errors (e.g., InsufficientFundsError) — commit so the
            # FAILED transaction records written before the error survive.
            await session.commit()
            raise
        except Exception:
            await session.rollback()
            raise
