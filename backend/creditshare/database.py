"""
CreditShare Backend - Database Engine, Sessions and Unit of Work
=================================================================

What:  Async SQLAlchemy engine/session factories, the declarative Base, the
       reusable unit of work, and the insert-if-absent primitive.
How:   The application factory builds one engine and one session factory and
       hands them to every service. Services open a `unit_of_work()` for each
       operation that writes; it commits on success and rolls back on error.
Who:   Used by services (all writes) and by the health route (SELECT 1).
When:  Engine is created in create_app(); sessions are created per operation.

Connection Pooling Strategy (PostgreSQL):
    pool_size=20:       Persistent connections for normal load
    max_overflow=10:    Temporary connections for traffic spikes (total max = 30)
    pool_pre_ping:      Validates connections before use
    pool_timeout=30:    Bounded wait for a free connection
    pool_recycle=3600:  Recycles connections every hour

    SQLite (tests) uses SQLAlchemy's default pool for the aiosqlite driver;
    the sizing options above do not apply to it.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Sequence

from sqlalchemy import Table
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from creditshare.config import Settings
from creditshare.exceptions import DatabaseError

logger = logging.getLogger(__name__)


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    All models inherit from this class to register with the shared metadata
    (used by Alembic for migrations and by tests for create_all).
    """
    pass


# ── Engine & Session Factory ──────────────────────────────────────────────
def build_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async engine for the configured database URL.

    Pool sizing options are only passed for server databases; the aiosqlite
    dialect rejects some of them.
    """
    options: Dict[str, Any] = {
        # Echo SQL queries in DEBUG mode for development visibility
        "echo": settings.log_level == "DEBUG",
    }
    if not settings.is_sqlite:
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=3600,
        )
    return create_async_engine(settings.database_url, **options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Create the session factory bound to `engine`.

    expire_on_commit=False keeps attributes readable after commit, which the
    services rely on when they build responses outside the unit of work.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ── Unit of Work ──────────────────────────────────────────────────────────
@asynccontextmanager
async def unit_of_work(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """
    Atomic unit of work shared by the upload-reward and download-charge paths.

    How it works:
        1. Opens a new session from the factory
        2. Yields it; the caller performs reads and writes
        3. On success: commits everything in one transaction
        4. On any error: rolls back, so no partial state is visible
        5. Always: closes the session (returns connection to pool)

    SQLAlchemy errors (including a failed commit) are wrapped in
    DatabaseError; application errors (NotFoundError, ForbiddenError, ...)
    propagate unchanged after the rollback.

    Example:
        async with unit_of_work(self.session_factory) as session:
            await self.ledger.credit(session, user_id, 10, "reward")
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("Unit of work rolled back after database error: %s", str(e))
            raise DatabaseError(
                context={"error_type": type(e).__name__},
            ) from e
        except BaseException:
            await session.rollback()
            raise


# ── Insert-if-absent ──────────────────────────────────────────────────────
async def insert_if_absent(
    session: AsyncSession,
    table: Table,
    values: Dict[str, Any],
    conflict_columns: Sequence[str],
) -> bool:
    """
    INSERT a row unless one with the same `conflict_columns` already exists.

    Returns True when this call inserted the row. This is the
    compare-and-set used for downloader-set membership and for
    get-or-create of users: of two concurrent callers exactly one gets True.

    Supported dialects: postgresql, sqlite (both have ON CONFLICT DO NOTHING).
    """
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise DatabaseError(
            message="Unsupported database backend.",
            context={"dialect": dialect},
        )

    stmt = insert(table).values(**values).on_conflict_do_nothing(
        index_elements=list(conflict_columns)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1
