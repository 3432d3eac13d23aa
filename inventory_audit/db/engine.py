"""Database access: async engine, session factory, startup and shutdown.

Every pool checkout clears the audit session variables, so a connection
never carries a previous request's audit context.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import Session

from inventory_audit.audit.context import SESSION_VARIABLES
from inventory_audit.audit.interceptor import GuardedSession, InterceptedSession
from inventory_audit.audit.triggers import install_audit_triggers, sentinel_user_sql
from inventory_audit.config import settings

logger = logging.getLogger(__name__)

CLEAR_AUDIT_CONTEXT_SQL = "SELECT " + ", ".join(
    f"set_config('{name}', '', false)" for name in SESSION_VARIABLES
)


def session_class() -> type[Session]:
    """Sync session class behind every AsyncSession, per configured audit mode."""
    return InterceptedSession if settings.audit.mode == "interceptor" else GuardedSession


def clear_audit_context(dbapi_connection: Any, connection_record: Any, connection_proxy: Any) -> None:
    """Pool checkout hook: blank the four audit session variables and commit."""
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute(CLEAR_AUDIT_CONTEXT_SQL)
    finally:
        cursor.close()
    dbapi_connection.commit()


# ── Async PostgreSQL engine ──────────────────────────────────────────

engine: AsyncEngine = create_async_engine(
    settings.db.database_url,
    echo=settings.log_level == "DEBUG",
    pool_size=settings.db.pool_size,
    max_overflow=settings.db.max_overflow,
    pool_timeout=settings.db.pool_timeout,
    pool_pre_ping=True,
    pool_recycle=settings.db.pool_recycle,
)

if engine.dialect.name == "postgresql":
    event.listen(engine.sync_engine, "checkout", clear_audit_context)

# ── Session factory ──────────────────────────────────────────────────

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    sync_session_class=session_class(),
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for FastAPI, yields an async DB session without audit context.

    Read-only routes use this; mutating routes use
    `inventory_audit.audit.middleware.get_audit_session`.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Lifespan helpers ─────────────────────────────────────────────────


async def init_db() -> None:
    """Verify connectivity; in development also create tables, seed the
    system user and install triggers.

    In production, schema, system user and triggers come from Alembic migrations.
    """
    async with engine.begin() as conn:
        # Populates Base.metadata
        from inventory_audit.models import Base

        if not settings.is_production:
            await conn.run_sync(Base.metadata.create_all)
            # audit_logs.user_id references users; unattributed rows need this row
            await conn.execute(text(sentinel_user_sql()))
            if settings.audit.mode == "trigger":
                await install_audit_triggers(conn)
    logger.info("Database ready (audit mode=%s)", settings.audit.mode)


async def close_db() -> None:
    """Dispose the database engine. Called during FastAPI lifespan shutdown."""
    await engine.dispose()


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncGenerator[None, None]:
    """Initialise the database on entry and dispose the engine on exit."""
    await init_db()
    try:
        yield
    finally:
        await close_db()
