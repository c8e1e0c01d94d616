"""
Database configuration and session management.

SQLite vs PostgreSQL Compatibility Notes:
-----------------------------------------
This module supports both SQLite (development, tests) and PostgreSQL
(production). SQLite drops timezone information from DateTime columns, so
values read back are naive UTC; see services.clock.ensure_utc.

The engine is built from Settings by the application lifespan rather than at
import time, so the same models can be bound to any database URL.
"""

import logging

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from config import Settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def normalize_database_url(database_url: str) -> str:
    """Convert plain driver URLs to their async equivalents."""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def create_engine_from_settings(settings: Settings, **overrides) -> AsyncEngine:
    database_url = normalize_database_url(settings.DATABASE_URL)
    is_sqlite = database_url.startswith("sqlite")

    engine_kwargs: dict = {"echo": False}
    if not is_sqlite:
        # pool_pre_ping guards against stale connections after DB restarts.
        # Total max connections = pool_size + max_overflow = 15
        engine_kwargs["pool_pre_ping"] = True
        engine_kwargs["pool_size"] = 5
        engine_kwargs["max_overflow"] = 10
    engine_kwargs.update(overrides)

    engine = create_async_engine(database_url, **engine_kwargs)

    # SQLite does not enforce foreign keys by default - must be enabled per connection
    if is_sqlite:

        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def get_db(request: Request):
    """
    Request-scoped session dependency.

    Routes call db.commit() explicitly when they want to persist changes.
    The rollback on exception is kept as a safety net.
    """
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    # Import models so they register on Base.metadata
    from models import auth_audit, refresh_token, user  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)

    logger.info("Database initialized successfully")
