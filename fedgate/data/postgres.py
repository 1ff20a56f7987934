# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Database engine management.

Supports:
- PostgreSQL via asyncpg (production)
- SQLite via aiosqlite (development / single-node)

The active backend is determined by DATABASE_URL in settings.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from fedgate_core.exceptions import DBOpenError

from ..core.settings import DatabaseSettings

logger = logging.getLogger(__name__)

# Module-level singleton
_engine: AsyncEngine | None = None


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


async def init_database(settings: DatabaseSettings | None = None) -> async_sessionmaker[AsyncSession]:
    """Create the async engine and session factory.

    Called once during application startup (lifespan).
    For SQLite, also creates tables directly from metadata;
    PostgreSQL deployments run the Alembic migrations instead.

    Raises:
        DBOpenError: If the engine cannot be created or reached
    """
    global _engine

    if settings is None:
        from ..core.settings import get_settings

        settings = get_settings().database

    url = settings.url
    engine_kwargs: dict = {}

    if _is_sqlite(url):
        engine_kwargs.update(
            connect_args={"check_same_thread": False},
            pool_pre_ping=False,
        )
        logger.info("Initializing SQLite database: %s", url)
    else:
        engine_kwargs.update(
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_recycle=settings.pool_recycle_seconds,
            pool_pre_ping=True,
        )
        logger.info("Initializing PostgreSQL database")

    try:
        engine = create_async_engine(url, echo=settings.echo, **engine_kwargs)
        async with engine.begin() as conn:
            if _is_sqlite(url):
                from .models import Base

                await conn.run_sync(Base.metadata.create_all)
                logger.info("SQLite tables created from ORM metadata")
    except (SQLAlchemyError, OSError, ValueError) as e:
        raise DBOpenError(f"Failed to open database: {e}", cause=e) from e

    _engine = engine
    session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    logger.info("Database initialized")
    return session_factory


async def close_database() -> None:
    """Dispose the engine and release all connections.

    Called during application shutdown.
    """
    global _engine
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database connections closed")
    _engine = None


__all__ = [
    "init_database",
    "close_database",
]
