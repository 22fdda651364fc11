"""Database connection and session management."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from cleaning_sync.config import settings
from cleaning_sync.db.models import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL."""
    return create_async_engine(
        database_url,
        echo=echo,
        connect_args={"timeout": 30},
    )


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine = build_engine(settings.database_url, echo=settings.debug)

async_session_maker = build_session_maker(engine)


async def init_db(target: Optional[AsyncEngine] = None) -> None:
    """Initialize the database, creating all tables."""
    target = target or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await _run_migrations(target)


async def _run_migrations(target: AsyncEngine) -> None:
    """Run lightweight schema migrations for new columns on existing tables."""
    migrations = [
        "ALTER TABLE properties ADD COLUMN last_sync_status VARCHAR(20)",
        "ALTER TABLE properties ADD COLUMN last_sync_error TEXT",
        "ALTER TABLE cleaning_jobs ADD COLUMN reservation_url VARCHAR(1000)",
    ]
    for stmt in migrations:
        try:
            async with target.begin() as conn:
                await conn.execute(text(stmt))
            logger.info("Migration applied: %s", stmt)
        except OperationalError:
            logger.debug("Migration already applied: %s", stmt)


@asynccontextmanager
async def get_session_context(
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Get a database session as a context manager."""
    maker = session_maker or async_session_maker
    async with maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
