"""
Database configuration with SQLAlchemy 2.0 async support.
"""

import asyncio
import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from chatpush.settings import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def _engine_kwargs(database_url: str) -> dict:
    """Pool options only apply to server databases, not SQLite."""
    if database_url.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_pre_ping": True,  # Verify connections before using
    }


# Create async engine
engine: AsyncEngine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    **_engine_kwargs(settings.database_url),
)

# Session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def create_tables(bind: AsyncEngine) -> None:
    """Create all tables known to the metadata."""
    # Import all models to ensure they're registered
    from chatpush.models import device_token, push_subscription, user  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db(max_retries: int = 10, retry_delay: float = 5) -> None:
    """Initialize database (create tables if needed) with retry logic."""
    for attempt in range(max_retries):
        try:
            await create_tables(engine)
            logger.info("Database initialized successfully")
            return
        except OSError as e:
            # Managed databases can take a while to accept connections
            if attempt < max_retries - 1:
                logger.warning(
                    "Database connection attempt %d/%d failed: %s - retrying in %ss",
                    attempt + 1, max_retries, e, retry_delay,
                )
                await asyncio.sleep(retry_delay)
            else:
                logger.error("Database connection failed after %d attempts", max_retries)
                raise


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
