"""
Database Configuration
Async SQLAlchemy setup with session management.
"""

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from marketplace.config import get_settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def utc_now() -> datetime:
    """Return current UTC time."""
    return datetime.now(timezone.utc)


# Create async engine
settings = get_settings()
engine = create_async_engine(
    settings.database_url,
    echo=False,
    future=True,
    # SQLite specific settings
    connect_args={"check_same_thread": False} if settings.is_sqlite else {},
)

# Session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def init_db() -> None:
    """Initialize database tables."""
    # Register every table on Base.metadata before create_all
    import marketplace.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Dependency returning the session factory.

    Services open one short-lived session per operation from this factory,
    so tests can swap in a factory bound to their own engine.
    """
    return async_session_factory
