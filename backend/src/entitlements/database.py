"""Database session management with async SQLAlchemy."""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from entitlements.config import settings


def create_engine_for(url: str, **kwargs):
    """
    Create an async engine for the given URL.

    Pool sizing only applies to server databases; SQLite ignores it.
    """
    if not url.startswith("sqlite"):
        kwargs.setdefault("pool_size", 20)
        kwargs.setdefault("max_overflow", 10)
    return create_async_engine(url, echo=settings.debug, pool_pre_ping=True, **kwargs)


def create_session_factory(bind) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Create async engine
engine = create_engine_for(settings.database_url)

# Create async session factory
AsyncSessionLocal = create_session_factory(engine)


# Declarative base for all models
Base = declarative_base()
