"""
Async SQLAlchemy engine and session factory.

Uses ``asyncpg`` as the PostgreSQL driver.  Each trip transition runs in its
own session / transaction, so ``pool_size + max_overflow`` caps the number
of transitions in flight at once.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from freight.config import settings


def make_engine(url: str) -> AsyncEngine:
    return create_async_engine(url, echo=False, pool_size=20, max_overflow=10)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Aggregates are mapped to plain dataclasses before commit, so rows
    # never need reloading afterwards.
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = make_engine(settings.database_url)
async_session_factory = make_session_factory(engine)


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""
