"""
Async SQLAlchemy engine and session factory.

``asyncpg`` is the PostgreSQL driver.  Handoff status polling is the
hottest path (every verified guest polls every few seconds), so the pool
is sized for many short read transactions rather than long writes.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from src.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_size=20,
    max_overflow=10,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for the booking, handoff and settlement tables."""
