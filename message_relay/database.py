"""Database configuration and connection management."""

from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from message_relay import config


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


def build_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """Create an async engine for ``database_url`` (defaults to DATABASE_URL)."""
    url = database_url or config.DATABASE_URL
    connect_args = {}
    if url.startswith("sqlite"):
        # Concurrent writers wait on the file lock instead of failing fast
        connect_args["timeout"] = 30
    return create_async_engine(
        url,
        echo=config.SQL_DEBUG if echo is None else echo,
        future=True,
        connect_args=connect_args,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get a database session from the application's factory."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(engine: AsyncEngine, create_tables: bool = False) -> None:
    """Initialize the database on startup.

    Production schemas are managed by alembic; ``create_tables`` is for local
    sqlite databases and tests.
    """
    if create_tables:
        # Import models so they register on Base.metadata
        from message_relay.models import db  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    """Close database connections on shutdown."""
    await engine.dispose()
