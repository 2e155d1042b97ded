"""
Database Session Management

Builds the async SQLAlchemy engine and session factory for PostgreSQL.
The application lifespan owns both; nothing here runs at import time.
"""

from __future__ import annotations

from typing import AsyncGenerator, Tuple

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .models import Base


def create_session_factory(
    database_url: str,
) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Create the async engine and its session factory.

    Returns
    -------
    Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]
        The engine (dispose it at shutdown) and a factory producing sessions
        that do not expire objects on commit.
    """
    engine = create_async_engine(
        database_url,
        echo=False,  # Set True for SQL debugging
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )
    factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return engine, factory


async def init_db(engine: AsyncEngine) -> None:
    """
    Ensure the pgvector extension and all tables exist.

    Idempotent and safe to run on every startup.
    """
    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)


async def get_async_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for FastAPI endpoints that need direct database access.

    Usage:
        @router.get("/items")
        async def get_items(session: AsyncSession = Depends(get_async_session)):
            ...
    """
    factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
