"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode — create_async_engine for connection pooling,
async_sessionmaker for per-operation sessions.

The engine is built once in the app lifespan and stored on ``app.state``.
Services receive the session factory explicitly instead of importing a
module-level engine, so tests can hand them a SQLite engine instead.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from starlette.requests import HTTPConnection

from heartline.db.models import Base
from heartline.errors import DependencyError

logger = structlog.get_logger()


class Database:
    """Owns the engine (connection pool) and the session factory."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        # Session factory: each operation gets its own session.
        self.session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_url(cls, url: str, *, echo: bool = False) -> "Database":
        # Connection pool: min 5, max 20 connections (Postgres only).
        kwargs = {"echo": echo}
        if url.startswith("postgresql"):
            kwargs.update(pool_size=5, max_overflow=15)
        return cls(create_async_engine(url, **kwargs))

    async def create_schema(self) -> None:
        """Create all tables that don't exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


def get_database(conn: HTTPConnection) -> Database:
    """FastAPI dependency — works for both HTTP requests and WebSockets."""
    return conn.app.state.database


@asynccontextmanager
async def store_session(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Session for one store operation.

    Learn: Concurrent command tasks on one WebSocket must never share an
    AsyncSession, so every store call opens its own from the pool.
    SQLAlchemy failures leave as DependencyError; domain errors raised
    inside the block pass through untouched.
    """
    try:
        async with factory() as session:
            yield session
    except SQLAlchemyError as e:
        logger.error("heartline.store.error", error=str(e))
        raise DependencyError("Store unavailable") from e
