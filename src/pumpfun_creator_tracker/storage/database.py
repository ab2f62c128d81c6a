"""Engine ownership, unit-of-work sessions and the store error taxonomy.

PostgreSQL (asyncpg) is the production store. SQLite (aiosqlite) is accepted
for local runs and tests; an in-memory SQLite URL is pinned to one shared
connection so that every session sees the same tables.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from pumpfun_creator_tracker.storage.models import Base

logger = logging.getLogger(__name__)

_SYNC_POSTGRES_PREFIX = "postgresql://"
_ASYNC_POSTGRES_PREFIX = "postgresql+asyncpg://"


class StoreError(Exception):
    """Base exception for storage errors."""


class StoreUnavailable(StoreError):
    """The store cannot be reached. Fatal at startup."""


class StoreWriteFailed(StoreError):
    """Persisting a single item failed; callers skip the item."""


def normalize_async_database_url(database_url: str) -> str:
    """Swap a plain ``postgresql://`` URL for its asyncpg form."""
    if database_url.startswith(_SYNC_POSTGRES_PREFIX):
        logger.debug("Rewriting %s URL to use asyncpg", _SYNC_POSTGRES_PREFIX)
        return _ASYNC_POSTGRES_PREFIX + database_url[len(_SYNC_POSTGRES_PREFIX) :]
    return database_url


class DatabaseManager:
    """Owns the async engine and hands out transactional sessions.

    The connection pool is the only resource shared by the backfill, the
    polling loops, the wallet tracker and the API. The engine is created
    lazily on first use and can be disposed and recreated.
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> None:
        self.database_url = normalize_async_database_url(database_url)
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._echo = echo

        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def _engine_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"echo": self._echo}
        if self.is_sqlite:
            if ":memory:" in self.database_url:
                options["poolclass"] = StaticPool
        else:
            options.update(
                pool_size=self._pool_size,
                max_overflow=self._max_overflow,
                pool_pre_ping=True,
            )
        return options

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self.database_url, **self._engine_options())
        return self._engine

    def _session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._sessions is None:
            self._sessions = async_sessionmaker(bind=self.engine, expire_on_commit=False)
        return self._sessions

    @asynccontextmanager
    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that commits on clean exit and rolls back otherwise.

        One ``async with`` block is one unit of work.
        """
        async with self._session_factory()() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def check_connection(self) -> None:
        """Run ``SELECT 1`` against the store.

        Raises:
            StoreUnavailable: If the database cannot be reached.
        """
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"Database unreachable: {e}") from e

    async def init_schema_async(self) -> None:
        """Create every table directly; production schemas come from alembic."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Creator store schema created")

    async def dispose_async(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.info("Database connections released")
