"""Async database handle shared by the ingestion jobs and read queries."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine


class Database:
    """Owns the connection pool; opened and closed by the process entry point."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    @classmethod
    def from_url(
        cls,
        url: str,
        pool_size: int = 20,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> "Database":
        """Create a handle with a pooled engine.

        Args:
            url: SQLAlchemy async URL (postgresql+asyncpg://... or sqlite+aiosqlite://...).
            pool_size: Number of pooled connections (ignored by SQLite).
            max_overflow: Connections allowed above pool_size (ignored by SQLite).
            echo: Log every statement.

        Returns:
            A Database ready for use.
        """
        options: dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
        if not url.startswith("sqlite"):
            options.update(pool_size=pool_size, max_overflow=max_overflow)
        return cls(create_async_engine(url, **options))

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def insert(self, table: Table) -> Any:
        """An INSERT construct that supports ON CONFLICT for this dialect."""
        if self.dialect_name == "postgresql":
            return postgresql.insert(table)
        if self.dialect_name == "sqlite":
            return sqlite.insert(table)
        raise ValueError(f"Upserts are not supported on {self.dialect_name}")

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[AsyncConnection]:
        """A connection inside one transaction, committed on success, rolled back on error."""
        async with self.engine.begin() as conn:
            yield conn

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[AsyncConnection]:
        """A connection for read-only queries."""
        async with self.engine.connect() as conn:
            yield conn

    async def close(self) -> None:
        """Dispose of the pool and release every connection."""
        await self.engine.dispose()
