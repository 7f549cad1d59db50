"""Database utilities for the ListLens service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable

from sqlalchemy import MetaData, event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData()


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        if self._engine.dialect.name == "sqlite":
            event.listen(
                self._engine.sync_engine, "connect", self._enable_sqlite_foreign_keys
            )
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)

    @staticmethod
    def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a series of operations."""

        async with self.session_factory() as session:
            yield session


async def insert_ignore(
    session: AsyncSession,
    model: type[Base],
    values: dict[str, Any],
    *,
    conflict_columns: Iterable[str],
) -> bool:
    """Insert a row unless it collides with a unique key.

    Returns ``True`` when this call created the row. The statement is atomic
    at the storage layer so concurrent callers racing on the same key never
    see a duplicate-key error; exactly one of them wins.
    """

    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        stmt = sqlite.insert(model)
    elif dialect == "postgresql":
        stmt = postgresql.insert(model)
    else:
        raise RuntimeError(f"Conflict-free inserts are not supported on {dialect}")
    stmt = stmt.values(**values).on_conflict_do_nothing(
        index_elements=list(conflict_columns)
    )
    result = await session.execute(stmt)
    return bool(result.rowcount)
