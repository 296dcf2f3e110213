"""Async engine and session factory shared by the SQL repository."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from . import models  # noqa: F401  registers tables on SQLModel.metadata

_ASYNC_DRIVERS = {
    "sqlite://": "sqlite+aiosqlite:///",
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
}


def to_async_url(database_url: str) -> str:
    """Map plain ``sqlite://``/``postgres://`` URLs onto async drivers.

    URLs that already name a driver (``sqlite+...``, ``postgresql+...``) are
    returned untouched.
    """
    if database_url.startswith(("sqlite+", "postgresql+")):
        return database_url
    for plain, driver in _ASYNC_DRIVERS.items():
        if database_url.startswith(plain):
            return driver + database_url[len(plain):]
    raise ValueError(f"Unsupported database backend: {database_url}")


class WorkflowDB:
    """Owns the async engine; hands out sessions to the repository."""

    def __init__(self, database_url: str) -> None:
        self.url = to_async_url(database_url)
        is_sqlite = self.url.startswith("sqlite")
        self.engine = create_async_engine(
            self.url,
            connect_args={"check_same_thread": False} if is_sqlite else {},
        )
        self._sessions = async_sessionmaker(self.engine, expire_on_commit=False)

    async def init_db(self) -> None:
        """Create any missing tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self._sessions() as session:
            yield session

    async def dispose(self) -> None:
        await self.engine.dispose()
