from typing import Any, AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from jobrelay.config.settings import Settings, get_settings


class Base(DeclarativeBase):
    """Declarative base for the execution record tables."""


def _engine_options(settings: Settings) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.debug}
    # SQLite engines manage their own pool
    if settings.database_url.startswith("sqlite"):
        return options

    options.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=True,
    )
    return options


class Database:
    """Engine and session factory shared by the store and the health check."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = create_async_engine(
            settings.database_url, **_engine_options(settings)
        )
        # Store operations read attributes after their session has closed
        self.SessionLocal = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def close(self):
        await self.engine.dispose()


# Created lazily so importing the app never opens a connection
_database: Database | None = None


def get_database(settings: Settings = Depends(get_settings)) -> Database:
    """Get or create the process-wide database instance."""
    global _database
    if _database is None:
        _database = Database(settings)
    return _database


async def close_database() -> None:
    """Dispose the process-wide database instance, if one was created."""
    global _database
    if _database is not None:
        await _database.close()
        _database = None


async def get_session(
    database: Database = Depends(get_database),
) -> AsyncGenerator[AsyncSession, None]:
    """Dependency injection for a request-scoped session."""
    async with database.SessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
