"""
Database Configuration for ContractEar

Async SQLAlchemy engine and session management. One DatabaseManager is
built per process by the application container and handed to every
repository; there is no module-level engine.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy import text
from sqlmodel import SQLModel

from app.config.settings import Settings


class DatabaseManager:
    """
    Manages async database connections and sessions.

    The engine is created lazily on first use from the injected settings.
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        """Get or create async engine with connection pooling."""
        if self._engine is None:
            self._initialize_engine()
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get or create session factory."""
        if self._session_factory is None:
            self._initialize_engine()
        return self._session_factory

    def _initialize_engine(self) -> None:
        """Initialize async engine; pool sizing only applies to server databases."""
        settings = self._settings
        engine_kwargs = {"echo": settings.database_echo}

        if not settings.is_sqlite:
            engine_kwargs.update(
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_timeout=settings.database_pool_timeout,
                pool_pre_ping=True,  # Verify connections before use
            )

        self._engine = create_async_engine(settings.database_url, **engine_kwargs)

        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Unit-of-work session: commits on success, rolls back on error.

        Usage:
            async with db.session() as session:
                result = await session.execute(query)
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> None:
        """Verify the connection works (called on app startup)."""
        async with self.session_factory() as session:
            await session.execute(text("SELECT 1"))

    async def create_tables(self) -> None:
        """Create all tables from SQLModel metadata."""
        # Register models with the metadata before create_all
        import app.infrastructure.db.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def drop_tables(self) -> None:
        """Drop all tables (use with caution, mainly for testing)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.drop_all)

    async def close(self) -> None:
        """Close engine and dispose of connection pool."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
