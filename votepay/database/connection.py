"""Database connection and session management."""
from typing import Any, Dict

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from votepay.config import Settings

from .models import Base

logger = structlog.get_logger(__name__)


class Database:
    """
    Owns the async engine and session factory.

    Constructed once at process start and closed on shutdown.
    """

    def __init__(self, settings: Settings):
        """
        Initialize database engine.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self.engine: AsyncEngine = create_async_engine(
            settings.database_url, **self._engine_options(settings)
        )
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @staticmethod
    def _engine_options(settings: Settings) -> Dict[str, Any]:
        options: Dict[str, Any] = {"echo": settings.database_echo}
        if settings.database_url.startswith("sqlite"):
            # In-memory SQLite must share one connection across sessions
            if ":memory:" in settings.database_url or "mode=memory" in settings.database_url:
                options["poolclass"] = StaticPool
            options["connect_args"] = {"check_same_thread": False}
        else:
            options.update(
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_pre_ping=True,  # Verify connections before using
                pool_recycle=3600,  # Recycle connections after 1 hour
            )
        return options

    def session(self) -> AsyncSession:
        """Open a new session; use as an async context manager."""
        return self.session_factory()

    async def create_all(self) -> None:
        """Create all tables defined in models if they don't exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_tables_created")

    async def ping(self) -> None:
        """Run a trivial query; raises if the database is unreachable."""
        async with self.session() as db:
            result = await db.execute(text("SELECT 1"))
            result.scalar()

    async def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        await self.engine.dispose()
        logger.info("database_connections_closed")
