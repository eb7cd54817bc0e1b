"""Database connection and session management."""
from typing import Any, Dict

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config import Settings
from database.models import Base


class Database:
    """
    Owns the async engine and session factory for one process.

    Created from ``Settings`` at startup and passed to the order store.
    """

    def __init__(self, settings: Settings, engine: AsyncEngine | None = None):
        """
        Initialize the database handle.

        Args:
            settings: Application settings
            engine: Optional pre-built engine (tests)
        """
        self.settings = settings
        self.engine = engine or create_async_engine(
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
        if not settings.database_url.startswith("sqlite"):
            options.update(
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_pre_ping=True,  # Verify connections before using
                pool_recycle=3600,  # Recycle connections after 1 hour
            )
        return options

    async def init_db(self) -> None:
        """
        Initialize database tables.

        Creates all tables defined in models if they don't exist.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Close database connections and dispose of the engine."""
        await self.engine.dispose()
