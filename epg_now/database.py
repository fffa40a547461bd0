import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy import event

from epg_now.models import Base

logger = logging.getLogger(__name__)


def _create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async session factory from engine"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


class Database:
    """Owns the SQLite engine and session factory for one database file."""

    def __init__(
        self,
        database_path: str,
        *,
        journal_mode: str = "WAL",
        cache_size_kb: int = 64000,
    ) -> None:
        self.database_path = database_path
        self._journal_mode = journal_mode
        self._cache_size_kb = cache_size_kb
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def initialized(self) -> bool:
        return self._session_factory is not None

    async def init(self) -> None:
        """Initialize database schema and engine (idempotent)"""
        if self.initialized:
            return

        logger.info(f"Initializing database at {self.database_path}")
        Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)

        engine = create_async_engine(
            f"sqlite+aiosqlite:///{self.database_path}",
            echo=False,
            pool_pre_ping=True,
            connect_args={"timeout": 30, "check_same_thread": False},
        )

        journal_mode = self._journal_mode
        cache_size_kb = self._cache_size_kb

        def configure_sqlite(dbapi_conn, _):
            """Configure SQLite connection parameters"""
            cursor = dbapi_conn.cursor()
            cursor.execute(f"PRAGMA journal_mode = {journal_mode}")
            cursor.execute(f"PRAGMA cache_size = -{cache_size_kb}")
            cursor.close()

        event.listen(engine.sync_engine, "connect", configure_sqlite)

        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except Exception:
            await engine.dispose()
            raise

        self._engine = engine
        self._session_factory = _create_session_factory(engine)

        logger.info("Database initialized successfully")

    async def close(self) -> None:
        """Close database connections on shutdown"""
        if self._engine:
            await self._engine.dispose()
            logger.info("Database connections closed")
        self._engine = None
        self._session_factory = None

    def get_session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get the session factory (initialized in init)"""
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call init() during startup.")
        return self._session_factory

    @asynccontextmanager
    async def session_scope(self, *, begin: bool = True) -> AsyncIterator[AsyncSession]:
        """
        Provide an async session context manager with optional automatic transaction handling.

        Args:
            begin: When True (default), wrap the session in `session.begin()` for auto commit/rollback.
                   When False, caller is responsible for transaction demarcation and commit/rollback.
        """
        session_factory = self.get_session_factory()

        async with session_factory() as session:
            if begin:
                async with session.begin():
                    yield session
            else:
                try:
                    yield session
                except Exception:
                    await session.rollback()
                    raise
                else:
                    await session.commit()
