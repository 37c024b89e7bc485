"""Async database engine and session lifecycle.

One engine per process, created lazily from the configured URL and
disposed on shutdown. SQLite URLs get their parent directory created so
a fresh checkout can start without setup.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from src.utils.config import DatabaseConfig
from src.utils.logger import get_logger

from .models import Base

logger = get_logger(__name__)

SQLITE_BUSY_TIMEOUT = 15.0


class Database:
    """Owns the async engine and the session factory for the record store.

    Args:
        config: Database URL and echo flag.
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self.config = config
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def dialect(self) -> str:
        return make_url(self.config.url).get_backend_name()

    def _connect(self) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
        if self._engine is not None and self._session_factory is not None:
            return self._engine, self._session_factory
        url = make_url(self.config.url)
        kwargs: dict = {"echo": self.config.echo}
        if url.get_backend_name() == "sqlite":
            if url.database and url.database != ":memory:":
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)
            # writers wait on a locked file instead of failing at once
            kwargs["connect_args"] = {"timeout": SQLITE_BUSY_TIMEOUT}
        else:
            kwargs.update(pool_size=10, max_overflow=20, pool_pre_ping=True)
        engine = create_async_engine(url, **kwargs)
        factory = async_sessionmaker(engine, expire_on_commit=False)
        self._engine, self._session_factory = engine, factory
        return engine, factory

    @property
    def engine(self) -> AsyncEngine:
        return self._connect()[0]

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._connect()[1]

    async def init(self) -> None:
        """Create the engine, verify connectivity and ensure the table exists."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database ready (%s)", self.dialect)

    async def ping(self) -> bool:
        """Run ``SELECT 1``; used by the health check."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as exc:
            logger.error("Database ping failed: %s", exc)
            return False

    async def close(self) -> None:
        """Dispose the engine on application shutdown."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
