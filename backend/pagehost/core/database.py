"""Process-wide database state.

The engine and session factory live on a single ``Database`` holder with an
explicit ``init()`` / ``is_ready()`` lifecycle. ``init()`` is idempotent and
guarded by a lock so concurrent callers share one initialisation.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from pagehost.core.config import settings

logger = logging.getLogger(__name__)


class Database:
    def __init__(self) -> None:
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._lock = asyncio.Lock()

    def is_ready(self) -> bool:
        return self._session_factory is not None

    async def init(self, url: str | None = None, *, create_all: bool = False) -> None:
        if self.is_ready():
            return
        async with self._lock:
            if self.is_ready():
                return
            engine = create_async_engine(url or settings.DATABASE_URL, echo=False, pool_pre_ping=True)
            if create_all:
                # Importing the package registers every model on Base.metadata
                from pagehost.models import Base

                async with engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
            self._engine = engine
            self._session_factory = async_sessionmaker(
                engine, class_=AsyncSession, expire_on_commit=False
            )
            logger.info("Database initialised")

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("Database.init() has not been called")
        return self._session_factory

    async def ping(self) -> bool:
        if self._engine is None:
            return False
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as exc:
            logger.warning("Database ping failed: %s", exc)
            return False

    async def dispose(self) -> None:
        async with self._lock:
            if self._engine is not None:
                await self._engine.dispose()
            self._engine = None
            self._session_factory = None


database = Database()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with database.session_factory() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return database.session_factory


@asynccontextmanager
async def worker_session() -> AsyncGenerator[AsyncSession, None]:
    """Short-lived session for Celery tasks, which run each job in a fresh event loop."""
    engine = create_async_engine(settings.DATABASE_URL, echo=False, poolclass=NullPool)
    try:
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with factory() as session:
            yield session
    finally:
        await engine.dispose()
