"""
Database connection and session management for the sync engine
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pms_connectors.utils.logging import get_safe_logger

from .models import Base

logger = get_safe_logger("defense_sync.database.connection")


class Database:
    """Owns the async engine and hands out transactional sessions"""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        engine_options: Dict[str, Any] = {"echo": echo}
        if url.startswith("sqlite"):
            # Writers from parallel jobs wait on the file lock instead of failing
            engine_options["connect_args"] = {"timeout": 30}
        else:
            engine_options.update(pool_size=10, max_overflow=20, pool_pre_ping=True, pool_recycle=3600)
        self.engine = create_async_engine(url, **engine_options)
        self.session_factory = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def create_all(self) -> None:
        """Create missing tables"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_schema_ready", tables=len(Base.metadata.tables))

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session committed on success and rolled back on error"""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except BaseException:
                await session.rollback()
                raise

    async def health_check(self) -> Dict[str, Any]:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return {"status": "healthy"}
        except SQLAlchemyError as e:
            logger.error("database_health_check_failed", error=str(e))
            return {"status": "unhealthy", "error": str(e)}

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("database_connections_closed")
