#!/usr/bin/env python3
"""
FundedDesk – Database Manager (Singleton Edition)
- One engine + sessionmaker per process.
- SQLite URLs (tests, local dev) share a single in-memory connection.
"""
from contextlib import asynccontextmanager
from typing import Optional
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.exc import TimeoutError as SA_TimeoutError
from sqlalchemy.pool import StaticPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from core.config import settings
from utils.logger import setup_logger

logger = setup_logger("DBManager")

class DatabaseManager:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(DatabaseManager, cls).__new__(cls)
            cls._instance.engine = None
            cls._instance.async_session = None
            cls._instance._initialized = False
        return cls._instance

    @property
    def is_initialized(self) -> bool:
        return self._initialized and self.engine is not None

    async def init_db(self, url: Optional[str] = None):
        """Initializes the connection pool if not already active."""
        if self.is_initialized:
            return

        url = url or settings.DATABASE_URL
        is_sqlite = url.startswith("sqlite")
        logger.info(f"🔌 Connecting to Database: {'sqlite' if is_sqlite else settings.POSTGRES_SERVER}")

        try:
            if is_sqlite:
                self.engine = create_async_engine(
                    url,
                    echo=False,
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False},
                )
            else:
                self.engine = create_async_engine(
                    url,
                    echo=False,
                    pool_pre_ping=True,
                    pool_size=20,
                    max_overflow=40,
                    pool_recycle=1800,
                    pool_timeout=30,
                )

            self.async_session = async_sessionmaker(
                bind=self.engine,
                expire_on_commit=False,
                class_=AsyncSession
            )

            from database.models import Base
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            self._initialized = True
            logger.info("✅ Database initialized (Singleton Mode)")

        except Exception as e:
            logger.critical(f"🔥 Database Init Failed: {e}")
            raise

    @asynccontextmanager
    async def get_session(self):
        """Yields a session from the shared pool; rolls back on error."""
        if not self.is_initialized:
            await self.init_db()

        session: AsyncSession = self.async_session()
        try:
            yield session
        except SA_TimeoutError:
            logger.critical("❌ DB POOL EXHAUSTED! Check max_connections.")
            raise
        except Exception as e:
            await session.rollback()
            logger.error(f"DB Session error: {e}")
            raise
        finally:
            await session.close()

    @retry(
        retry=retry_if_exception_type(SA_TimeoutError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def _commit(self, session: AsyncSession):
        await session.commit()

    async def safe_commit(self, session: AsyncSession):
        """Commits transaction; retries pool timeouts, rolls back anything else."""
        try:
            await self._commit(session)
        except Exception as e:
            logger.error(f"Commit failed: {e}")
            await session.rollback()
            raise

    async def close(self):
        """Closes the shared connection pool."""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.async_session = None
            self._initialized = False
            logger.info("🛑 Database pool closed.")

def get_db_manager() -> DatabaseManager:
    return DatabaseManager()
