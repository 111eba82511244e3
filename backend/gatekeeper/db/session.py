# backend/gatekeeper/db/session.py
import logging
from collections.abc import AsyncGenerator

from fastapi import Depends
from fastapi_users_db_sqlalchemy import SQLAlchemyUserDatabase
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from gatekeeper.core.config import settings
from gatekeeper.db.models.user import User

logger = logging.getLogger(__name__)

async_engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def initialize_db_resources() -> None:
    """
    Create the async engine and session maker.
    Called by the lifespan manager.
    """
    global async_engine, AsyncSessionLocal

    if async_engine is not None:
        logger.info("Database resources already initialized.")
        return

    db_url = settings.DATABASE_URL
    if not db_url:
        raise ValueError("DATABASE_URL is empty.")

    engine = create_async_engine(db_url, pool_pre_ping=True, echo=settings.DB_ECHO)
    async_engine = engine
    AsyncSessionLocal = async_sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        class_=AsyncSession,
    )
    logger.info(
        "Asynchronous database engine (%s@...) and session maker configured.",
        db_url.split("@")[0].split("://")[0],
    )


async def dispose_db_resources() -> None:
    global async_engine, AsyncSessionLocal
    if async_engine:
        logger.info("Disposing asynchronous database engine.")
        await async_engine.dispose()
    async_engine = None
    AsyncSessionLocal = None


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    if AsyncSessionLocal is None:
        logger.critical("AsyncSessionLocal is not initialized.")
        raise RuntimeError(
            "AsyncSessionLocal is not initialized. Ensure DB resources are initialized via lifespan."
        )
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            logger.error("Async DB session rolled back due to an exception.", exc_info=True)
            raise


async def get_user_db(
    session: AsyncSession = Depends(get_async_session),
) -> AsyncGenerator[SQLAlchemyUserDatabase, None]:
    yield SQLAlchemyUserDatabase(session, User)


async def lifespan_db_manager(event_type: str) -> None:
    if event_type == "startup":
        logger.info("Lifespan: startup, initializing DB resources.")
        initialize_db_resources()
        try:
            async with async_engine.connect() as connection:
                await connection.execute(text("SELECT 1"))
        except Exception as e:
            logger.error("Lifespan: database connection test failed: %s", e, exc_info=True)
            await dispose_db_resources()
            raise RuntimeError(f"Database connection test failed on startup: {e}") from e
        logger.info("Lifespan: database connection successful.")

    elif event_type == "shutdown":
        logger.info("Lifespan: shutdown, disposing DB resources.")
        await dispose_db_resources()
