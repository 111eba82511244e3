# backend/tests/conftest.py
import os

# Settings are read at import time, so the environment has to be ready first
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production-use-0123456789")
os.environ.setdefault("APP_ENV", "testing")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["BREACH_CHECK_ENABLED"] = "false"
os.environ["COOKIE_SECURE"] = "false"
os.environ.pop("SECURITY_LOG_PATH", None)
os.environ.pop("MAILGUN_API_KEY", None)

from collections.abc import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fakeredis import FakeAsyncRedis  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from gatekeeper.api.deps import get_ephemeral_store  # noqa: E402
from gatekeeper.core.config import settings  # noqa: E402
from gatekeeper.db.base import Base  # noqa: E402
from gatekeeper.db.session import get_async_session  # noqa: E402
from gatekeeper.main import app as fastapi_app  # noqa: E402
from gatekeeper.services.ephemeral_store import EphemeralStore  # noqa: E402


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Creates/Disposes an async engine on a throwaway SQLite file FOR EACH TEST FUNCTION."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'gatekeeper.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Yields a database session per function, using the function-scoped engine."""
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@pytest_asyncio.fixture(scope="function")
async def redis_client() -> AsyncGenerator[FakeAsyncRedis, None]:
    client = FakeAsyncRedis()
    try:
        yield client
    finally:
        await client.flushall()
        await client.aclose()


@pytest_asyncio.fixture(scope="function")
async def store(redis_client) -> EphemeralStore:
    return EphemeralStore(redis_client)


@pytest_asyncio.fixture(scope="function")
async def test_client(session_factory, store) -> AsyncGenerator[AsyncClient, None]:
    """
    Creates an httpx AsyncClient using ASGITransport for testing the FastAPI app.
    Each request gets its own session on the test database, Redis is faked.
    """

    async def override_get_async_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def override_get_ephemeral_store() -> EphemeralStore:
        return store

    fastapi_app.dependency_overrides[get_async_session] = override_get_async_session
    fastapi_app.dependency_overrides[get_ephemeral_store] = override_get_ephemeral_store

    async with AsyncClient(
        transport=ASGITransport(app=fastapi_app), base_url="http://test"
    ) as client:
        yield client

    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def api_prefix() -> str:
    return settings.API_V1_STR
