# backend/gatekeeper/api/deps.py
from collections.abc import AsyncGenerator

from fastapi import Depends
from redis.asyncio import Redis

from gatekeeper.core.config import settings
from gatekeeper.services.ephemeral_store import EphemeralStore


async def get_redis() -> AsyncGenerator[Redis, None]:
    """Redis client for pending logins, challenges and TOTP setup."""
    redis = Redis.from_url(settings.REDIS_URL, decode_responses=False)
    try:
        yield redis
    finally:
        await redis.aclose()


async def get_ephemeral_store(redis: Redis = Depends(get_redis)) -> EphemeralStore:
    return EphemeralStore(redis)
