"""Process-wide resources opened at startup and closed at shutdown."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from payroll_service.config import Settings
from payroll_service.database import create_engine, create_session_factory
from payroll_service.services.locking_service import DistributedLockService
from payroll_service.services.user_lookup import HttpUserLookup, UserLookup

logger = logging.getLogger(__name__)


@dataclass
class AppResources:
    """Database, Redis and user-service handles shared by all requests."""

    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    redis: Redis
    lock_service: DistributedLockService
    user_lookup: UserLookup | None = None
    http_client: httpx.AsyncClient | None = None

    @classmethod
    async def open(cls, settings: Settings) -> AppResources:
        """Create engine, Redis client and user lookup from settings."""
        engine = create_engine(settings)
        redis = Redis.from_url(settings.redis_url, decode_responses=True)
        lock_service = DistributedLockService(
            redis,
            default_ttl=settings.lock_default_ttl,
            default_retry_delay=settings.lock_retry_delay,
            default_max_retries=settings.lock_max_retries,
        )

        http_client = None
        user_lookup = None
        if settings.user_service_url:
            http_client = httpx.AsyncClient(
                base_url=settings.user_service_url,
                timeout=settings.user_service_timeout,
            )
            user_lookup = HttpUserLookup(http_client)

        logger.info(
            "Resources opened (user lookup %s)",
            "enabled" if user_lookup is not None else "disabled",
        )
        return cls(
            engine=engine,
            session_factory=create_session_factory(engine),
            redis=redis,
            lock_service=lock_service,
            user_lookup=user_lookup,
            http_client=http_client,
        )

    async def close(self) -> None:
        """Release every handle."""
        if self.http_client is not None:
            await self.http_client.aclose()
        await self.redis.aclose()
        await self.engine.dispose()
        logger.info("Resources closed")
