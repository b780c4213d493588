"""Redis-backed distributed lock for compensation and payroll run writes."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable, TypeVar
from uuid import uuid4

from redis.exceptions import RedisError

from payroll_service.errors import LockBackendError

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Delete only if the caller still owns the key
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

# Push out the expiry only if the caller still owns the key
EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
else
    return 0
end
"""


def compensation_lock_key(employee_id: int) -> str:
    return f"lock:compensation:user:{employee_id}"


def payroll_batch_lock_key(org_id: int, month: date) -> str:
    return f"lock:payroll:month:{org_id}:{month:%Y-%m}"


def payroll_run_lock_key(employee_id: int, month: date) -> str:
    return f"lock:payroll:run:{employee_id}:{month:%Y-%m}"


class DistributedLockService:
    """Mutual exclusion keyed by an arbitrary string.

    A lock is a Redis key set with ``SET key token NX PX ttl``. The owner
    token is returned to the caller and is required to release or extend
    the lock, so a holder whose lease expired cannot delete a lock that a
    later caller acquired.

    Usage:
        locks = DistributedLockService(redis_client)

        token = await locks.acquire("lock:compensation:user:7", ttl=30)
        if token is None:
            ...  # contended, report a conflict
        try:
            ...
        finally:
            await locks.release("lock:compensation:user:7", token)

        # or
        result = await locks.with_lock(key, do_work, ttl=30, max_retries=3)

        # or
        async with locks.hold(key, ttl=60) as token:
            if token is None:
                ...
    """

    def __init__(
        self,
        redis_client: Redis,
        default_ttl: float = 30.0,
        default_retry_delay: float = 0.1,
        default_max_retries: int = 10,
    ):
        self.redis = redis_client
        self.default_ttl = default_ttl
        self.default_retry_delay = default_retry_delay
        self.default_max_retries = default_max_retries
        self._release_script = redis_client.register_script(RELEASE_SCRIPT)
        self._extend_script = redis_client.register_script(EXTEND_SCRIPT)

    async def acquire(
        self,
        key: str,
        ttl: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        token: str | None = None,
    ) -> str | None:
        """Acquire a lock, returning the owner token or None.

        None means the lock stayed held by someone else for every attempt,
        or the backend failed; either way the caller must not proceed.
        """
        try:
            return await self._acquire(key, ttl, max_retries, retry_delay, token)
        except LockBackendError:
            return None

    async def release(self, key: str, token: str) -> bool:
        """Release a lock if ``token`` still owns it. Never raises."""
        try:
            result = await self._release_script(keys=[key], args=[token])
        except RedisError as e:
            logger.error("Error releasing lock %s: %s", key, e)
            return False

        if result == 1:
            logger.debug("Lock released: %s", key)
            return True

        logger.warning("Failed to release lock (expired or not owner): %s", key)
        return False

    async def extend(self, key: str, token: str, ttl: float) -> bool:
        """Reset the lease of a held lock to ``ttl`` seconds."""
        try:
            result = await self._extend_script(keys=[key], args=[token, _to_ms(ttl)])
        except RedisError as e:
            logger.error("Error extending lock %s: %s", key, e)
            return False
        return result == 1

    @asynccontextmanager
    async def hold(
        self,
        key: str,
        ttl: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ) -> AsyncIterator[str | None]:
        """Hold ``key`` for the body of an ``async with`` block.

        Yields the owner token, or None if the lock could not be acquired
        (the body then runs unlocked and must bail out). The lock is released
        on every exit path.

        Raises:
            LockBackendError: if the backend failed during acquisition
        """
        token = await self._acquire(key, ttl, max_retries, retry_delay, None)
        if token is None:
            logger.warning("Could not acquire lock for operation: %s", key)
            yield None
            return

        try:
            yield token
        finally:
            await self.release(key, token)

    async def with_lock(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
        ttl: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ) -> T | None:
        """Run ``fn`` while holding ``key``.

        Returns None if the lock could not be acquired. Exceptions raised by
        ``fn`` propagate after the lock is released.

        Raises:
            LockBackendError: if the backend failed during acquisition
        """
        async with self.hold(key, ttl, max_retries, retry_delay) as token:
            if token is None:
                return None
            return await fn()

    async def _acquire(
        self,
        key: str,
        ttl: float | None,
        max_retries: int | None,
        retry_delay: float | None,
        token: str | None,
    ) -> str | None:
        ttl = self.default_ttl if ttl is None else ttl
        max_retries = self.default_max_retries if max_retries is None else max_retries
        retry_delay = self.default_retry_delay if retry_delay is None else retry_delay
        token = token or uuid4().hex
        ttl_ms = _to_ms(ttl)

        attempt = 0
        while True:
            try:
                acquired = await self.redis.set(key, token, px=ttl_ms, nx=True)
            except RedisError as e:
                logger.error("Error acquiring lock %s: %s", key, e)
                raise LockBackendError(
                    f"Lock backend unavailable while acquiring {key}",
                    {"key": key},
                ) from e

            if acquired:
                logger.debug("Lock acquired: %s", key)
                return token

            if attempt >= max_retries:
                logger.warning(
                    "Failed to acquire lock after %d retries: %s", max_retries, key
                )
                return None

            attempt += 1
            await asyncio.sleep(retry_delay)


def _to_ms(seconds: float) -> int:
    return max(1, int(seconds * 1000))
