"""Per-entity locks that serialize reconciliation of a single entity.

This module provides:
- LocalEntityLock: asyncio locks for a single-process deployment
- RedisEntityLock: distributed locks (SET NX + TTL) shared by all workers
- Bounded waiting: a lock that cannot be acquired in time raises DownstreamFailure
"""

import asyncio
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import AsyncContextManager, Protocol, runtime_checkable

import redis.asyncio as redis
import structlog

from paysync.core.exceptions import DownstreamFailure

logger = structlog.get_logger(__name__)


@runtime_checkable
class EntityLock(Protocol):
    """Mutual exclusion keyed by entity (e.g. ``subscription:sub_123``)."""

    def lock(self, key: str) -> AsyncContextManager[None]:
        """Hold the lock for ``key`` for the duration of the block.

        Raises:
            DownstreamFailure: If the lock is not acquired within the wait timeout
        """
        ...


class LocalEntityLock:
    """In-process entity locks. Only correct when a single worker handles deliveries."""

    def __init__(self, wait_timeout: float = 10.0):
        self.wait_timeout = wait_timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncGenerator[None, None]:
        entity_lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            try:
                async with asyncio.timeout(self.wait_timeout):
                    await entity_lock.acquire()
            except TimeoutError as exc:
                raise DownstreamFailure("entity_lock", f"timed out waiting for {key}") from exc
            try:
                yield
            finally:
                entity_lock.release()
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                # Nobody else holds or waits on this key: drop it so the map stays bounded
                del self._waiters[key]
                del self._locks[key]


class RedisEntityLock:
    """Distributed entity locks using Redis."""

    LOCK_PREFIX = "paysync:lock:"
    DEFAULT_TTL = 30
    POLL_INTERVAL = 0.05

    def __init__(
        self,
        client: redis.Redis,
        ttl: int | None = None,
        wait_timeout: float = 10.0,
    ):
        self.client = client
        self.ttl = ttl or self.DEFAULT_TTL
        self.wait_timeout = wait_timeout

    def _lock_key(self, key: str) -> str:
        """Generate the Redis key for an entity lock."""
        return f"{self.LOCK_PREFIX}{key}"

    async def acquire(self, key: str, owner: str) -> bool:
        """Attempt to acquire the lock once.

        Args:
            key: Entity key
            owner: Unique token identifying this holder

        Returns:
            True if lock acquired, False if held by another owner
        """
        lock_value = f"{owner}:{datetime.now(UTC).isoformat()}"
        result = await self.client.set(self._lock_key(key), lock_value, nx=True, ex=self.ttl)
        return bool(result)

    async def release(self, key: str, owner: str) -> bool:
        """Release the lock if still owned by ``owner``.

        Returns:
            True if released, False if the lock expired or changed hands
        """
        redis_key = self._lock_key(key)
        current = await self.client.get(redis_key)
        if current and current.startswith(f"{owner}:"):
            await self.client.delete(redis_key)
            return True
        return False

    async def is_locked(self, key: str) -> bool:
        return await self.client.exists(self._lock_key(key)) > 0

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncGenerator[None, None]:
        owner = uuid.uuid4().hex
        acquired = False
        try:
            try:
                async with asyncio.timeout(self.wait_timeout):
                    while not await self.acquire(key, owner):
                        await asyncio.sleep(self.POLL_INTERVAL)
                    acquired = True
            except TimeoutError as exc:
                raise DownstreamFailure("entity_lock", f"timed out waiting for {key}") from exc
            except redis.RedisError as exc:
                raise DownstreamFailure("entity_lock", str(exc)) from exc

            yield

        finally:
            if acquired:
                try:
                    released = await self.release(key, owner)
                except redis.RedisError as exc:
                    logger.warning("entity_lock_release_failed", key=key, error=str(exc))
                else:
                    if not released:
                        logger.warning("entity_lock_expired_before_release", key=key, ttl=self.ttl)
