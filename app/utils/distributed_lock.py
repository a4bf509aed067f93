"""
Redis distributed lock.

SET NX EX with a random token; release is a compare-and-delete Lua script
so a lock that expired and was taken by another process is never released
by the previous holder.
"""

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from loguru import logger
from redis.asyncio import Redis

# Atomic compare-and-delete
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

LOCK_KEY_PREFIX = "lock:"


class DistributedLock:
    """
    Named locks shared by all processes using the same Redis.

    Example:
        lock = DistributedLock(redis_client=redis_client)
        async with lock.lock("reward_retry_processing", timeout=300) as acquired:
            if not acquired:
                return
            ...
    """

    def __init__(self, redis_client: Redis | None) -> None:
        """
        Initialize lock factory.

        Args:
            redis_client: Redis client; None runs the critical section
                unlocked (single-instance fallback)
        """
        self.redis_client = redis_client

    @asynccontextmanager
    async def lock(
        self,
        name: str,
        timeout: int = 300,
        wait_timeout: float = 0,
        retry_interval: float = 0.2,
    ) -> AsyncIterator[bool]:
        """
        Hold a named lock for the duration of the block.

        Args:
            name: Lock name
            timeout: Lock TTL in seconds (auto-release on crash)
            wait_timeout: Seconds to wait for a busy lock (0 = try once)
            retry_interval: Delay between acquisition attempts

        Yields:
            True if the lock is held, False if another process holds it
        """
        if self.redis_client is None:
            logger.warning(f"Redis unavailable, running '{name}' without lock")
            yield True
            return

        key = f"{LOCK_KEY_PREFIX}{name}"
        token = str(uuid.uuid4())
        acquired = await self._acquire(key, token, timeout, wait_timeout, retry_interval)

        if not acquired:
            logger.info(f"Lock '{name}' is held by another process, skipping")
            yield False
            return

        logger.debug(f"Lock '{name}' acquired")
        try:
            yield True
        finally:
            await self._release(key, token)

    async def _acquire(
        self,
        key: str,
        token: str,
        timeout: int,
        wait_timeout: float,
        retry_interval: float,
    ) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_timeout
        while True:
            if await self.redis_client.set(key, token, nx=True, ex=timeout):
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(retry_interval)

    async def _release(self, key: str, token: str) -> None:
        try:
            released = await self.redis_client.eval(RELEASE_SCRIPT, 1, key, token)
            if not released:
                logger.warning(f"Lock {key} expired before release")
        except Exception as e:
            # TTL frees it eventually
            logger.error(f"Failed to release lock {key}: {e}")
