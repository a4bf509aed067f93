"""
Distribution queue.

At-least-once reward job channel on Redis lists:
- {prefix}:pending     jobs waiting for a worker (LPUSH / BLMOVE RIGHT)
- {prefix}:processing  jobs handed to a worker and not yet acked
- {prefix}:started     hash payload -> dequeue timestamp
- {prefix}:live        hash idempotency key -> last enqueue timestamp
- {prefix}:dead        poison payloads kept for inspection

A job stays in processing until acked, rejected or dead-lettered, so a
crashed worker never loses it: the stale sweep finds it via in_flight().
"""

from dataclasses import dataclass

from loguru import logger
from redis.asyncio import Redis

from app.config.settings import settings
from app.services.referral.schemas import RewardJob
from app.utils.datetime_utils import utc_now


@dataclass(frozen=True)
class InFlightJob:
    """Job currently held by a worker."""

    payload: str
    started_at: float | None


class RedisRewardQueue:
    """Reliable-list reward queue."""

    def __init__(self, redis_client: Redis, prefix: str | None = None) -> None:
        """
        Initialize queue.

        Args:
            redis_client: Redis client created with decode_responses=True
            prefix: Key prefix (defaults to settings.reward_queue_prefix)
        """
        self.redis = redis_client
        prefix = prefix or settings.reward_queue_prefix
        self.pending_key = f"{prefix}:pending"
        self.processing_key = f"{prefix}:processing"
        self.started_key = f"{prefix}:started"
        self.live_key = f"{prefix}:live"
        self.dead_key = f"{prefix}:dead"

    async def enqueue(self, job: RewardJob) -> None:
        """
        Publish a job.

        Copies of the same payload still sitting in pending or processing
        are dropped, so re-enqueueing a job never duplicates it.
        """
        payload = job.to_payload()
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.pending_key, 0, payload)
            pipe.lrem(self.processing_key, 0, payload)
            pipe.hdel(self.started_key, payload)
            pipe.hset(self.live_key, job.key, utc_now().timestamp())
            pipe.lpush(self.pending_key, payload)
            await pipe.execute()

        logger.debug(f"Reward job enqueued: {job.key}")

    async def dequeue(self, timeout: float) -> str | None:
        """
        Wait up to timeout seconds for a job and move it to processing.

        Returns:
            Raw payload (parsed by the worker), or None on timeout
        """
        payload = await self.redis.blmove(
            self.pending_key, self.processing_key, timeout, "RIGHT", "LEFT"
        )
        if payload is None:
            return None

        await self.redis.hset(self.started_key, payload, utc_now().timestamp())
        return payload

    async def ack(self, payload: str, key: str | None = None) -> None:
        """Job handled (credited or already final)."""
        await self._release(payload, key)

    async def reject(self, payload: str, key: str | None = None) -> None:
        """
        Job failed; the ledger row carries the retry schedule.

        The job is not requeued here: the retry service re-enqueues it when
        its backoff elapses.
        """
        await self._release(payload, key)

    async def dead_letter(
        self, payload: str, key: str | None = None, reason: str = ""
    ) -> None:
        """Move an unprocessable job to the dead list."""
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing_key, 0, payload)
            pipe.hdel(self.started_key, payload)
            if key:
                pipe.hdel(self.live_key, key)
            pipe.lpush(self.dead_key, payload)
            await pipe.execute()

        logger.warning(
            "Reward job dead-lettered",
            extra={"job_key": key, "reason": reason},
        )

    async def live_since(self, key: str) -> float | None:
        """
        Timestamp of the last enqueue of a job that is still live.

        Returns:
            UNIX timestamp, or None if no queue job exists for the key
        """
        value = await self.redis.hget(self.live_key, key)
        return float(value) if value is not None else None

    async def in_flight(self) -> list[InFlightJob]:
        """Jobs currently held by workers, with dequeue timestamps."""
        payloads = await self.redis.lrange(self.processing_key, 0, -1)
        if not payloads:
            return []

        started = await self.redis.hmget(self.started_key, payloads)
        return [
            InFlightJob(
                payload=payload,
                started_at=float(ts) if ts is not None else None,
            )
            for payload, ts in zip(payloads, started)
        ]

    async def pending_count(self) -> int:
        """Number of jobs waiting for a worker."""
        return await self.redis.llen(self.pending_key)

    async def dead_count(self) -> int:
        """Number of dead-lettered payloads."""
        return await self.redis.llen(self.dead_key)

    async def _release(self, payload: str, key: str | None) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing_key, 0, payload)
            pipe.hdel(self.started_key, payload)
            if key:
                pipe.hdel(self.live_key, key)
            await pipe.execute()
