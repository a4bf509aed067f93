"""
Referral queue cleanup task.

Recovers reward jobs lost between the ledger and the queue: jobs held by
crashed or timed-out workers and PENDING rows never (or long ago) enqueued.
"""

import dramatiq
from loguru import logger

from app.config.constants import (
    DRAMATIQ_TIME_LIMIT_STANDARD,
    LOCK_TIMEOUT_STANDARD,
    QUEUE_CLEANUP_LOCK,
)
from app.services.referral import RedisRewardQueue
from app.services.reward_retry_service import RewardRetryService
from app.utils.distributed_lock import DistributedLock
from jobs.async_runner import run_async, task_resources
from jobs.broker import broker  # noqa: F401  (actors bind to this broker)


@dramatiq.actor(max_retries=3, time_limit=DRAMATIQ_TIME_LIMIT_STANDARD)
def cleanup_referral_queue() -> None:
    """Sweep stale in-flight jobs and stale PENDING reward transactions."""
    logger.info("Starting referral queue cleanup...")

    try:
        stats = run_async(_cleanup_referral_queue_async())
        if stats is not None:
            logger.info(f"Referral queue cleanup complete: {stats}")

    except Exception as e:
        logger.exception(f"Referral queue cleanup failed: {e}")


async def _cleanup_referral_queue_async() -> dict | None:
    """Async implementation of queue cleanup."""
    async with task_resources() as (session_maker, redis_client):
        if redis_client is None:
            logger.error("Redis unavailable, referral queue cleanup skipped")
            return None

        lock = DistributedLock(redis_client=redis_client)
        async with lock.lock(
            QUEUE_CLEANUP_LOCK, timeout=LOCK_TIMEOUT_STANDARD
        ) as acquired:
            if not acquired:
                return None

            async with session_maker() as session:
                retry_service = RewardRetryService(
                    session, RedisRewardQueue(redis_client)
                )
                return await retry_service.cleanup_queue()
