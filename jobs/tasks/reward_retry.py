"""
Reward retry task.

Moves FAILED reward transactions to RETRY_SCHEDULED or the DLQ and
re-enqueues retries whose backoff has elapsed.
Runs every minute.
"""

import dramatiq
from loguru import logger

from app.config.constants import (
    DRAMATIQ_TIME_LIMIT_STANDARD,
    LOCK_TIMEOUT_STANDARD,
    RETRY_PROCESSING_LOCK,
)
from app.services.referral import RedisRewardQueue
from app.services.reward_retry_service import RewardRetryService
from app.utils.distributed_lock import DistributedLock
from jobs.async_runner import run_async, task_resources
from jobs.broker import broker  # noqa: F401  (actors bind to this broker)


@dramatiq.actor(max_retries=3, time_limit=DRAMATIQ_TIME_LIMIT_STANDARD)
def process_reward_retries() -> None:
    """
    Process failed and due reward transactions.

    Backoff doubles per failure (1min, 2min, 4min, ...); transactions are
    dead-lettered after reward_max_retries failures.
    """
    logger.info("Starting reward retry processing...")

    try:
        stats = run_async(_process_reward_retries_async())
        if stats is not None:
            logger.info(f"Reward retry processing complete: {stats}")

    except Exception as e:
        logger.exception(f"Reward retry processing failed: {e}")


async def _process_reward_retries_async() -> dict | None:
    """Async implementation of reward retry processing."""
    async with task_resources() as (session_maker, redis_client):
        if redis_client is None:
            logger.error("Redis unavailable, reward retries postponed")
            return None

        lock = DistributedLock(redis_client=redis_client)
        async with lock.lock(
            RETRY_PROCESSING_LOCK, timeout=LOCK_TIMEOUT_STANDARD
        ) as acquired:
            if not acquired:
                return None

            async with session_maker() as session:
                retry_service = RewardRetryService(
                    session, RedisRewardQueue(redis_client)
                )
                return await retry_service.process_retries()
