"""
Reward trigger task.

Entry point for triggering events published by other services: resolves
the source user's chain and enqueues one reward job per ancestor.
Failures raise so dramatiq retries the dispatch; dispatch is idempotent
per event_id.
"""

import dramatiq
from loguru import logger
from pydantic import ValidationError

from app.services.referral import (
    DispatchResult,
    RedisRewardQueue,
    ReferralCache,
    RewardDispatcher,
    TriggeringEvent,
)
from app.utils.exceptions import ReferralValidationError, TransientStoreError
from jobs.async_runner import run_async, task_resources
from jobs.broker import broker  # noqa: F401  (actors bind to this broker)


@dramatiq.actor(max_retries=5, time_limit=60_000)
def enqueue_reward_event(
    event_id: str,
    source_user_id: int,
    base_amount: str,
    event_type: str | None = None,
) -> None:
    """
    Dispatch referral rewards for one triggering event.

    Args:
        event_id: Globally unique event ID
        source_user_id: User who earned base_amount
        base_amount: Decimal as string
        event_type: Action type
    """
    try:
        event = TriggeringEvent(
            event_id=event_id,
            source_user_id=source_user_id,
            base_amount=base_amount,
            event_type=event_type,
        )
    except ValidationError as e:
        # Malformed events never become valid on retry
        logger.error(f"Rejected malformed reward event {event_id}: {e}")
        return

    try:
        result = run_async(_enqueue_reward_event_async(event))
    except ReferralValidationError as e:
        logger.error(
            f"Reward event {event_id} skipped, source chain is corrupt: {e}",
            extra={"event_id": event_id, "source_user_id": source_user_id},
        )
        return

    logger.info(
        f"Reward event {event_id} dispatched: "
        f"{result.enqueued} jobs enqueued, {result.duplicates} already known"
    )


async def _enqueue_reward_event_async(event: TriggeringEvent) -> DispatchResult:
    """Async implementation of reward dispatch."""
    async with task_resources() as (session_maker, redis_client):
        if redis_client is None:
            raise TransientStoreError("Redis unavailable, cannot enqueue rewards")

        queue = RedisRewardQueue(redis_client)
        cache = ReferralCache(redis_client)

        async with session_maker() as session:
            dispatcher = RewardDispatcher(session, queue, cache=cache)
            return await dispatcher.enqueue_reward_job(event)
