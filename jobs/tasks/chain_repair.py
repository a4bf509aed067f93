"""
Referral chain repair tasks.

Periodic full scan of referral chains (cycle truncation, depth flagging)
and an on-demand repair of a single user's chain.
"""

import dramatiq
from loguru import logger

from app.config.constants import (
    CHAIN_REPAIR_LOCK,
    DRAMATIQ_TIME_LIMIT_STANDARD,
    LOCK_TIMEOUT_STANDARD,
)
from app.services.referral import ChainRepairService, ReferralCache
from app.utils.distributed_lock import DistributedLock
from jobs.async_runner import run_async, task_resources
from jobs.broker import broker  # noqa: F401  (actors bind to this broker)


@dramatiq.actor(max_retries=1, time_limit=DRAMATIQ_TIME_LIMIT_STANDARD * 4)
def repair_referral_chains() -> None:
    """Scan all referred users and repair their chains."""
    logger.info("Starting referral chain repair scan...")

    try:
        totals = run_async(_repair_referral_chains_async())
        if totals is not None:
            logger.info(f"Referral chain repair complete: {totals}")

    except Exception as e:
        logger.exception(f"Referral chain repair failed: {e}")


@dramatiq.actor(max_retries=3, time_limit=60_000)
def repair_chain_for_user(user_id: int) -> None:
    """
    Repair a single user's chain (admin action).

    Args:
        user_id: User whose upline is checked
    """
    report = run_async(_repair_chain_for_user_async(user_id))
    logger.info(
        f"Chain repair for user {user_id}: "
        f"{'healthy' if report.healthy else 'repaired'}",
        extra={
            "user_id": user_id,
            "cycle_detected": report.cycle_detected,
            "flagged": report.flagged,
        },
    )


async def _repair_referral_chains_async() -> dict | None:
    """Async implementation of the full chain scan."""
    async with task_resources() as (session_maker, redis_client):
        lock = DistributedLock(redis_client=redis_client)
        async with lock.lock(
            CHAIN_REPAIR_LOCK, timeout=LOCK_TIMEOUT_STANDARD * 4
        ) as acquired:
            if not acquired:
                return None

            totals = {"scanned": 0, "cycles_fixed": 0, "flagged": 0, "errors": 0}

            async with session_maker() as session:
                service = ChainRepairService(session, cache=ReferralCache(redis_client))

                after_id = 0
                while True:
                    stats = await service.scan(after_id=after_id)
                    for key in totals:
                        totals[key] += stats[key]
                    if stats["last_id"] is None:
                        break
                    after_id = stats["last_id"]

                totals["flags_cleared"] = await service.recheck_flagged()

            return totals


async def _repair_chain_for_user_async(user_id: int):
    """Async implementation of single-user repair."""
    async with task_resources() as (session_maker, redis_client):
        async with session_maker() as session:
            service = ChainRepairService(session, cache=ReferralCache(redis_client))
            return await service.repair_chain(user_id)
