"""
Distribution worker process.

Runs the reward distribution worker pool against the Redis queue and
forwards RewardDistributed events to Redis pub/sub.
Run with: python -m jobs.distribution_worker
"""

import asyncio
import signal

from loguru import logger

from app.config.database import async_engine, async_session_maker
from app.config.logging import setup_logging
from app.config.settings import settings
from app.services.referral import (
    DistributionWorkerPool,
    RedisEventPublisher,
    RedisRewardQueue,
    ReferralCache,
    RewardEventBus,
)
from app.utils.redis_utils import get_redis_client
from jobs.health import set_worker_pool, start_health_server, stop_health_server


async def main() -> None:
    """Run the worker pool until SIGINT/SIGTERM."""
    setup_logging("distribution_worker")

    redis_client = await get_redis_client()

    event_bus = RewardEventBus()
    event_bus.subscribe(RedisEventPublisher(redis_client))

    pool = DistributionWorkerPool(
        async_session_maker,
        RedisRewardQueue(redis_client),
        cache=ReferralCache(redis_client),
        event_bus=event_bus,
    )
    set_worker_pool(pool)

    await pool.start()
    runner = await start_health_server(port=settings.worker_health_check_port)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await stop_event.wait()
    logger.info("Shutdown requested, draining workers...")

    await pool.stop()
    await stop_health_server(runner)
    await redis_client.aclose()
    await async_engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
