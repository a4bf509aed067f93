"""
Maintenance scheduler.

Sends the periodic referral maintenance actors to the dramatiq broker and
serves health endpoints. Run with: python -m jobs.scheduler
"""

import asyncio
import signal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from app.config.logging import setup_logging
from app.config.settings import settings
from jobs.broker import broker  # noqa: F401  (actors bind to this broker)
from jobs.health import set_scheduler, start_health_server, stop_health_server
from jobs.tasks.chain_repair import repair_referral_chains
from jobs.tasks.referral_queue_cleanup import cleanup_referral_queue
from jobs.tasks.reward_retry import process_reward_retries


def create_scheduler() -> AsyncIOScheduler:
    """Build the scheduler with all periodic jobs registered."""
    scheduler = AsyncIOScheduler(timezone="UTC")

    scheduler.add_job(
        process_reward_retries.send,
        "interval",
        seconds=settings.retry_interval_seconds,
        id="process_reward_retries",
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        cleanup_referral_queue.send,
        "interval",
        seconds=settings.queue_cleanup_interval_seconds,
        id="cleanup_referral_queue",
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        repair_referral_chains.send,
        "interval",
        minutes=settings.chain_repair_interval_minutes,
        id="repair_referral_chains",
        max_instances=1,
        coalesce=True,
    )
    return scheduler


async def main() -> None:
    """Run the scheduler until SIGINT/SIGTERM."""
    setup_logging("scheduler")

    scheduler = create_scheduler()
    scheduler.start()
    set_scheduler(scheduler)
    runner = await start_health_server(port=settings.health_check_port)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info(f"Scheduler running with {len(scheduler.get_jobs())} jobs")
    await stop_event.wait()

    scheduler.shutdown(wait=False)
    await stop_health_server(runner)
    logger.info("Scheduler stopped")


if __name__ == "__main__":
    asyncio.run(main())
