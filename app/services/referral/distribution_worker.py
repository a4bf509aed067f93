"""
Distribution worker pool.

N asyncio consumers over the reward queue. Each job runs in its own
session; outcomes map to queue operations:
- credited / already final  -> ack
- store or unknown failure  -> ledger FAILED (retry_count + 1), reject
- malformed / invalid tier / unknown beneficiary -> DEAD_LETTER, dead list
- credit timeout            -> nothing (outcome unknown, stale sweep redelivers)
"""

import asyncio
from enum import StrEnum

from loguru import logger
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config.settings import settings
from app.services.referral.cache import ReferralCache
from app.services.referral.events import RewardEventBus
from app.services.referral.queue import RedisRewardQueue
from app.services.referral.reward_calculator import RewardCalculator
from app.services.referral.reward_creditor import RewardCreditor
from app.services.referral.schemas import RewardJob
from app.utils.exceptions import is_poison, is_transient


class JobOutcome(StrEnum):
    """Worker-level result of one queue job."""

    ACKED = "acked"
    FAILED = "failed"
    DEAD_LETTERED = "dead_lettered"
    TIMED_OUT = "timed_out"


class DistributionWorkerPool:
    """Fixed-size pool of reward distribution workers."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        queue: RedisRewardQueue,
        cache: ReferralCache | None = None,
        event_bus: RewardEventBus | None = None,
        calculator: RewardCalculator | None = None,
        workers: int | None = None,
        poll_timeout: float | None = None,
        credit_timeout: float | None = None,
    ) -> None:
        """
        Initialize worker pool.

        Args:
            session_maker: Session factory (one session per job)
            queue: Reward queue
            cache: Cache layer
            event_bus: RewardDistributed subscribers
            calculator: Reward calculator
            workers: Number of concurrent workers
            poll_timeout: Dequeue blocking timeout, seconds
            credit_timeout: Bound on one credit operation, seconds
        """
        self.session_maker = session_maker
        self.queue = queue
        self.cache = cache
        self.event_bus = event_bus
        self.calculator = calculator or RewardCalculator()
        self.workers = workers or settings.distribution_workers
        self.poll_timeout = poll_timeout or settings.distribution_poll_timeout_seconds
        self.credit_timeout = (
            credit_timeout or settings.distribution_credit_timeout_seconds
        )

        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self.stats = {
            "processed": 0,
            "acked": 0,
            "failed": 0,
            "dead_lettered": 0,
            "timed_out": 0,
        }

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        """Spawn worker tasks."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._tasks = [
            asyncio.create_task(
                self._worker_loop(worker_id), name=f"reward-worker-{worker_id}"
            )
            for worker_id in range(self.workers)
        ]
        logger.info(f"Distribution worker pool started with {self.workers} workers")

    async def stop(self, grace_period: float | None = None) -> None:
        """
        Stop workers after their current job.

        Workers still busy after the grace period are cancelled; their jobs
        stay in flight and are redelivered by the stale sweep.
        """
        self._stop_event.set()
        if not self._tasks:
            return

        grace = grace_period or (self.poll_timeout + self.credit_timeout)
        done, pending = await asyncio.wait(self._tasks, timeout=grace)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self._tasks = []
        logger.info(
            f"Distribution worker pool stopped ({len(pending)} cancelled)",
            extra={"stats": self.stats},
        )

    async def _worker_loop(self, worker_id: int) -> None:
        logger.debug(f"Reward worker {worker_id} running")
        while not self._stop_event.is_set():
            try:
                payload = await self.queue.dequeue(self.poll_timeout)
            except Exception as e:
                logger.error(f"Reward worker {worker_id} dequeue failed: {e}")
                await asyncio.sleep(self.poll_timeout)
                continue

            if payload is None:
                continue

            await self.process_job(payload)

    async def process_job(self, payload: str) -> JobOutcome:
        """
        Handle one raw queue payload.

        Never raises: every failure is turned into a ledger/queue state.

        Args:
            payload: Raw job payload

        Returns:
            JobOutcome
        """
        self.stats["processed"] += 1

        try:
            job = RewardJob.from_payload(payload)
        except ValidationError as e:
            logger.error(f"Malformed reward job payload: {e}")
            await self._safe_queue_call(
                self.queue.dead_letter(payload, reason="malformed payload")
            )
            return self._count(JobOutcome.DEAD_LETTERED)

        try:
            async with self.session_maker() as session:
                creditor = RewardCreditor(
                    session,
                    calculator=self.calculator,
                    cache=self.cache,
                    event_bus=self.event_bus,
                )
                await asyncio.wait_for(
                    creditor.apply_reward(job), timeout=self.credit_timeout
                )
        except TimeoutError:
            logger.warning(
                f"Reward credit timed out after {self.credit_timeout}s, "
                f"leaving {job.key} in flight",
                extra={"job_key": job.key},
            )
            return self._count(JobOutcome.TIMED_OUT)
        except Exception as e:
            if is_poison(e):
                return await self._dead_letter(job, payload, e)
            return await self._fail(job, payload, e)

        await self._safe_queue_call(self.queue.ack(payload, job.key))
        return self._count(JobOutcome.ACKED)

    async def _fail(
        self, job: RewardJob, payload: str, error: Exception
    ) -> JobOutcome:
        logger.warning(
            f"Reward job {job.key} failed "
            f"({'transient' if is_transient(error) else 'unexpected'}): {error}",
            extra={"job_key": job.key, "error_type": type(error).__name__},
        )

        try:
            async with self.session_maker() as session:
                retry_count = await RewardCreditor(session).record_failure(
                    job, f"{type(error).__name__}: {error}"
                )
        except Exception as e:
            # Job stays in flight; the stale sweep will redeliver it
            logger.error(f"Could not record failure of {job.key}: {e}")
            return self._count(JobOutcome.FAILED)

        await self._safe_queue_call(self.queue.reject(payload, job.key))
        logger.info(
            f"Reward job {job.key} rejected, retry_count={retry_count}",
            extra={"job_key": job.key, "retry_count": retry_count},
        )
        return self._count(JobOutcome.FAILED)

    async def _dead_letter(
        self, job: RewardJob, payload: str, error: Exception
    ) -> JobOutcome:
        logger.error(
            f"Reward job {job.key} is unprocessable: {error}",
            extra={"job_key": job.key, "error_type": type(error).__name__},
        )

        try:
            async with self.session_maker() as session:
                await RewardCreditor(session).record_dead_letter(
                    job, f"{type(error).__name__}: {error}"
                )
        except Exception as e:
            logger.error(f"Could not dead-letter ledger row {job.key}: {e}")

        await self._safe_queue_call(
            self.queue.dead_letter(payload, job.key, reason=str(error))
        )
        return self._count(JobOutcome.DEAD_LETTERED)

    async def _safe_queue_call(self, operation) -> None:
        try:
            await operation
        except Exception as e:
            logger.error(f"Reward queue operation failed: {e}")

    def _count(self, outcome: JobOutcome) -> JobOutcome:
        self.stats[outcome.value] += 1
        return outcome
