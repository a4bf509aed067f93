"""
Reward Retry Service - Queue Sweeper Module.

Module: queue_sweeper.py
Recovers jobs lost between the ledger and the queue:
- in-flight jobs held longer than the staleness threshold (crashed or timed
  out workers) are released if their row is final, otherwise re-enqueued
- PENDING rows older than the threshold without a live queue job
  (partially enqueued events, lost jobs) are re-enqueued; a job waiting
  in a backlog keeps its live marker and is never duplicated

Every re-enqueue writes the live marker, so a row is re-enqueued at most
once per sweep.
"""

from datetime import datetime, timedelta

from loguru import logger
from pydantic import ValidationError

from app.models.enums import RewardTransactionStatus
from app.services.referral.schemas import RewardJob
from app.utils.datetime_utils import utc_now

from .constants import STALE_THRESHOLD_SECONDS, SWEEP_BATCH_LIMIT


class QueueSweeper:
    """Stale job and partial enqueue recovery."""

    def __init__(
        self,
        retry_core,
        stale_threshold_seconds: int = STALE_THRESHOLD_SECONDS,
    ) -> None:
        """Initialize sweeper with core components."""
        self.retry_core = retry_core
        self.tx_repo = retry_core.tx_repo
        self.queue = retry_core.queue
        self.session = retry_core.session
        self.stale_threshold = timedelta(seconds=stale_threshold_seconds)

    async def sweep(self, now: datetime | None = None) -> dict:
        """
        Run both recovery passes.

        Returns:
            Dict with released, requeued_in_flight, dead_lettered,
            requeued_pending counts
        """
        now = now or utc_now()
        in_flight = await self.release_stale_in_flight(now)
        pending = await self.sweep_stale_pending(now)
        return {**in_flight, **pending}

    async def release_stale_in_flight(self, now: datetime | None = None) -> dict:
        """
        Handle jobs stuck in the processing list.

        Args:
            now: Current time

        Returns:
            Dict with released, requeued_in_flight, dead_lettered counts
        """
        now = now or utc_now()
        cutoff = (now - self.stale_threshold).timestamp()
        stats = {"released": 0, "requeued_in_flight": 0, "dead_lettered": 0}

        for entry in await self.queue.in_flight():
            if entry.started_at is not None and entry.started_at > cutoff:
                continue

            try:
                job = RewardJob.from_payload(entry.payload)
            except ValidationError:
                await self.queue.dead_letter(
                    entry.payload, reason="malformed payload"
                )
                stats["dead_lettered"] += 1
                continue

            transaction = await self.tx_repo.get_by_key(
                job.event_id, job.beneficiary_id, job.tier
            )
            if (
                transaction is not None
                and transaction.status != RewardTransactionStatus.PENDING
            ):
                # Final rows need nothing; FAILED/RETRY_SCHEDULED belong to the retry processor
                await self.queue.ack(entry.payload, job.key)
                stats["released"] += 1
                continue

            await self.queue.enqueue(job)
            if transaction is not None:
                await self.tx_repo.mark_enqueued([transaction.id], at=now)
            stats["requeued_in_flight"] += 1

        await self.session.commit()

        if any(stats.values()):
            logger.info(
                f"Stale in-flight jobs: {stats['released']} released, "
                f"{stats['requeued_in_flight']} requeued, "
                f"{stats['dead_lettered']} dead-lettered"
            )
        return stats

    async def sweep_stale_pending(
        self, now: datetime | None = None, limit: int = SWEEP_BATCH_LIMIT
    ) -> dict:
        """
        Re-enqueue PENDING rows with no live queue job.

        Args:
            now: Current time
            limit: Batch size

        Returns:
            Dict with checked_pending, requeued_pending counts
        """
        now = now or utc_now()
        cutoff = now - self.stale_threshold
        stale = await self.tx_repo.list_pending(older_than=cutoff, limit=limit)

        to_requeue = []
        for transaction in stale:
            key = RewardJob.from_transaction(transaction).key
            # Any marker means the job is still queued or held by a worker;
            # held jobs are recovered by release_stale_in_flight
            if await self.queue.live_since(key) is not None:
                continue
            to_requeue.append(transaction)

        requeued = 0
        if to_requeue:
            requeued = await self.retry_core.enqueue_transactions(to_requeue)
        await self.session.commit()

        if requeued:
            logger.warning(
                f"Re-enqueued {requeued} stale pending reward transactions",
                extra={"checked": len(stale)},
            )
        return {"checked_pending": len(stale), "requeued_pending": requeued}
