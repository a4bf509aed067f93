"""
Reward Retry Service - Processor Module.

Module: processor.py
Drives the retry state machine:
FAILED -> RETRY_SCHEDULED (backoff) | DEAD_LETTER (retries exhausted)
RETRY_SCHEDULED (due) -> PENDING, re-enqueued
"""

from loguru import logger

from app.models.enums import RewardTransactionStatus
from app.utils.datetime_utils import utc_now

from .constants import SWEEP_BATCH_LIMIT


class RewardRetryProcessor:
    """Retry processing logic."""

    def __init__(self, retry_core) -> None:
        """Initialize processor with core components."""
        self.retry_core = retry_core
        self.tx_repo = retry_core.tx_repo
        self.session = retry_core.session

    async def process_failed(self, limit: int = SWEEP_BATCH_LIMIT) -> dict:
        """
        Schedule retries for FAILED transactions.

        Args:
            limit: Batch size

        Returns:
            Dict with processed, scheduled, moved_to_dlq counts
        """
        now = utc_now()
        failed = await self.tx_repo.list_failed(older_than=now, limit=limit)

        stats = {"processed": 0, "scheduled": 0, "moved_to_dlq": 0}
        if not failed:
            return stats

        for transaction in failed:
            stats["processed"] += 1

            if transaction.retry_count >= self.retry_core.max_retries:
                transaction.status = RewardTransactionStatus.DEAD_LETTER
                transaction.next_retry_at = None
                stats["moved_to_dlq"] += 1
                logger.warning(
                    f"Reward transaction {transaction.id} moved to DLQ "
                    f"after {transaction.retry_count} attempts",
                    extra={"key": transaction.idempotency_key},
                )
            else:
                transaction.status = RewardTransactionStatus.RETRY_SCHEDULED
                transaction.next_retry_at = (
                    self.retry_core.calculate_next_retry_time(
                        transaction.retry_count, now
                    )
                )
                stats["scheduled"] += 1
            transaction.updated_at = now

        await self.session.commit()

        logger.info(
            f"Failed rewards processed: {stats['scheduled']} scheduled, "
            f"{stats['moved_to_dlq']} moved to DLQ "
            f"out of {stats['processed']} total"
        )
        return stats

    async def process_due_retries(self, limit: int = SWEEP_BATCH_LIMIT) -> dict:
        """
        Re-enqueue RETRY_SCHEDULED transactions whose backoff elapsed.

        Rows go back to PENDING before their jobs are published, so a
        worker never sees a job for a row still marked RETRY_SCHEDULED.

        Args:
            limit: Batch size

        Returns:
            Dict with processed, requeued counts
        """
        now = utc_now()
        due = await self.tx_repo.list_due_retries(now=now, limit=limit)

        stats = {"processed": len(due), "requeued": 0}
        if not due:
            return stats

        for transaction in due:
            transaction.status = RewardTransactionStatus.PENDING
            transaction.next_retry_at = None
            transaction.updated_at = now
        await self.session.commit()

        stats["requeued"] = await self.retry_core.enqueue_transactions(due)
        await self.session.commit()

        logger.info(
            f"Due reward retries requeued: {stats['requeued']} "
            f"of {stats['processed']}"
        )
        return stats
