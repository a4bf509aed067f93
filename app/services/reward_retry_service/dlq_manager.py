"""
Reward Retry Service - DLQ Manager Module.

Module: dlq_manager.py
Manages dead-lettered reward transactions.
"""

from loguru import logger

from app.models.enums import RewardTransactionStatus
from app.models.reward_transaction import RewardTransaction
from app.utils.datetime_utils import utc_now


class DLQManager:
    """Dead Letter Queue management."""

    def __init__(self, retry_core) -> None:
        """Initialize DLQ manager."""
        self.retry_core = retry_core
        self.tx_repo = retry_core.tx_repo
        self.session = retry_core.session

    async def get_dlq_items(self, limit: int = 100) -> list[RewardTransaction]:
        """
        Get DLQ items (for admin review).

        Returns:
            Dead-lettered transactions, newest first
        """
        return await self.tx_repo.list_dead_letters(limit=limit)

    async def retry_dlq_item(
        self, transaction_id: int
    ) -> tuple[bool, str | None]:
        """
        Manually retry a DLQ item (admin action).

        Resets retry_count and re-enqueues the job.

        Args:
            transaction_id: Reward transaction ID

        Returns:
            Tuple of (success, error_message)
        """
        transaction = await self.tx_repo.get_by_id(transaction_id, for_update=True)

        if not transaction:
            return False, "Reward transaction not found"

        if transaction.status != RewardTransactionStatus.DEAD_LETTER:
            return False, f"Transaction is {transaction.status}, not dead-lettered"

        logger.info(f"Manual retry of DLQ reward transaction {transaction_id}")

        transaction.status = RewardTransactionStatus.PENDING
        transaction.retry_count = 0
        transaction.next_retry_at = None
        transaction.last_error = None
        transaction.updated_at = utc_now()
        await self.session.commit()

        enqueued = await self.retry_core.enqueue_transactions([transaction])
        await self.session.commit()

        if not enqueued:
            # Row is PENDING again; the stale sweep will enqueue it
            return False, "Queue unavailable, left for the stale sweep"
        return True, None
