"""
Reward Retry Service - Main Module.

Recovery side of reward distribution: exponential-backoff retries, Dead
Letter Queue (DLQ) management, and the stale job sweep.

Module Structure:
- constants.py: Configuration constants
- core.py: Shared state, backoff calculation, re-enqueueing
- processor.py: FAILED / RETRY_SCHEDULED state machine
- queue_sweeper.py: Stale in-flight and pending job recovery
- dlq_manager.py: Dead Letter Queue operations
- stats.py: Statistics

Public Interface:
- RewardRetryService: Main service class
"""

from sqlalchemy.ext.asyncio import AsyncSession

from app.services.referral.queue import RedisRewardQueue

from .core import RewardRetryCore
from .dlq_manager import DLQManager
from .processor import RewardRetryProcessor
from .queue_sweeper import QueueSweeper
from .stats import RetryStatsManager


class RewardRetryService:
    """Reward retry service with exponential backoff and DLQ."""

    def __init__(
        self,
        session: AsyncSession,
        queue: RedisRewardQueue,
        **core_options,
    ) -> None:
        """
        Initialize reward retry service.

        Args:
            session: Async database session
            queue: Reward queue
            **core_options: max_retries / base_delay_seconds overrides
        """
        self.session = session

        self.core = RewardRetryCore(session, queue, **core_options)
        self.processor = RewardRetryProcessor(self.core)
        self.sweeper = QueueSweeper(self.core)
        self.dlq_manager = DLQManager(self.core)
        self.stats_manager = RetryStatsManager(self.core)

        self.tx_repo = self.core.tx_repo

    async def process_failed(self) -> dict:
        """Schedule retries or dead-letter FAILED transactions."""
        return await self.processor.process_failed()

    async def process_due_retries(self) -> dict:
        """Re-enqueue transactions whose backoff elapsed."""
        return await self.processor.process_due_retries()

    async def process_retries(self) -> dict:
        """Run one full retry cycle."""
        failed = await self.processor.process_failed()
        due = await self.processor.process_due_retries()
        return {"failed": failed, "due": due}

    async def cleanup_queue(self) -> dict:
        """Recover stale in-flight jobs and stale PENDING rows."""
        return await self.sweeper.sweep()

    async def get_dlq_items(self, limit: int = 100):
        """Get DLQ items (for admin review)."""
        return await self.dlq_manager.get_dlq_items(limit)

    async def retry_dlq_item(self, transaction_id: int):
        """Manually retry DLQ item (admin action)."""
        return await self.dlq_manager.retry_dlq_item(transaction_id)

    async def get_retry_stats(self) -> dict:
        """Get retry statistics."""
        return await self.stats_manager.get_retry_stats()


__all__ = ["RewardRetryService"]
