"""
Reward Retry Service - Core Module.

Module: core.py
Shared state of the retry components: repositories, queue, backoff
calculation and re-enqueueing of ledger rows.
"""

from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.reward_transaction import RewardTransaction
from app.repositories.reward_transaction_repository import (
    RewardTransactionRepository,
)
from app.services.referral.queue import RedisRewardQueue
from app.services.referral.schemas import RewardJob
from app.utils.datetime_utils import utc_now

from .constants import BASE_RETRY_DELAY_SECONDS, DEFAULT_MAX_RETRIES


class RewardRetryCore:
    """Core retry state and helpers."""

    def __init__(
        self,
        session: AsyncSession,
        queue: RedisRewardQueue,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_seconds: int = BASE_RETRY_DELAY_SECONDS,
    ) -> None:
        """Initialize core components."""
        self.session = session
        self.queue = queue
        self.tx_repo = RewardTransactionRepository(session)
        self.max_retries = max_retries
        self.base_delay_seconds = base_delay_seconds

    def calculate_next_retry_time(
        self, retry_count: int, now: datetime | None = None
    ) -> datetime:
        """
        Calculate next retry time using exponential backoff.

        Formula: delay = BASE_DELAY * 2^(retry_count - 1)
        Example (60s base): 1min, 2min, 4min, 8min, 16min

        Args:
            retry_count: Failures so far (>= 1)
            now: Current time

        Returns:
            Next retry datetime
        """
        exponent = max(retry_count - 1, 0)
        delay = self.base_delay_seconds * (2 ** exponent)
        return (now or utc_now()) + timedelta(seconds=delay)

    async def enqueue_transactions(
        self, transactions: list[RewardTransaction]
    ) -> int:
        """
        Publish queue jobs for ledger rows and stamp enqueued_at.

        The caller commits.

        Args:
            transactions: Rows to (re)enqueue

        Returns:
            Number of jobs published
        """
        enqueued_ids: list[int] = []
        try:
            for transaction in transactions:
                await self.queue.enqueue(RewardJob.from_transaction(transaction))
                enqueued_ids.append(transaction.id)
        except Exception as e:
            logger.error(
                f"Re-enqueue stopped after {len(enqueued_ids)} of "
                f"{len(transactions)} jobs: {e}"
            )
        finally:
            await self.tx_repo.mark_enqueued(enqueued_ids)

        return len(enqueued_ids)
