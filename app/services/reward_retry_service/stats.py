"""
Reward Retry Service - Statistics Module.

Module: stats.py
Provides retry statistics.
"""


class RetryStatsManager:
    """Retry statistics management."""

    def __init__(self, retry_core) -> None:
        """Initialize stats manager."""
        self.tx_repo = retry_core.tx_repo
        self.queue = retry_core.queue

    async def get_retry_stats(self) -> dict:
        """
        Get retry statistics.

        Returns:
            Dict with ledger counts per status and queue depths
        """
        by_status = await self.tx_repo.count_by_status()

        return {
            "by_status": by_status,
            "failed": by_status.get("failed", 0),
            "retry_scheduled": by_status.get("retry_scheduled", 0),
            "dlq_items": by_status.get("dead_letter", 0),
            "queued_jobs": await self.queue.pending_count(),
            "dead_jobs": await self.queue.dead_count(),
        }
