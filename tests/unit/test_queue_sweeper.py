"""
Unit tests for the stale job sweep.

Tests cover:
- Stale PENDING rows re-enqueued exactly once per cycle
- Rows with a live job left alone
- Stale in-flight jobs released or redelivered
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from app.models.enums import RewardTransactionStatus
from app.services.referral.schemas import RewardJob
from app.services.reward_retry_service import RewardRetryService
from app.services.reward_retry_service.queue_sweeper import QueueSweeper
from app.utils.datetime_utils import utc_now
from tests.fakes import wire


@pytest.fixture
def retry_service(db, session, queue):
    """Retry service on the in-memory stores."""
    db.add_users(1, 2, 3, 4)
    service = wire(RewardRetryService(session, queue), db)
    service.sweeper = QueueSweeper(service.core, stale_threshold_seconds=600)
    return service


async def pending_row(retry_service, db, beneficiary_id: int = 2, tier: int = 1, age: int = 3600):
    row = await retry_service.tx_repo.create_pending(
        event_id="evt-1",
        beneficiary_id=beneficiary_id,
        tier=tier,
        source_user_id=1,
        base_amount=Decimal("100"),
    )
    row.created_at = utc_now() - timedelta(seconds=age)
    db.commit()
    return row


class TestStalePending:
    """Test recovery of PENDING rows without a live job."""

    @pytest.mark.asyncio
    async def test_unenqueued_row_requeued(self, db, retry_service, queue):
        """A never-enqueued stale row gets its job."""
        row = await pending_row(retry_service, db)

        stats = await retry_service.cleanup_queue()

        assert stats["requeued_pending"] == 1
        assert db.txs[row.id].enqueued_at is not None
        payload = await queue.dequeue(timeout=0.01)
        assert RewardJob.from_payload(payload).key == "evt-1:2:1"

    @pytest.mark.asyncio
    async def test_requeued_once_per_cycle(self, db, retry_service, queue):
        """Consecutive sweeps never duplicate a recovered job."""
        await pending_row(retry_service, db)

        first = await retry_service.cleanup_queue()
        second = await retry_service.cleanup_queue()

        assert first["requeued_pending"] == 1
        assert second["requeued_pending"] == 0
        assert await queue.pending_count() == 1

    @pytest.mark.asyncio
    async def test_fresh_rows_left_alone(self, db, retry_service, queue):
        """Rows younger than the threshold are not touched."""
        await pending_row(retry_service, db, age=10)

        stats = await retry_service.cleanup_queue()

        assert stats["checked_pending"] == 0
        assert await queue.pending_count() == 0

    @pytest.mark.asyncio
    async def test_live_job_skipped(self, db, retry_service, queue):
        """A row whose job was recently enqueued is skipped."""
        row = await pending_row(retry_service, db)
        await queue.enqueue(RewardJob.from_transaction(row))

        stats = await retry_service.sweeper.sweep_stale_pending()

        assert stats == {"checked_pending": 1, "requeued_pending": 0}
        assert await queue.pending_count() == 1

    @pytest.mark.asyncio
    async def test_backlogged_job_not_duplicated(self, db, retry_service, queue, redis_client):
        """A job waiting in the pending list past the threshold is not pushed again."""
        row = await pending_row(retry_service, db)
        job = RewardJob.from_transaction(row)
        await queue.enqueue(job)
        db.txs[row.id].enqueued_at = utc_now() - timedelta(hours=1)
        db.commit()
        await redis_client.hset(
            queue.live_key, job.key, (utc_now() - timedelta(hours=1)).timestamp()
        )

        first = await retry_service.cleanup_queue()
        second = await retry_service.cleanup_queue()

        assert first["requeued_pending"] == 0
        assert second["requeued_pending"] == 0
        assert await queue.pending_count() == 1

    @pytest.mark.asyncio
    async def test_job_held_by_worker_not_requeued(self, db, retry_service, queue):
        """A job a worker is crediting is left to the in-flight pass."""
        row = await pending_row(retry_service, db)
        await queue.enqueue(RewardJob.from_transaction(row))
        await queue.dequeue(timeout=0.01)

        stats = await retry_service.sweeper.sweep_stale_pending(
            now=utc_now() + timedelta(hours=1)
        )

        assert stats["requeued_pending"] == 0
        assert len(await queue.in_flight()) == 1
        assert await queue.pending_count() == 0

    @pytest.mark.asyncio
    async def test_completed_rows_ignored(self, db, retry_service, queue):
        """Only PENDING rows are swept."""
        row = await pending_row(retry_service, db)
        row.status = RewardTransactionStatus.COMPLETED
        db.commit()

        stats = await retry_service.cleanup_queue()

        assert stats["checked_pending"] == 0


class TestStaleInFlight:
    """Test recovery of jobs held by dead or stuck workers."""

    @pytest.mark.asyncio
    async def test_stuck_pending_job_redelivered(self, db, retry_service, queue):
        """An old in-flight job for a PENDING row goes back to pending."""
        row = await pending_row(retry_service, db)
        await queue.enqueue(RewardJob.from_transaction(row))
        await queue.dequeue(timeout=0.01)

        stats = await retry_service.sweeper.release_stale_in_flight(
            now=utc_now() + timedelta(hours=1)
        )

        assert stats["requeued_in_flight"] == 1
        assert await queue.in_flight() == []
        assert await queue.pending_count() == 1

    @pytest.mark.asyncio
    async def test_completed_job_released(self, db, retry_service, queue):
        """An old in-flight job whose row is final is simply released."""
        row = await pending_row(retry_service, db)
        await queue.enqueue(RewardJob.from_transaction(row))
        await queue.dequeue(timeout=0.01)
        db.txs[row.id].status = RewardTransactionStatus.COMPLETED
        db.commit()

        stats = await retry_service.sweeper.release_stale_in_flight(
            now=utc_now() + timedelta(hours=1)
        )

        assert stats["released"] == 1
        assert await queue.in_flight() == []
        assert await queue.pending_count() == 0

    @pytest.mark.asyncio
    async def test_recent_job_kept(self, db, retry_service, queue):
        """Jobs a worker picked up recently are left alone."""
        row = await pending_row(retry_service, db)
        await queue.enqueue(RewardJob.from_transaction(row))
        await queue.dequeue(timeout=0.01)

        stats = await retry_service.sweeper.release_stale_in_flight()

        assert stats == {"released": 0, "requeued_in_flight": 0, "dead_lettered": 0}
        assert len(await queue.in_flight()) == 1

    @pytest.mark.asyncio
    async def test_malformed_in_flight_dead_lettered(self, retry_service, queue, redis_client):
        """Unparseable in-flight payloads are moved to the dead list."""
        await redis_client.lpush(queue.processing_key, "garbage")

        stats = await retry_service.sweeper.release_stale_in_flight()

        assert stats["dead_lettered"] == 1
        assert await queue.dead_count() == 1

    @pytest.mark.asyncio
    async def test_redelivered_job_not_swept_again(self, db, retry_service, queue):
        """A job redelivered by the in-flight pass is not requeued by the pending pass."""
        row = await pending_row(retry_service, db)
        await queue.enqueue(RewardJob.from_transaction(row))
        await queue.dequeue(timeout=0.01)

        stats = await retry_service.sweeper.sweep(now=utc_now() + timedelta(hours=1))

        assert stats["requeued_in_flight"] == 1
        assert stats["requeued_pending"] == 0
        assert await queue.pending_count() == 1
