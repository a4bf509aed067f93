"""
Reward transaction repository.

Transaction Ledger: append/update access to reward_transactions with
idempotency-key uniqueness enforced by the database.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import RewardTransactionStatus
from app.models.reward_transaction import (
    IDEMPOTENCY_CONSTRAINT,
    RewardTransaction,
)
from app.repositories.base import BaseRepository
from app.utils.datetime_utils import utc_now
from app.utils.exceptions import DuplicateTransactionError


class RewardTransactionRepository(BaseRepository[RewardTransaction]):
    """Ledger repository with idempotent inserts and recovery queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize reward transaction repository."""
        super().__init__(RewardTransaction, session)

    async def create_pending(
        self,
        event_id: str,
        beneficiary_id: int,
        tier: int,
        source_user_id: int,
        base_amount: Decimal,
        event_type: str | None = None,
    ) -> RewardTransaction:
        """
        Insert a PENDING reward transaction.

        Uses INSERT ... ON CONFLICT DO NOTHING on the idempotency key, so
        concurrent inserts of the same key cannot both succeed.

        Args:
            event_id: Triggering event ID
            beneficiary_id: Rewarded user
            tier: Chain position (1 = direct referrer)
            source_user_id: Earning user
            base_amount: Amount to compute the reward from
            event_type: Triggering event type

        Returns:
            Created RewardTransaction

        Raises:
            DuplicateTransactionError: If the key already exists
        """
        now = utc_now()
        stmt = (
            insert(RewardTransaction)
            .values(
                event_id=event_id,
                beneficiary_id=beneficiary_id,
                tier=tier,
                source_user_id=source_user_id,
                base_amount=base_amount,
                event_type=event_type,
                status=RewardTransactionStatus.PENDING,
                retry_count=0,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(constraint=IDEMPOTENCY_CONSTRAINT)
            .returning(RewardTransaction)
        )
        result = await self.session.execute(stmt)
        created = result.scalar_one_or_none()
        if created is None:
            raise DuplicateTransactionError(event_id, beneficiary_id, tier)
        return created

    async def get_by_key(
        self,
        event_id: str,
        beneficiary_id: int,
        tier: int,
        for_update: bool = False,
    ) -> RewardTransaction | None:
        """
        Get transaction by idempotency key.

        Args:
            event_id: Triggering event ID
            beneficiary_id: Rewarded user
            tier: Chain position
            for_update: Lock the row until the transaction ends

        Returns:
            RewardTransaction or None
        """
        stmt = select(RewardTransaction).where(
            RewardTransaction.event_id == event_id,
            RewardTransaction.beneficiary_id == beneficiary_id,
            RewardTransaction.tier == tier,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_event(self, event_id: str) -> list[RewardTransaction]:
        """
        Get all tier transactions of one triggering event.

        Args:
            event_id: Triggering event ID

        Returns:
            Transactions ordered by tier
        """
        stmt = (
            select(RewardTransaction)
            .where(RewardTransaction.event_id == event_id)
            .order_by(RewardTransaction.tier)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def mark_enqueued(
        self, transaction_ids: list[int], at: datetime | None = None
    ) -> None:
        """
        Stamp enqueued_at after jobs were published.

        Args:
            transaction_ids: Transactions whose jobs were enqueued
            at: Enqueue time (defaults to now)
        """
        if not transaction_ids:
            return

        stmt = (
            update(RewardTransaction)
            .where(RewardTransaction.id.in_(transaction_ids))
            .values(enqueued_at=at or utc_now(), updated_at=utc_now())
        )
        await self.session.execute(stmt)

    async def mark_completed(
        self, transaction: RewardTransaction, reward_amount: Decimal
    ) -> None:
        """
        Mark a locked transaction COMPLETED.

        Args:
            transaction: Transaction loaded with FOR UPDATE
            reward_amount: Credited amount
        """
        now = utc_now()
        transaction.status = RewardTransactionStatus.COMPLETED
        transaction.reward_amount = reward_amount
        transaction.completed_at = now
        transaction.next_retry_at = None
        transaction.last_error = None
        transaction.updated_at = now
        await self.session.flush()

    async def mark_failed(
        self,
        event_id: str,
        beneficiary_id: int,
        tier: int,
        error: str,
    ) -> int | None:
        """
        Mark a non-completed transaction FAILED and increment retry_count.

        Args:
            event_id: Triggering event ID
            beneficiary_id: Rewarded user
            tier: Chain position
            error: Failure message

        Returns:
            New retry_count, or None if the row is missing or already final
        """
        stmt = (
            update(RewardTransaction)
            .where(
                RewardTransaction.event_id == event_id,
                RewardTransaction.beneficiary_id == beneficiary_id,
                RewardTransaction.tier == tier,
                RewardTransaction.status.not_in(
                    (
                        RewardTransactionStatus.COMPLETED,
                        RewardTransactionStatus.DEAD_LETTER,
                    )
                ),
            )
            .values(
                status=RewardTransactionStatus.FAILED,
                retry_count=RewardTransaction.retry_count + 1,
                last_error=error[:2000],
                updated_at=utc_now(),
            )
            .returning(RewardTransaction.retry_count)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_dead_letter(
        self,
        event_id: str,
        beneficiary_id: int,
        tier: int,
        error: str,
    ) -> bool:
        """
        Move a non-completed transaction to DEAD_LETTER.

        Args:
            event_id: Triggering event ID
            beneficiary_id: Rewarded user
            tier: Chain position
            error: Reason

        Returns:
            True if a row was moved
        """
        stmt = (
            update(RewardTransaction)
            .where(
                RewardTransaction.event_id == event_id,
                RewardTransaction.beneficiary_id == beneficiary_id,
                RewardTransaction.tier == tier,
                RewardTransaction.status != RewardTransactionStatus.COMPLETED,
            )
            .values(
                status=RewardTransactionStatus.DEAD_LETTER,
                last_error=error[:2000],
                next_retry_at=None,
                updated_at=utc_now(),
            )
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def list_failed(
        self, older_than: datetime, limit: int = 500
    ) -> list[RewardTransaction]:
        """
        Get FAILED transactions last updated before a cutoff.

        Args:
            older_than: Updated-at cutoff
            limit: Batch size

        Returns:
            FAILED transactions, oldest first
        """
        stmt = (
            select(RewardTransaction)
            .where(
                RewardTransaction.status == RewardTransactionStatus.FAILED,
                RewardTransaction.updated_at <= older_than,
            )
            .order_by(RewardTransaction.updated_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_pending(
        self, older_than: datetime, limit: int = 500
    ) -> list[RewardTransaction]:
        """
        Get PENDING transactions not enqueued since a cutoff.

        A row that was never enqueued (enqueued_at is NULL) qualifies once it
        is older than the cutoff: that is a partially enqueued event.

        Args:
            older_than: Staleness cutoff
            limit: Batch size

        Returns:
            Stale PENDING transactions, oldest first
        """
        stmt = (
            select(RewardTransaction)
            .where(
                RewardTransaction.status == RewardTransactionStatus.PENDING,
                RewardTransaction.created_at <= older_than,
                or_(
                    RewardTransaction.enqueued_at.is_(None),
                    RewardTransaction.enqueued_at <= older_than,
                ),
            )
            .order_by(RewardTransaction.created_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_due_retries(
        self, now: datetime, limit: int = 500
    ) -> list[RewardTransaction]:
        """
        Get RETRY_SCHEDULED transactions whose backoff has elapsed.

        Args:
            now: Current time
            limit: Batch size

        Returns:
            Due transactions, earliest first
        """
        stmt = (
            select(RewardTransaction)
            .where(
                RewardTransaction.status
                == RewardTransactionStatus.RETRY_SCHEDULED,
                RewardTransaction.next_retry_at <= now,
            )
            .order_by(RewardTransaction.next_retry_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_dead_letters(
        self, limit: int = 100
    ) -> list[RewardTransaction]:
        """
        Get DEAD_LETTER transactions (for admin review).

        Args:
            limit: Max number of rows

        Returns:
            Dead-lettered transactions, newest first
        """
        stmt = (
            select(RewardTransaction)
            .where(
                RewardTransaction.status == RewardTransactionStatus.DEAD_LETTER
            )
            .order_by(RewardTransaction.updated_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_status(self) -> dict[str, int]:
        """
        Count transactions grouped by status in a single query.

        Returns:
            Dict mapping every status to its count
        """
        stmt = (
            select(
                RewardTransaction.status,
                func.count(RewardTransaction.id).label("count"),
            )
            .group_by(RewardTransaction.status)
        )
        result = await self.session.execute(stmt)

        counts = {status.value: 0 for status in RewardTransactionStatus}
        for row in result.all():
            counts[row.status] = row.count
        return counts

    async def sum_completed_by_tier(
        self, beneficiary_id: int
    ) -> dict[int, tuple[int, Decimal, datetime | None]]:
        """
        Aggregate COMPLETED rewards of a beneficiary per tier.

        Args:
            beneficiary_id: Rewarded user

        Returns:
            Dict {tier: (count, total, last completed_at)}
        """
        stmt = (
            select(
                RewardTransaction.tier,
                func.count(RewardTransaction.id).label("count"),
                func.coalesce(
                    func.sum(RewardTransaction.reward_amount), Decimal("0")
                ).label("total"),
                func.max(RewardTransaction.completed_at).label("last_at"),
            )
            .where(
                RewardTransaction.beneficiary_id == beneficiary_id,
                RewardTransaction.status == RewardTransactionStatus.COMPLETED,
            )
            .group_by(RewardTransaction.tier)
        )
        result = await self.session.execute(stmt)
        return {
            row.tier: (row.count, row.total, row.last_at)
            for row in result.all()
        }
