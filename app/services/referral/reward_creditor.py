"""
Reward creditor.

Applies one reward job as a single database transaction: ledger row lock,
balance credit, stats upsert and COMPLETED mark commit together or not at
all. Safe to run any number of times for the same job.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import RewardTransactionStatus
from app.models.reward_transaction import RewardTransaction
from app.repositories.referral_stats_repository import ReferralStatsRepository
from app.repositories.reward_transaction_repository import (
    RewardTransactionRepository,
)
from app.repositories.user_repository import UserRepository
from app.services.base_service import BaseService
from app.services.referral.cache import ReferralCache
from app.services.referral.events import RewardDistributed, RewardEventBus
from app.services.referral.reward_calculator import RewardCalculator
from app.services.referral.schemas import RewardJob
from app.utils.datetime_utils import utc_now
from app.utils.exceptions import (
    DuplicateTransactionError,
    PoisonJobError,
    TransientStoreError,
)


class CreditOutcome(StrEnum):
    """What apply_reward did with a job."""

    CREDITED = "credited"
    ALREADY_COMPLETED = "already_completed"
    DEAD_LETTERED = "dead_lettered"


@dataclass
class CreditResult:
    """Result of applying a reward job."""

    outcome: CreditOutcome
    transaction_id: int | None = None
    reward_amount: Decimal | None = None
    credited_at: datetime | None = None

    @property
    def credited(self) -> bool:
        return self.outcome == CreditOutcome.CREDITED


class RewardCreditor(BaseService):
    """Idempotent transactional reward application."""

    def __init__(
        self,
        session: AsyncSession,
        calculator: RewardCalculator | None = None,
        cache: ReferralCache | None = None,
        event_bus: RewardEventBus | None = None,
    ) -> None:
        """
        Initialize creditor.

        Args:
            session: Async database session (one unit of work)
            calculator: Reward calculator
            cache: Cache layer for stats invalidation
            event_bus: Receives RewardDistributed after commit
        """
        super().__init__(session)
        self.tx_repo = RewardTransactionRepository(session)
        self.user_repo = UserRepository(session)
        self.stats_repo = ReferralStatsRepository(session)
        self.calculator = calculator or RewardCalculator()
        self.cache = cache
        self.event_bus = event_bus

    async def apply_reward(self, job: RewardJob) -> CreditResult:
        """
        Credit one reward exactly once.

        Args:
            job: Distribution job

        Returns:
            CreditResult (CREDITED, or a no-op for final rows)

        Raises:
            InvalidTierError, PoisonJobError: Job can never succeed
            Exception: Store failures; the transaction is rolled back
        """
        try:
            result = await self._apply(job)
            await self.commit()
        except Exception:
            await self.rollback()
            raise

        if result.credited:
            await self._after_commit(job, result)
        else:
            self.logger.debug(
                f"Reward job {job.key} already final: {result.outcome}",
                extra={"job_key": job.key},
            )
        return result

    async def _apply(self, job: RewardJob) -> CreditResult:
        transaction = await self._lock_transaction(job)

        if transaction.status == RewardTransactionStatus.COMPLETED:
            return CreditResult(
                outcome=CreditOutcome.ALREADY_COMPLETED,
                transaction_id=transaction.id,
                reward_amount=transaction.reward_amount,
                credited_at=transaction.completed_at,
            )
        if transaction.status == RewardTransactionStatus.DEAD_LETTER:
            return CreditResult(
                outcome=CreditOutcome.DEAD_LETTERED,
                transaction_id=transaction.id,
            )

        amount = self.calculator.compute_reward(
            transaction.base_amount, transaction.tier
        )

        credited = await self.user_repo.credit_balance(
            transaction.beneficiary_id, amount
        )
        if not credited:
            raise PoisonJobError(
                f"Beneficiary {transaction.beneficiary_id} does not exist"
            )

        now = utc_now()
        await self.stats_repo.increment(
            user_id=transaction.beneficiary_id,
            tier=transaction.tier,
            amount=amount,
            rewarded_at=now,
        )
        await self.tx_repo.mark_completed(transaction, amount)

        return CreditResult(
            outcome=CreditOutcome.CREDITED,
            transaction_id=transaction.id,
            reward_amount=amount,
            credited_at=now,
        )

    async def _lock_transaction(self, job: RewardJob) -> RewardTransaction:
        transaction = await self.tx_repo.get_by_key(
            job.event_id, job.beneficiary_id, job.tier, for_update=True
        )
        if transaction is not None:
            return transaction

        # Job outran its ledger row (or the row insert was lost)
        try:
            await self.tx_repo.create_pending(
                event_id=job.event_id,
                beneficiary_id=job.beneficiary_id,
                tier=job.tier,
                source_user_id=job.source_user_id,
                base_amount=job.base_amount,
            )
        except DuplicateTransactionError:
            pass

        transaction = await self.tx_repo.get_by_key(
            job.event_id, job.beneficiary_id, job.tier, for_update=True
        )
        if transaction is None:
            raise TransientStoreError(f"Ledger row for {job.key} not visible")
        return transaction

    async def _after_commit(self, job: RewardJob, result: CreditResult) -> None:
        if self.cache:
            await self.cache.invalidate_stats(job.beneficiary_id)

        self.logger.info(
            "Referral reward credited",
            extra={
                "event_id": job.event_id,
                "beneficiary_id": job.beneficiary_id,
                "tier": job.tier,
                "amount": str(result.reward_amount),
            },
        )

        if self.event_bus:
            await self.event_bus.publish(
                RewardDistributed(
                    event_id=job.event_id,
                    beneficiary_id=job.beneficiary_id,
                    source_user_id=job.source_user_id,
                    tier=job.tier,
                    amount=result.reward_amount,
                    credited_at=result.credited_at,
                )
            )

    async def record_failure(self, job: RewardJob, error: str) -> int | None:
        """
        Mark the job's row FAILED in this session and commit.

        Args:
            job: Failed job
            error: Failure description

        Returns:
            New retry_count, or None if the row is already final
        """
        retry_count = await self.tx_repo.mark_failed(
            job.event_id, job.beneficiary_id, job.tier, error
        )
        if retry_count is None:
            # Row may never have been written
            try:
                await self.tx_repo.create_pending(
                    event_id=job.event_id,
                    beneficiary_id=job.beneficiary_id,
                    tier=job.tier,
                    source_user_id=job.source_user_id,
                    base_amount=job.base_amount,
                )
            except DuplicateTransactionError:
                await self.commit()
                return None
            retry_count = await self.tx_repo.mark_failed(
                job.event_id, job.beneficiary_id, job.tier, error
            )
        await self.commit()
        return retry_count

    async def record_dead_letter(self, job: RewardJob, error: str) -> bool:
        """
        Move the job's row to DEAD_LETTER in this session and commit.

        Returns:
            True if a row was moved
        """
        moved = await self.tx_repo.mark_dead_letter(
            job.event_id, job.beneficiary_id, job.tier, error
        )
        await self.commit()
        return moved
