"""
Reward dispatcher.

Trigger path: one triggering event becomes one PENDING ledger row and one
queue job per ancestor. Rows are written in a single transaction before any
job is published; rows left without a job are picked up by a repeated
trigger or by the stale sweep.
"""

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import RewardTransactionStatus
from app.models.reward_transaction import RewardTransaction
from app.repositories.reward_transaction_repository import (
    RewardTransactionRepository,
)
from app.services.base_service import BaseService
from app.services.referral.cache import ReferralCache
from app.services.referral.chain_resolver import ChainResolver
from app.services.referral.queue import RedisRewardQueue
from app.services.referral.schemas import RewardJob, TriggeringEvent
from app.utils.exceptions import DuplicateTransactionError


@dataclass
class DispatchResult:
    """Result of dispatching one triggering event."""

    event_id: str
    chain: list[int] = field(default_factory=list)
    created: int = 0
    duplicates: int = 0
    enqueued: int = 0


class RewardDispatcher(BaseService):
    """Turns triggering events into ledger rows and queue jobs."""

    def __init__(
        self,
        session: AsyncSession,
        queue: RedisRewardQueue,
        cache: ReferralCache | None = None,
    ) -> None:
        """
        Initialize dispatcher.

        Args:
            session: Async database session
            queue: Reward queue
            cache: Cache layer used for chain resolution
        """
        super().__init__(session)
        self.tx_repo = RewardTransactionRepository(session)
        self.resolver = ChainResolver(session, cache=cache)
        self.queue = queue

    async def enqueue_reward_job(
        self, event: TriggeringEvent | dict[str, Any]
    ) -> DispatchResult:
        """
        Dispatch rewards for a triggering event.

        Idempotent per event_id: the chain is fixed by the first dispatch and
        later calls only publish jobs that were never published.

        Args:
            event: Triggering event (model or raw dict)

        Returns:
            DispatchResult

        Raises:
            pydantic.ValidationError: If the event is malformed
            CircularReferenceError: If the source user's stored chain is corrupt
        """
        if not isinstance(event, TriggeringEvent):
            event = TriggeringEvent.model_validate(event)

        existing = await self.tx_repo.list_by_event(event.event_id)
        if existing:
            result = DispatchResult(
                event_id=event.event_id,
                chain=[row.beneficiary_id for row in existing],
                duplicates=len(existing),
            )
            rows = existing
        else:
            chain = await self.resolver.resolve_chain(event.source_user_id)
            result = DispatchResult(event_id=event.event_id, chain=chain)
            if not chain:
                self.logger.debug(
                    "No referrers for triggering user",
                    extra={
                        "event_id": event.event_id,
                        "source_user_id": event.source_user_id,
                    },
                )
                return result

            await self._create_rows(event, chain, result)
            rows = await self.tx_repo.list_by_event(event.event_id)

        result.enqueued = await self._publish(rows)

        self.logger.info(
            "Reward event dispatched",
            extra={
                "event_id": event.event_id,
                "source_user_id": event.source_user_id,
                "chain_length": len(result.chain),
                "created": result.created,
                "enqueued": result.enqueued,
            },
        )
        return result

    async def _create_rows(
        self,
        event: TriggeringEvent,
        chain: list[int],
        result: DispatchResult,
    ) -> None:
        try:
            for tier, beneficiary_id in enumerate(chain, start=1):
                try:
                    await self.tx_repo.create_pending(
                        event_id=event.event_id,
                        beneficiary_id=beneficiary_id,
                        tier=tier,
                        source_user_id=event.source_user_id,
                        base_amount=event.base_amount,
                        event_type=event.event_type,
                    )
                    result.created += 1
                except DuplicateTransactionError:
                    result.duplicates += 1
            await self.commit()
        except Exception:
            await self.rollback()
            raise

    async def _publish(self, rows: list[RewardTransaction]) -> int:
        """Enqueue jobs for PENDING rows never enqueued; stamp them."""
        enqueued_ids: list[int] = []
        try:
            for row in rows:
                if (
                    row.status != RewardTransactionStatus.PENDING
                    or row.enqueued_at is not None
                ):
                    continue
                await self.queue.enqueue(RewardJob.from_transaction(row))
                enqueued_ids.append(row.id)
        finally:
            # Stamp what was published even if the queue failed midway
            if enqueued_ids:
                await self.tx_repo.mark_enqueued(enqueued_ids)
                await self.commit()
        return len(enqueued_ids)
