"""
Referral stats repository.

Data access layer for UserReferralStats (per-tier reward aggregates).
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user_referral_stats import UserReferralStats


class ReferralStatsRepository:
    """Stats repository; rows are keyed by (user_id, tier), not by id."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize stats repository."""
        self.session = session

    async def increment(
        self,
        user_id: int,
        tier: int,
        amount: Decimal,
        rewarded_at: datetime,
    ) -> None:
        """
        Add one reward to the (user, tier) aggregate.

        Creates the row if it doesn't exist.

        Args:
            user_id: Beneficiary
            tier: Chain position of the reward
            amount: Reward amount
            rewarded_at: Credit time
        """
        stmt = insert(UserReferralStats).values(
            user_id=user_id,
            tier=tier,
            rewards_count=1,
            total_earned=amount,
            last_reward_at=rewarded_at,
            updated_at=rewarded_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserReferralStats.user_id, UserReferralStats.tier],
            set_={
                "rewards_count": UserReferralStats.rewards_count + 1,
                "total_earned": UserReferralStats.total_earned + amount,
                "last_reward_at": rewarded_at,
                "updated_at": rewarded_at,
            },
        )
        await self.session.execute(stmt)

    async def get_for_user(self, user_id: int) -> list[UserReferralStats]:
        """
        Get all tier aggregates of a user.

        Args:
            user_id: Beneficiary

        Returns:
            Stats rows ordered by tier
        """
        stmt = (
            select(UserReferralStats)
            .where(UserReferralStats.user_id == user_id)
            .order_by(UserReferralStats.tier)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def replace_for_user(
        self,
        user_id: int,
        per_tier: dict[int, tuple[int, Decimal, datetime | None]],
        updated_at: datetime,
    ) -> None:
        """
        Overwrite a user's aggregates (ledger replay).

        Args:
            user_id: Beneficiary
            per_tier: {tier: (count, total, last_reward_at)}
            updated_at: Reconciliation time
        """
        await self.session.execute(
            delete(UserReferralStats).where(
                UserReferralStats.user_id == user_id
            )
        )
        for tier, (count, total, last_at) in per_tier.items():
            self.session.add(
                UserReferralStats(
                    user_id=user_id,
                    tier=tier,
                    rewards_count=count,
                    total_earned=total,
                    last_reward_at=last_at,
                    updated_at=updated_at,
                )
            )
        await self.session.flush()
