"""
Referral repository.

Chain Store: data access layer for referral edges.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import ReferralStatus
from app.models.referral import Referral
from app.repositories.base import BaseRepository
from app.utils.datetime_utils import utc_now


class ReferralRepository(BaseRepository[Referral]):
    """Referral repository with chain-store queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize referral repository."""
        super().__init__(Referral, session)

    async def get_active_edge(self, user_id: int) -> Referral | None:
        """
        Get the active edge where user is the referred side.

        Args:
            user_id: Referred user ID

        Returns:
            Active Referral or None
        """
        return await self.get_by(
            referral_id=user_id, status=ReferralStatus.ACTIVE
        )

    async def get_referrer(self, user_id: int) -> int | None:
        """
        Get the direct referrer of a user.

        Args:
            user_id: Referred user ID

        Returns:
            Referrer user ID or None
        """
        stmt = (
            select(Referral.referrer_id)
            .where(
                Referral.referral_id == user_id,
                Referral.status == ReferralStatus.ACTIVE,
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_edge(
        self,
        user_id: int,
        referrer_id: int,
        referral_code: str | None = None,
    ) -> Referral:
        """
        Create an active edge. Caller validates chain invariants first.

        Args:
            user_id: Referred user ID
            referrer_id: Direct referrer ID
            referral_code: Code the user applied

        Returns:
            Created Referral
        """
        return await self.create(
            referrer_id=referrer_id,
            referral_id=user_id,
            referral_code=referral_code,
            status=ReferralStatus.ACTIVE,
        )

    async def revoke_edge(self, user_id: int) -> Referral | None:
        """
        Revoke the user's active edge (kept as history).

        Args:
            user_id: Referred user ID

        Returns:
            Revoked Referral or None if the user had no active edge
        """
        edge = await self.get_active_edge(user_id)
        if edge is None:
            return None

        edge.status = ReferralStatus.REVOKED
        edge.revoked_at = utc_now()
        await self.session.flush()
        return edge

    async def get_referral_ids(self, referrer_ids: list[int]) -> list[int]:
        """
        Get direct referrals of any of the given users.

        Args:
            referrer_ids: Referrer user IDs

        Returns:
            Referred user IDs with an active edge to one of referrer_ids
        """
        if not referrer_ids:
            return []

        stmt = select(Referral.referral_id).where(
            Referral.referrer_id.in_(referrer_ids),
            Referral.status == ReferralStatus.ACTIVE,
        )
        result = await self.session.execute(stmt)
        return [row[0] for row in result.all()]

    async def count_direct_referrals(self, user_id: int) -> int:
        """
        Count active direct referrals.

        Args:
            user_id: Referrer user ID

        Returns:
            Number of users directly referred
        """
        return await self.count(
            referrer_id=user_id, status=ReferralStatus.ACTIVE
        )

    async def get_referred_user_ids(
        self, after_id: int = 0, limit: int = 200
    ) -> list[int]:
        """
        Page through users that have an active referrer.

        Args:
            after_id: Return IDs greater than this
            limit: Page size

        Returns:
            Referred user IDs in ascending order
        """
        stmt = (
            select(Referral.referral_id)
            .where(
                Referral.status == ReferralStatus.ACTIVE,
                Referral.referral_id > after_id,
            )
            .order_by(Referral.referral_id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [row[0] for row in result.all()]

