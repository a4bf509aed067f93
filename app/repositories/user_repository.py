"""
User repository.

Data access layer for User model.
"""

import secrets
import string
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.constants import REFERRAL_CODE_LENGTH, REFERRAL_CODE_PREFIX
from app.models.user import User
from app.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """User repository with specific queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize user repository."""
        super().__init__(User, session)

    async def get_by_referral_code(
        self, referral_code: str
    ) -> User | None:
        """
        Get user by referral code.

        Args:
            referral_code: Referral code

        Returns:
            User or None
        """
        return await self.get_by(referral_code=referral_code)

    async def get_or_create_referral_code(self, user_id: int) -> str:
        """
        Return the user's referral code, generating a unique one if missing.

        Args:
            user_id: User ID

        Returns:
            Referral code (REF_XXXXXXXX)

        Raises:
            ValueError: If user does not exist
        """
        user = await self.get_by_id(user_id)
        if user is None:
            raise ValueError(f"User {user_id} not found")

        if user.referral_code:
            return user.referral_code

        alphabet = string.ascii_uppercase + string.digits
        while True:
            candidate = REFERRAL_CODE_PREFIX + "".join(
                secrets.choice(alphabet) for _ in range(REFERRAL_CODE_LENGTH)
            )
            stmt = select(User.id).where(User.referral_code == candidate)
            result = await self.session.execute(stmt)
            if result.scalar_one_or_none() is None:
                user.referral_code = candidate
                await self.session.flush()
                return candidate

    async def credit_balance(self, user_id: int, amount: Decimal) -> bool:
        """
        Atomically add a reward to balance and total_earned.

        Args:
            user_id: Beneficiary user ID
            amount: Reward amount

        Returns:
            True if the user row was updated, False if user not found
        """
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(
                balance=User.balance + amount,
                total_earned=User.total_earned + amount,
            )
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def set_chain_flag(self, user_id: int, flagged: bool = True) -> None:
        """
        Flag (or clear) a user for manual referral chain repair.

        Args:
            user_id: User ID
            flagged: New flag value
        """
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(referral_chain_flagged=flagged)
        )
        await self.session.execute(stmt)

    async def get_flagged_user_ids(self, limit: int = 100) -> list[int]:
        """
        Get users flagged for manual chain repair.

        Args:
            limit: Max number of IDs

        Returns:
            List of user IDs
        """
        stmt = (
            select(User.id)
            .where(User.referral_chain_flagged.is_(True))
            .order_by(User.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [row[0] for row in result.all()]
