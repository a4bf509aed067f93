"""
UserReferralStats model.

Per-tier reward aggregates for a beneficiary. Written only by the reward
engine and reconcilable by replaying COMPLETED reward transactions.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.models.types import MoneyType


class UserReferralStats(Base):
    """Reward aggregates per (user, tier)."""

    __tablename__ = "user_referral_stats"

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tier: Mapped[int] = mapped_column(Integer, primary_key=True)

    rewards_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    total_earned: Mapped[Decimal] = mapped_column(
        MoneyType, nullable=False, default=Decimal("0")
    )
    last_reward_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<UserReferralStats(user_id={self.user_id}, tier={self.tier}, "
            f"rewards_count={self.rewards_count}, "
            f"total_earned={self.total_earned})>"
        )
