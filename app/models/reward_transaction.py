"""
RewardTransaction model.

Append-only ledger of referral reward credits. Each row is the audit trail
and the idempotency guard for one (event, beneficiary, tier) credit.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.models.enums import RewardTransactionStatus
from app.models.types import MoneyType

IDEMPOTENCY_CONSTRAINT = "uq_reward_tx_idempotency_key"


class RewardTransaction(Base):
    """
    RewardTransaction entity.

    Attributes:
        id: Primary key
        event_id: Triggering event id (globally unique per action)
        event_type: Triggering subsystem event type (xp, quest, ...)
        beneficiary_id: User receiving the reward
        source_user_id: User whose action earned the reward
        tier: Beneficiary position in the source user's chain (1 = direct)
        base_amount: Amount the reward is computed from
        reward_amount: Credited amount (set on completion)
        status: Lifecycle status (see RewardTransactionStatus)
        retry_count: Failed credit attempts so far
        last_error: Last failure message
        next_retry_at: When a RETRY_SCHEDULED row becomes due
        enqueued_at: Last time a queue job was published for this row
        completed_at: Credit timestamp
    """

    __tablename__ = "reward_transactions"
    __table_args__ = (
        UniqueConstraint(
            "event_id", "beneficiary_id", "tier",
            name=IDEMPOTENCY_CONSTRAINT,
        ),
        CheckConstraint("tier >= 1", name="check_reward_tx_tier_positive"),
        CheckConstraint(
            "base_amount >= 0", name="check_reward_tx_base_non_negative"
        ),
        Index("idx_reward_tx_status_updated", "status", "updated_at"),
        Index("idx_reward_tx_status_next_retry", "status", "next_retry_at"),
    )

    # Primary key
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )

    # Idempotency key
    event_id: Mapped[str] = mapped_column(
        String(128), nullable=False, index=True
    )
    beneficiary_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    tier: Mapped[int] = mapped_column(Integer, nullable=False)

    event_type: Mapped[str | None] = mapped_column(
        String(50), nullable=True
    )
    source_user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Amounts
    base_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    reward_amount: Mapped[Decimal | None] = mapped_column(
        MoneyType, nullable=True
    )

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RewardTransactionStatus.PENDING,
        index=True,
    )
    retry_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    enqueued_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False
    )

    # Properties

    @property
    def idempotency_key(self) -> tuple[str, int, int]:
        """(event_id, beneficiary_id, tier)."""
        return (self.event_id, self.beneficiary_id, self.tier)

    @property
    def is_completed(self) -> bool:
        """Check if reward was credited."""
        return self.status == RewardTransactionStatus.COMPLETED

    @property
    def is_dead_letter(self) -> bool:
        """Check if reward exhausted retries or was poisoned."""
        return self.status == RewardTransactionStatus.DEAD_LETTER

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"RewardTransaction(id={self.id}, "
            f"event_id={self.event_id}, "
            f"beneficiary_id={self.beneficiary_id}, "
            f"tier={self.tier}, "
            f"status={self.status})"
        )
