"""
Referral model.

Represents a referral edge: the referred user and their direct referrer.
Tier is derived from chain position at reward time and is not stored here.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base
from app.models.enums import ReferralStatus

if TYPE_CHECKING:
    from app.models.user import User


class Referral(Base):
    """Referral model - direct referrer edges."""

    __tablename__ = "referrals"
    __table_args__ = (
        CheckConstraint(
            'referrer_id <> referral_id', name='check_referral_not_self'
        ),
        # One ACTIVE referrer per referred user; revoked edges stay as history
        Index(
            "uq_referrals_active_referral",
            "referral_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
        ),
        Index("idx_referrals_referrer_status", "referrer_id", "status"),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Referrer (who invited)
    referrer_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Referral (who was invited)
    referral_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Code the referred user applied
    referral_code: Mapped[str | None] = mapped_column(
        String(20), nullable=True
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ReferralStatus.ACTIVE
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False
    )
    revoked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    referrer: Mapped["User"] = relationship(
        "User",
        foreign_keys=[referrer_id],
    )
    referral: Mapped["User"] = relationship(
        "User",
        foreign_keys=[referral_id],
    )

    @property
    def is_active(self) -> bool:
        """Check if edge is active."""
        return self.status == ReferralStatus.ACTIVE

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<Referral(id={self.id}, referrer_id={self.referrer_id}, "
            f"referral_id={self.referral_id}, status={self.status})>"
        )
