"""
Model enumerations.

String enums persisted as VARCHAR columns.
"""

from enum import StrEnum


class ReferralStatus(StrEnum):
    """Referral edge status."""

    ACTIVE = "active"
    REVOKED = "revoked"


class RewardTransactionStatus(StrEnum):
    """
    Reward transaction lifecycle.

    PENDING -> COMPLETED | FAILED
    FAILED -> RETRY_SCHEDULED | DEAD_LETTER
    RETRY_SCHEDULED -> PENDING
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTER = "dead_letter"

