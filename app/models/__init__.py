"""
Database models.

Exports all SQLAlchemy models for easy imports.
"""

from app.models.base import Base
from app.models.enums import ReferralStatus, RewardTransactionStatus
from app.models.referral import Referral
from app.models.reward_transaction import RewardTransaction
from app.models.user import User
from app.models.user_referral_stats import UserReferralStats

__all__ = [
    "Base",
    "Referral",
    "ReferralStatus",
    "RewardTransaction",
    "RewardTransactionStatus",
    "User",
    "UserReferralStats",
]
