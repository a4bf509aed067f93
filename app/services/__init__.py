"""
Services.

Business logic layer.
"""

# Base Service Infrastructure
from app.services.base_service import BaseService, log_operation

# Referral Services
from app.services.referral import (
    ChainRepairService,
    ChainResolver,
    DistributionWorkerPool,
    ReferralLinkService,
    ReferralStatsService,
    RewardCalculator,
    RewardCreditor,
    RewardDispatcher,
)

# Recovery
from app.services.reward_retry_service import RewardRetryService

__all__ = [
    "BaseService",
    "log_operation",
    "ChainRepairService",
    "ChainResolver",
    "DistributionWorkerPool",
    "ReferralLinkService",
    "ReferralStatsService",
    "RewardCalculator",
    "RewardCreditor",
    "RewardDispatcher",
    "RewardRetryService",
]
