"""
Referral services package.

Contains modular services for referral reward distribution:
- config: Reward tier table
- chain_resolver: Bounded chain walks and edge validation
- link_service: Validated edge creation and revocation
- reward_calculator: Tiered reward computation
- reward_dispatcher: Triggering event -> ledger rows + queue jobs
- queue: Redis distribution queue
- reward_creditor: Idempotent transactional crediting
- distribution_worker: asyncio worker pool
- events: RewardDistributed publication
- statistics: Stats, chain lookup, reconciliation
- chain_repair: Cycle truncation and depth flagging
"""

from app.services.referral.cache import ReferralCache
from app.services.referral.chain_repair import ChainRepairReport, ChainRepairService
from app.services.referral.chain_resolver import ChainResolver
from app.services.referral.config import (
    RewardTierTable,
    get_tier_table,
)
from app.services.referral.distribution_worker import (
    DistributionWorkerPool,
    JobOutcome,
)
from app.services.referral.events import (
    RedisEventPublisher,
    RewardDistributed,
    RewardEventBus,
)
from app.services.referral.link_service import ReferralLinkService
from app.services.referral.queue import RedisRewardQueue
from app.services.referral.reward_calculator import RewardCalculator
from app.services.referral.reward_creditor import (
    CreditOutcome,
    CreditResult,
    RewardCreditor,
)
from app.services.referral.reward_dispatcher import DispatchResult, RewardDispatcher
from app.services.referral.schemas import RewardJob, TriggeringEvent
from app.services.referral.statistics import ReferralStatsService


__all__ = [
    # Configuration
    "RewardTierTable",
    "get_tier_table",
    # Chain
    "ChainResolver",
    "ReferralLinkService",
    "ChainRepairService",
    "ChainRepairReport",
    # Distribution
    "RewardCalculator",
    "RewardDispatcher",
    "DispatchResult",
    "RedisRewardQueue",
    "RewardCreditor",
    "CreditOutcome",
    "CreditResult",
    "DistributionWorkerPool",
    "JobOutcome",
    "RewardJob",
    "TriggeringEvent",
    # Events, cache, stats
    "RewardDistributed",
    "RewardEventBus",
    "RedisEventPublisher",
    "ReferralCache",
    "ReferralStatsService",
]
