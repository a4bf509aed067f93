"""
Referral system configuration.

Reward tier table: tier -> payout rate and the maximum chain depth.
Loaded once from settings and immutable thereafter.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from functools import lru_cache
from types import MappingProxyType
from typing import Mapping

from app.config.settings import settings


@dataclass(frozen=True)
class RewardTierTable:
    """Immutable tier rate table."""

    max_depth: int
    rates: Mapping[int, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Freeze a private copy so callers can't mutate rates after load
        object.__setattr__(self, "rates", MappingProxyType(dict(self.rates)))

    def rate_for(self, tier: int) -> Decimal | None:
        """Rate for a tier, or None if the tier is not configured."""
        if tier < 1 or tier > self.max_depth:
            return None
        return self.rates.get(tier)


@lru_cache(maxsize=1)
def get_tier_table() -> RewardTierTable:
    """Process-wide tier table built from settings."""
    return RewardTierTable(
        max_depth=settings.referral_max_depth,
        rates=settings.get_tier_rates(),
    )
