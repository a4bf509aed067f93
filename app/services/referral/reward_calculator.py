"""
Reward calculator.

Pure mapping (base amount, tier) -> reward amount over the tier rate table.
"""

from decimal import ROUND_DOWN, Decimal

from app.config.constants import REWARD_AMOUNT_QUANTUM
from app.services.referral.config import RewardTierTable, get_tier_table
from app.utils.exceptions import InvalidTierError


class RewardCalculator:
    """Computes tiered referral rewards. No side effects."""

    def __init__(self, tier_table: RewardTierTable | None = None) -> None:
        """
        Initialize calculator.

        Args:
            tier_table: Tier table (defaults to the process-wide table)
        """
        self.tier_table = tier_table or get_tier_table()

    def compute_reward(self, base_amount: Decimal, tier: int) -> Decimal:
        """
        Calculate reward amount for a referral tier.

        Formula: base_amount * rate[tier], rounded down to 8 decimals so
        a reward is never overpaid.

        With the default 10% / 5% / 2.5% table, deeper tiers earn strictly
        less for any base of at least 0.0000002. Below that the tier 2 and
        tier 3 amounts both truncate to zero.

        Args:
            base_amount: Amount earned by the source user
            tier: Beneficiary position in the chain (1 = direct referrer)

        Returns:
            Reward amount

        Raises:
            InvalidTierError: If tier is outside 1..max_depth
            ValueError: If base_amount is negative
        """
        rate = self.tier_table.rate_for(tier)
        if rate is None:
            raise InvalidTierError(tier, self.tier_table.max_depth)

        base = Decimal(base_amount)
        if base < 0:
            raise ValueError(f"Base amount must be non-negative: {base}")

        return (base * rate).quantize(REWARD_AMOUNT_QUANTUM, rounding=ROUND_DOWN)
