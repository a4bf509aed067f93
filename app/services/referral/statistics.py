"""
Referral statistics module.

Cache-backed per-user reward stats, chain lookup, and reconciliation of
the stats aggregates against the ledger.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.repositories.referral_repository import ReferralRepository
from app.repositories.referral_stats_repository import ReferralStatsRepository
from app.repositories.reward_transaction_repository import (
    RewardTransactionRepository,
)
from app.services.base_service import BaseService, log_operation
from app.services.referral.cache import ReferralCache
from app.services.referral.chain_resolver import ChainResolver
from app.utils.datetime_utils import utc_now


class ReferralStatsService(BaseService):
    """Read side of the referral engine."""

    def __init__(
        self, session: AsyncSession, cache: ReferralCache | None = None
    ) -> None:
        """Initialize stats service."""
        super().__init__(session)
        self.cache = cache
        self.referral_repo = ReferralRepository(session)
        self.stats_repo = ReferralStatsRepository(session)
        self.tx_repo = RewardTransactionRepository(session)
        self.resolver = ChainResolver(session, cache=cache)

    async def get_stats(self, user_id: int) -> dict[str, Any]:
        """
        Get referral reward statistics for user.

        Args:
            user_id: User ID

        Returns:
            Dict with total_earned, rewards_count, direct_referrals,
            last_reward_at and per-tier breakdown under "tiers"
        """
        if self.cache:
            cached = await self.cache.get_stats(user_id)
            if cached is not None:
                return _stats_from_cache(cached)

        rows = await self.stats_repo.get_for_user(user_id)
        direct_referrals = await self.referral_repo.count_direct_referrals(user_id)

        tiers = {
            row.tier: {
                "rewards_count": row.rewards_count,
                "total_earned": row.total_earned,
                "last_reward_at": row.last_reward_at,
            }
            for row in rows
        }
        last_reward_times = [
            row.last_reward_at for row in rows if row.last_reward_at
        ]

        stats = {
            "user_id": user_id,
            "total_earned": sum(
                (row.total_earned for row in rows), Decimal("0")
            ),
            "rewards_count": sum(row.rewards_count for row in rows),
            "direct_referrals": direct_referrals,
            "last_reward_at": max(last_reward_times, default=None),
            "tiers": tiers,
        }

        if self.cache:
            await self.cache.set_stats(user_id, _stats_to_cache(stats))

        return stats

    async def get_chain(self, user_id: int) -> list[int]:
        """
        Get a user's ancestors, direct referrer first.

        Args:
            user_id: User ID

        Returns:
            Ancestor IDs (length <= max depth)
        """
        return await self.resolver.resolve_chain(user_id)

    @log_operation
    async def reconcile_stats(self, user_id: int) -> dict[str, Any]:
        """
        Rebuild a user's stats from COMPLETED ledger rows.

        Args:
            user_id: Beneficiary

        Returns:
            Dict with user_id, drift {tier: {"count": diff, "amount": diff}}
            and repaired flag
        """
        ledger = await self.tx_repo.sum_completed_by_tier(user_id)
        current = {
            row.tier: (row.rewards_count, row.total_earned)
            for row in await self.stats_repo.get_for_user(user_id)
        }

        drift: dict[int, dict[str, Any]] = {}
        for tier in set(ledger) | set(current):
            ledger_count, ledger_total, _ = ledger.get(
                tier, (0, Decimal("0"), None)
            )
            stats_count, stats_total = current.get(tier, (0, Decimal("0")))
            if ledger_count != stats_count or ledger_total != stats_total:
                drift[tier] = {
                    "count": ledger_count - stats_count,
                    "amount": ledger_total - stats_total,
                }

        if drift:
            await self.stats_repo.replace_for_user(user_id, ledger, utc_now())
            await self.commit()
            if self.cache:
                await self.cache.invalidate_stats(user_id)
            self.logger.warning(
                f"Referral stats drift repaired for user {user_id}",
                extra={"user_id": user_id, "tiers": sorted(drift)},
            )

        return {"user_id": user_id, "drift": drift, "repaired": bool(drift)}


def _stats_to_cache(stats: dict[str, Any]) -> dict[str, Any]:
    def dt(value: datetime | None) -> str | None:
        return value.isoformat() if value else None

    return {
        "user_id": stats["user_id"],
        "total_earned": str(stats["total_earned"]),
        "rewards_count": stats["rewards_count"],
        "direct_referrals": stats["direct_referrals"],
        "last_reward_at": dt(stats["last_reward_at"]),
        "tiers": {
            str(tier): {
                "rewards_count": data["rewards_count"],
                "total_earned": str(data["total_earned"]),
                "last_reward_at": dt(data["last_reward_at"]),
            }
            for tier, data in stats["tiers"].items()
        },
    }


def _stats_from_cache(cached: dict[str, Any]) -> dict[str, Any]:
    def dt(value: str | None) -> datetime | None:
        return datetime.fromisoformat(value) if value else None

    return {
        "user_id": cached["user_id"],
        "total_earned": Decimal(cached["total_earned"]),
        "rewards_count": cached["rewards_count"],
        "direct_referrals": cached["direct_referrals"],
        "last_reward_at": dt(cached["last_reward_at"]),
        "tiers": {
            int(tier): {
                "rewards_count": data["rewards_count"],
                "total_earned": Decimal(data["total_earned"]),
                "last_reward_at": dt(data["last_reward_at"]),
            }
            for tier, data in cached["tiers"].items()
        },
    }
