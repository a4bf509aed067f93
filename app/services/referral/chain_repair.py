"""
Referral chain repair.

Scans stored chains for invariant violations that slipped past edge
validation (manual edits, races, imports):
- cycle within D+1 steps: the edge closing the cycle is revoked
- chain deeper than D: the user is flagged for manual repair

Ledger rows are never touched.
"""

from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from app.config.constants import CHAIN_REPAIR_BATCH_SIZE
from app.repositories.user_repository import UserRepository
from app.services.base_service import BaseService, log_operation
from app.services.referral.cache import ReferralCache
from app.services.referral.chain_resolver import ChainResolver


@dataclass
class ChainRepairReport:
    """Outcome of checking one user's chain."""

    user_id: int
    chain: list[int] = field(default_factory=list)
    cycle_detected: bool = False
    revoked_edge_of: int | None = None
    depth_exceeded: bool = False
    flagged: bool = False

    @property
    def healthy(self) -> bool:
        return not (self.cycle_detected or self.depth_exceeded)


class ChainRepairService(BaseService):
    """Detects and repairs corrupt referral chains."""

    def __init__(
        self, session: AsyncSession, cache: ReferralCache | None = None
    ) -> None:
        """Initialize chain repair service."""
        super().__init__(session)
        self.user_repo = UserRepository(session)
        self.resolver = ChainResolver(session, cache=cache)
        self.referral_repo = self.resolver.referral_repo

    async def repair_chain(
        self, user_id: int, clear_flag: bool = False
    ) -> ChainRepairReport:
        """
        Check and repair one user's chain.

        Args:
            user_id: User whose upline is checked
            clear_flag: Clear referral_chain_flagged if the chain is healthy

        Returns:
            ChainRepairReport
        """
        report = ChainRepairReport(user_id=user_id)
        max_depth = self.resolver.max_depth
        visited = {user_id}
        current = user_id

        for _ in range(max_depth + 1):
            referrer_id = await self.referral_repo.get_referrer(current)
            if referrer_id is None:
                break
            if referrer_id in visited:
                report.cycle_detected = True
                report.revoked_edge_of = current
                break
            visited.add(referrer_id)
            report.chain.append(referrer_id)
            current = referrer_id

        if report.cycle_detected:
            await self.referral_repo.revoke_edge(report.revoked_edge_of)
        elif len(report.chain) > max_depth:
            report.depth_exceeded = True
            report.flagged = True
            await self.user_repo.set_chain_flag(user_id, True)
        elif clear_flag:
            await self.user_repo.set_chain_flag(user_id, False)

        report.chain = report.chain[:max_depth]
        await self.commit()

        if report.cycle_detected:
            await self.resolver.invalidate(report.revoked_edge_of)
            self.logger.warning(
                f"Referral cycle truncated for user {user_id}",
                extra={
                    "user_id": user_id,
                    "revoked_edge_of": report.revoked_edge_of,
                    "chain": report.chain,
                },
            )
        elif report.depth_exceeded:
            self.logger.warning(
                f"Referral chain too deep for user {user_id}, flagged",
                extra={"user_id": user_id, "max_depth": max_depth},
            )

        return report

    @log_operation
    async def scan(
        self, after_id: int = 0, batch_size: int = CHAIN_REPAIR_BATCH_SIZE
    ) -> dict:
        """
        Check one page of referred users.

        Args:
            after_id: Continue after this user ID
            batch_size: Page size

        Returns:
            Dict with scanned, cycles_fixed, flagged, errors, last_id
            (last_id is None when the scan is complete)
        """
        stats = {
            "scanned": 0,
            "cycles_fixed": 0,
            "flagged": 0,
            "errors": 0,
            "last_id": None,
        }

        user_ids = await self.referral_repo.get_referred_user_ids(
            after_id=after_id, limit=batch_size
        )
        for user_id in user_ids:
            try:
                report = await self.repair_chain(user_id)
            except Exception as e:
                await self.rollback()
                self.logger.error(f"Chain repair failed for user {user_id}: {e}")
                stats["errors"] += 1
                continue

            stats["scanned"] += 1
            stats["cycles_fixed"] += int(report.cycle_detected)
            stats["flagged"] += int(report.flagged)

        if len(user_ids) == batch_size:
            stats["last_id"] = user_ids[-1]
        return stats

    async def recheck_flagged(self, limit: int = 100) -> int:
        """
        Re-run repair for flagged users, clearing flags of healthy chains.

        Returns:
            Number of flags cleared
        """
        cleared = 0
        for user_id in await self.user_repo.get_flagged_user_ids(limit):
            report = await self.repair_chain(user_id, clear_flag=True)
            if report.healthy:
                cleared += 1
        return cleared
