"""
Referral chain resolution module.

Walks a user's referral chain upward with a structural depth bound and
validates new edges against the depth and cycle invariants.
"""

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.repositories.referral_repository import ReferralRepository
from app.services.referral.cache import ReferralCache
from app.services.referral.config import RewardTierTable, get_tier_table
from app.utils.exceptions import (
    CircularReferenceError,
    MaxDepthExceededError,
    ReferralEdgeExistsError,
)


class ChainResolver:
    """Resolves and validates bounded-depth referral chains."""

    def __init__(
        self,
        session: AsyncSession,
        cache: ReferralCache | None = None,
        tier_table: RewardTierTable | None = None,
    ) -> None:
        """Initialize chain resolver."""
        self.session = session
        self.referral_repo = ReferralRepository(session)
        self.cache = cache
        self.tier_table = tier_table or get_tier_table()

    @property
    def max_depth(self) -> int:
        """Maximum chain depth D."""
        return self.tier_table.max_depth

    async def resolve_chain(
        self, user_id: int, use_cache: bool = True
    ) -> list[int]:
        """
        Get a user's ancestors, direct referrer first, at most D long.

        Args:
            user_id: User ID
            use_cache: Read through the cache layer

        Returns:
            Ancestor user IDs ordered by tier

        Raises:
            CircularReferenceError: If stored edges form a cycle
        """
        if use_cache and self.cache:
            cached = await self.cache.get_chain(user_id)
            if cached is not None:
                return cached[: self.max_depth]

        chain = await self.walk_up(user_id, self.max_depth)

        if self.cache:
            await self.cache.set_chain(user_id, chain)

        logger.debug(
            "Referral chain resolved",
            extra={"user_id": user_id, "chain_length": len(chain)},
        )
        return chain

    async def walk_up(self, user_id: int, limit: int) -> list[int]:
        """
        Follow referrer edges at most `limit` steps.

        Args:
            user_id: Starting user
            limit: Maximum number of ancestors to collect

        Returns:
            Ancestor user IDs

        Raises:
            CircularReferenceError: If an id is visited twice
        """
        chain: list[int] = []
        visited = {user_id}
        current = user_id

        for _ in range(limit):
            referrer_id = await self.referral_repo.get_referrer(current)
            if referrer_id is None:
                break
            if referrer_id in visited:
                logger.error(
                    "Referral cycle detected",
                    extra={"user_id": user_id, "chain": chain, "repeat": referrer_id},
                )
                raise CircularReferenceError(
                    referrer_id, [user_id, *chain, referrer_id]
                )
            visited.add(referrer_id)
            chain.append(referrer_id)
            current = referrer_id

        return chain

    async def collect_downline(self, user_id: int, levels: int) -> list[list[int]]:
        """
        Get the user's descendants level by level.

        Args:
            user_id: Root user
            levels: Maximum number of levels to descend

        Returns:
            [[level 1 ids], [level 2 ids], ...] without empty trailing levels
        """
        result: list[list[int]] = []
        visited = {user_id}
        frontier = [user_id]

        for _ in range(levels):
            children = await self.referral_repo.get_referral_ids(frontier)
            children = [child for child in children if child not in visited]
            if not children:
                break
            visited.update(children)
            result.append(children)
            frontier = children

        return result

    async def validate_new_edge(self, user_id: int, referrer_id: int) -> None:
        """
        Check that linking user_id under referrer_id keeps chain invariants.

        Reads the store directly; the cache may be stale.

        Args:
            user_id: User being referred
            referrer_id: Proposed direct referrer

        Raises:
            CircularReferenceError: If referrer_id's chain contains user_id
            ReferralEdgeExistsError: If user_id already has a referrer
            MaxDepthExceededError: If user_id or a descendant would end up
                deeper than D
        """
        if user_id == referrer_id:
            raise CircularReferenceError(user_id, [user_id, referrer_id])

        referrer_chain = await self.walk_up(referrer_id, self.max_depth)
        if user_id in referrer_chain:
            closing = referrer_chain[: referrer_chain.index(user_id) + 1]
            logger.warning(
                "Referral loop rejected",
                extra={
                    "user_id": user_id,
                    "referrer_id": referrer_id,
                    "chain_ids": referrer_chain,
                },
            )
            raise CircularReferenceError(user_id, [user_id, referrer_id, *closing])

        existing = await self.referral_repo.get_referrer(user_id)
        if existing is not None:
            raise ReferralEdgeExistsError(user_id, existing)

        depth = 1 + len(referrer_chain)
        if depth > self.max_depth:
            raise MaxDepthExceededError(user_id, depth, self.max_depth)

        downline = await self.collect_downline(
            user_id, self.max_depth - depth + 1
        )
        if depth + len(downline) > self.max_depth:
            raise MaxDepthExceededError(
                user_id, depth + len(downline), self.max_depth
            )

    async def invalidate(self, user_id: int) -> None:
        """
        Drop cached chains of a user and every descendant within D levels.

        Called after an edge under user_id was created or revoked.

        Args:
            user_id: User whose upline changed
        """
        if not self.cache:
            return

        affected = [user_id]
        for level in await self.collect_downline(user_id, self.max_depth):
            affected.extend(level)

        await self.cache.invalidate_chains(affected)
