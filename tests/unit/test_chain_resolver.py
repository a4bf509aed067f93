"""
Unit tests for referral chain resolution and edge validation.

Tests cover:
- Bounded upward walk
- Cycle detection
- Edge validation (self, circular, existing, depth, downline height)
- Cache read-through and invalidation
"""

import pytest

from app.services.referral.chain_resolver import ChainResolver
from app.utils.exceptions import (
    CircularReferenceError,
    MaxDepthExceededError,
    ReferralEdgeExistsError,
)
from tests.fakes import wire


@pytest.fixture
def resolver(db, session, tier_table):
    """Resolver on the in-memory database, no cache."""
    db.add_users(*range(1, 10))
    return wire(ChainResolver(session, tier_table=tier_table), db)


@pytest.fixture
def cached_resolver(db, session, cache, tier_table):
    """Resolver with the Redis cache layer."""
    db.add_users(*range(1, 10))
    return wire(ChainResolver(session, cache=cache, tier_table=tier_table), db)


class TestResolveChain:
    """Test upward chain resolution."""

    @pytest.mark.asyncio
    async def test_chain_ordered_by_tier(self, db, resolver):
        """Direct referrer comes first."""
        db.link_chain(1, 2, 3)

        assert await resolver.resolve_chain(1) == [2, 3]

    @pytest.mark.asyncio
    async def test_chain_truncated_at_max_depth(self, db, resolver):
        """Ancestors beyond D are ignored."""
        db.link_chain(1, 2, 3, 4, 5, 6)

        chain = await resolver.resolve_chain(1)

        assert chain == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_user_without_referrer(self, resolver):
        """Root users have an empty chain."""
        assert await resolver.resolve_chain(9) == []

    @pytest.mark.asyncio
    async def test_cycle_raises(self, db, resolver):
        """A stored cycle is reported, never looped over."""
        db.link_chain(1, 2, 3)
        db.link(3, 1)

        with pytest.raises(CircularReferenceError) as exc_info:
            await resolver.resolve_chain(1)

        assert exc_info.value.user_id == 1
        assert exc_info.value.chain == [1, 2, 3, 1]

    @pytest.mark.asyncio
    async def test_revoked_edges_ignored(self, db, resolver):
        """Only active edges form the chain."""
        db.link_chain(1, 2, 3)
        await resolver.referral_repo.revoke_edge(2)

        assert await resolver.resolve_chain(1) == [2]


class TestChainCache:
    """Test chain caching."""

    @pytest.mark.asyncio
    async def test_resolved_chain_cached(self, db, cached_resolver, cache):
        """Resolution stores the chain."""
        db.link_chain(1, 2, 3)

        await cached_resolver.resolve_chain(1)

        assert await cache.get_chain(1) == [2, 3]

    @pytest.mark.asyncio
    async def test_cache_hit_skips_store(self, cached_resolver, cache):
        """Cached chains are served without walking edges."""
        await cache.set_chain(1, [7, 8])

        assert await cached_resolver.resolve_chain(1) == [7, 8]
        assert await cached_resolver.resolve_chain(1, use_cache=False) == []

    @pytest.mark.asyncio
    async def test_invalidate_drops_downline(self, db, cached_resolver, cache):
        """Changing an upline drops cached chains of every descendant."""
        db.link_chain(1, 2, 3)
        db.link(4, 2)
        for user_id in (1, 2, 4, 5):
            await cached_resolver.resolve_chain(user_id)

        await cached_resolver.invalidate(2)

        assert await cache.get_chain(2) is None
        assert await cache.get_chain(1) is None
        assert await cache.get_chain(4) is None
        assert await cache.get_chain(5) == []


class TestValidateNewEdge:
    """Test validation of proposed referral edges."""

    @pytest.mark.asyncio
    async def test_valid_edge(self, db, resolver):
        """Edge within depth passes."""
        db.link_chain(2, 3)

        await resolver.validate_new_edge(1, 2)

    @pytest.mark.asyncio
    async def test_self_referral(self, resolver):
        """A user cannot refer themselves."""
        with pytest.raises(CircularReferenceError):
            await resolver.validate_new_edge(1, 1)

    @pytest.mark.asyncio
    async def test_circular_edge(self, db, resolver):
        """Linking an ancestor under its own descendant is rejected."""
        db.link_chain(1, 2, 3)

        with pytest.raises(CircularReferenceError):
            await resolver.validate_new_edge(3, 1)

    @pytest.mark.asyncio
    async def test_existing_referrer(self, db, resolver):
        """A referred user cannot be re-linked."""
        db.link(1, 2)

        with pytest.raises(ReferralEdgeExistsError) as exc_info:
            await resolver.validate_new_edge(1, 3)

        assert exc_info.value.referrer_id == 2

    @pytest.mark.asyncio
    async def test_referrer_chain_too_deep(self, db, resolver):
        """New user would sit below D ancestors."""
        db.link_chain(2, 3, 4, 5)

        with pytest.raises(MaxDepthExceededError) as exc_info:
            await resolver.validate_new_edge(1, 2)

        assert exc_info.value.depth == 4
        assert exc_info.value.max_depth == 3

    @pytest.mark.asyncio
    async def test_downline_pushed_too_deep(self, db, resolver):
        """Linking a user with descendants counts their depth too."""
        # 5 <- 6 <- 7 (7 is two levels below 5)
        db.link_chain(7, 6, 5)
        db.link(2, 3)

        with pytest.raises(MaxDepthExceededError):
            await resolver.validate_new_edge(5, 2)

    @pytest.mark.asyncio
    async def test_downline_within_depth(self, db, resolver):
        """A downline that still fits passes."""
        db.link(6, 5)

        await resolver.validate_new_edge(5, 2)
