"""
Referral cache layer.

Read-through Redis cache of resolved chains and aggregate stats.
Purely derived state: every read may miss, every write may fail, and
either case falls back to the database.
"""

import json
from collections.abc import Iterable
from typing import Any

from loguru import logger
from redis.asyncio import Redis

from app.config.constants import CHAIN_CACHE_KEY, STATS_CACHE_KEY
from app.config.settings import settings
from app.utils.cache_invalidation import (
    invalidate_chain_cache,
    invalidate_stats_cache,
)


class ReferralCache:
    """TTL-bounded cache of chains and stats."""

    def __init__(
        self,
        redis_client: Redis | None,
        chain_ttl: int | None = None,
        stats_ttl: int | None = None,
    ) -> None:
        """
        Initialize cache.

        Args:
            redis_client: Redis client (None disables caching)
            chain_ttl: Chain TTL in seconds
            stats_ttl: Stats TTL in seconds
        """
        self.redis = redis_client
        self.chain_ttl = chain_ttl or settings.chain_cache_ttl_seconds
        self.stats_ttl = stats_ttl or settings.stats_cache_ttl_seconds

    async def get_chain(self, user_id: int) -> list[int] | None:
        """Cached chain of a user, or None on miss."""
        value = await self._get(CHAIN_CACHE_KEY.format(user_id=user_id))
        if not isinstance(value, list):
            return None
        return [int(ancestor) for ancestor in value]

    async def set_chain(self, user_id: int, chain: list[int]) -> None:
        """Cache a resolved chain."""
        await self._set(
            CHAIN_CACHE_KEY.format(user_id=user_id), chain, self.chain_ttl
        )

    async def invalidate_chains(self, user_ids: Iterable[int]) -> None:
        """Drop cached chains of the given users."""
        await invalidate_chain_cache(self.redis, user_ids)

    async def get_stats(self, user_id: int) -> dict[str, Any] | None:
        """Cached stats payload of a user, or None on miss."""
        value = await self._get(STATS_CACHE_KEY.format(user_id=user_id))
        return value if isinstance(value, dict) else None

    async def set_stats(self, user_id: int, stats: dict[str, Any]) -> None:
        """Cache a stats payload (JSON-serializable)."""
        await self._set(
            STATS_CACHE_KEY.format(user_id=user_id), stats, self.stats_ttl
        )

    async def invalidate_stats(self, user_id: int) -> None:
        """Drop cached stats of a user."""
        await invalidate_stats_cache(self.redis, user_id)

    async def _get(self, key: str) -> Any:
        if not self.redis:
            return None
        try:
            raw = await self.redis.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Dropping undecodable cache entry {key}")
            try:
                await self.redis.delete(key)
            except Exception as e:
                logger.warning(f"Cache delete failed for {key}: {e}")
            return None

    async def _set(self, key: str, value: Any, ttl: int) -> None:
        if not self.redis:
            return
        try:
            await self.redis.set(key, json.dumps(value), ex=ttl)
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")
