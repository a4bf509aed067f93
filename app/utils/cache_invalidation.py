"""
Cache invalidation utilities.

Provides functions to invalidate Redis cache when referral data is updated.
Failures are logged and never propagate: the cache is disposable and the
database is always the source of truth.
"""

from collections.abc import Iterable

from loguru import logger
from redis.asyncio import Redis

from app.config.constants import CHAIN_CACHE_KEY, STATS_CACHE_KEY


async def invalidate_chain_cache(
    redis_client: Redis | None, user_ids: Iterable[int]
) -> int:
    """
    Invalidate cached referral chains.

    Cache keys invalidated:
    - referral:chain:{user_id} for every user_id

    Args:
        redis_client: Redis client instance
        user_ids: Users whose upline changed

    Returns:
        Number of keys deleted
    """
    if not redis_client:
        logger.warning("Redis client not provided, skipping chain cache invalidation")
        return 0

    keys = [CHAIN_CACHE_KEY.format(user_id=user_id) for user_id in user_ids]
    if not keys:
        return 0

    try:
        deleted = await redis_client.delete(*keys)
        if deleted:
            logger.debug(
                f"Invalidated {deleted} chain cache keys",
                extra={"keys": keys},
            )
        return deleted
    except Exception as e:
        logger.warning(
            f"Failed to invalidate chain cache: {e}",
            extra={"keys": keys},
        )
        return 0


async def invalidate_stats_cache(
    redis_client: Redis | None, user_id: int
) -> None:
    """
    Invalidate cached referral stats of a user.

    Cache keys invalidated:
    - referral:stats:{user_id}

    Args:
        redis_client: Redis client instance
        user_id: Beneficiary whose stats changed
    """
    if not redis_client:
        logger.warning("Redis client not provided, skipping stats cache invalidation")
        return

    key = STATS_CACHE_KEY.format(user_id=user_id)
    try:
        deleted = await redis_client.delete(key)
        if deleted:
            logger.debug(f"Cache invalidated: {key}")
    except Exception as e:
        logger.warning(
            f"Failed to invalidate stats cache for user {user_id}: {e}",
            extra={"user_id": user_id},
        )
