"""
Dramatiq broker configuration.

Redis-based message broker for the referral maintenance actors.
"""

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.middleware import (
    CurrentMessage,
    Retries,
    ShutdownNotifications,
    default_middleware,
)
from loguru import logger

from app.config.settings import settings
from app.utils.redis_utils import get_redis_url_masked

# ShutdownNotifications: lets long sweeps stop between batches
# CurrentMessage: actors can read their own message (retry count)
# Retries: exponential backoff for failed actor runs
middleware = [
    m() for m in default_middleware
    if m not in (Retries, ShutdownNotifications)
]
middleware += [
    ShutdownNotifications(),
    CurrentMessage(),
    Retries(
        max_retries=3,
        min_backoff=1000,  # 1 second
        max_backoff=60000,  # 1 minute
    ),
]

redis_broker = RedisBroker(
    host=settings.redis_host,
    port=settings.redis_port,
    password=settings.redis_password if settings.redis_password else None,
    db=settings.redis_db,
    middleware=middleware,
)

dramatiq.set_broker(redis_broker)

broker = redis_broker

logger.info(f"Dramatiq broker initialized: {get_redis_url_masked()}")
