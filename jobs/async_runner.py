"""
Async runner for dramatiq tasks.

Dramatiq actors are synchronous and run in worker threads; each thread
keeps one event loop so asyncpg and redis connections never cross loops.
"""

import asyncio
import threading
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from loguru import logger
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.utils.redis_utils import get_redis_client
from jobs.utils.database import create_task_engine, create_task_session_maker

T = TypeVar("T")

# Thread-local storage for event loops
_thread_local = threading.local()


def get_event_loop() -> asyncio.AbstractEventLoop:
    """
    Get or create event loop for current thread.

    Creates a new event loop for each thread and reuses it.
    This prevents "Future attached to a different loop" errors.
    """
    loop = getattr(_thread_local, "loop", None)
    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        _thread_local.loop = loop
        logger.debug(f"Created new event loop for thread {threading.current_thread().name}")
    return loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run async coroutine in the thread's event loop.

    Args:
        coro: Async coroutine to run

    Returns:
        Result of the coroutine
    """
    loop = get_event_loop()
    try:
        return loop.run_until_complete(coro)
    except Exception as e:
        logger.exception(f"Error running async coroutine: {e}")
        raise


@asynccontextmanager
async def task_resources() -> AsyncIterator[
    tuple[async_sessionmaker[AsyncSession], Redis | None]
]:
    """
    Session maker and Redis client scoped to one actor run.

    The engine uses NullPool and is disposed on exit; Redis is None when
    it cannot be reached (locks then fall back to unlocked runs).

    Usage:
        async with task_resources() as (session_maker, redis_client):
            async with session_maker() as session:
                ...

    Yields:
        (session_maker, redis_client)
    """
    engine = create_task_engine()
    session_maker = create_task_session_maker(engine)

    redis_client = None
    try:
        redis_client = await get_redis_client()
    except Exception as e:
        logger.warning(f"Failed to create Redis client: {e}")

    try:
        yield session_maker, redis_client
    finally:
        if redis_client:
            await redis_client.aclose()
        await engine.dispose()
