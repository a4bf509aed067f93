"""
Reward distribution events.

RewardDistributed is emitted after a reward commit. Subscribers run
in-process; a failing subscriber is logged and never affects the credit.
"""

import json
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal

from loguru import logger
from redis.asyncio import Redis

from app.config.settings import settings


@dataclass(frozen=True)
class RewardDistributed:
    """A reward was credited to a beneficiary."""

    event_id: str
    beneficiary_id: int
    source_user_id: int
    tier: int
    amount: Decimal
    credited_at: datetime

    def to_json(self) -> str:
        """Serialize for pub/sub."""
        data = asdict(self)
        data["amount"] = str(self.amount)
        data["credited_at"] = self.credited_at.isoformat()
        return json.dumps(data)


EventHandler = Callable[[RewardDistributed], Awaitable[None]]


class RewardEventBus:
    """In-process publisher of RewardDistributed events."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> None:
        """Register an async handler."""
        self._handlers.append(handler)

    async def publish(self, event: RewardDistributed) -> None:
        """Deliver an event to every handler."""
        for handler in self._handlers:
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    f"Reward event handler failed: {e}",
                    extra={
                        "handler": getattr(handler, "__name__", repr(handler)),
                        "event_id": event.event_id,
                        "beneficiary_id": event.beneficiary_id,
                    },
                )


class RedisEventPublisher:
    """Forwards RewardDistributed events to a Redis pub/sub channel."""

    def __init__(self, redis_client: Redis, channel: str | None = None) -> None:
        self.redis = redis_client
        self.channel = channel or settings.reward_events_channel

    async def __call__(self, event: RewardDistributed) -> None:
        await self.redis.publish(self.channel, event.to_json())
