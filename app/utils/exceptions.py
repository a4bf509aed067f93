"""
Exception handling utilities.

Defines the referral engine error taxonomy and categorized exception types
for proper error handling.
"""

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError


class ReferralEngineError(Exception):
    """Base class for referral reward engine errors."""


class ReferralValidationError(ReferralEngineError):
    """Raised when a referral edge would break chain invariants."""


class CircularReferenceError(ReferralValidationError):
    """Raised when a chain revisits a user (cycle)."""

    def __init__(self, user_id: int, chain: list[int] | None = None) -> None:
        self.user_id = user_id
        self.chain = list(chain or [])
        super().__init__(
            f"Circular referral chain detected at user {user_id}: {self.chain}"
        )


class MaxDepthExceededError(ReferralValidationError):
    """Raised when an edge would make a chain longer than the maximum depth."""

    def __init__(self, user_id: int, depth: int, max_depth: int) -> None:
        self.user_id = user_id
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(
            f"Referral chain for user {user_id} would reach depth {depth} "
            f"(max {max_depth})"
        )


class ReferralEdgeExistsError(ReferralValidationError):
    """Raised when the referred user already has an active referrer."""

    def __init__(self, user_id: int, referrer_id: int) -> None:
        self.user_id = user_id
        self.referrer_id = referrer_id
        super().__init__(
            f"User {user_id} already has a referrer ({referrer_id})"
        )


class InvalidTierError(ReferralEngineError):
    """Raised when a tier is outside 1..max_depth."""

    def __init__(self, tier: int, max_depth: int) -> None:
        self.tier = tier
        self.max_depth = max_depth
        super().__init__(f"Invalid reward tier {tier} (max depth {max_depth})")


class DuplicateTransactionError(ReferralEngineError):
    """
    Raised when a reward transaction with the same idempotency key exists.

    Benign: callers treat it as a successful no-op.
    """

    def __init__(self, event_id: str, beneficiary_id: int, tier: int) -> None:
        self.event_id = event_id
        self.beneficiary_id = beneficiary_id
        self.tier = tier
        super().__init__(
            f"Reward transaction already exists for "
            f"({event_id}, {beneficiary_id}, {tier})"
        )


class TransientStoreError(ReferralEngineError):
    """Raised when the store is unavailable or conflicted. Retryable."""


class PoisonJobError(ReferralEngineError):
    """Raised for jobs that can never succeed. Routed to dead-letter."""


# Exception categories based on handling strategy

# Retryable - crediting is rescheduled by the recovery service
TRANSIENT_ERRORS = (
    TransientStoreError,
    OperationalError,     # Connection lost, deadlock, serialization failure
    InterfaceError,
    RedisConnectionError,
    RedisTimeoutError,
)

# Never retryable - dead-lettered immediately
POISON_ERRORS = (
    PoisonJobError,
    InvalidTierError,
)

def is_transient(exc: Exception) -> bool:
    """
    Check if exception is retryable.

    Args:
        exc: Exception to check

    Returns:
        True if the failed operation may succeed on retry
    """
    if isinstance(exc, TRANSIENT_ERRORS):
        return True
    # Driver errors flagged as connection invalidation are transient too
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def is_poison(exc: Exception) -> bool:
    """
    Check if exception marks a job as non-retryable.

    Args:
        exc: Exception to check

    Returns:
        True if the job must be dead-lettered
    """
    return isinstance(exc, POISON_ERRORS)
