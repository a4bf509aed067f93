"""Pydantic models for reward triggering events and distribution jobs."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class TriggeringEvent(BaseModel):
    """Reward-triggering action performed by a user.

    One event yields at most D reward jobs, one per ancestor.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    event_id: str = Field(
        ..., min_length=1, max_length=128, description="Globally unique event ID"
    )
    source_user_id: int = Field(..., ge=1, description="User who earned the amount")
    base_amount: Decimal = Field(..., ge=0, description="Amount rewards are computed from")
    event_type: str | None = Field(
        default=None, max_length=50, description="Action type (deposit, purchase, ...)"
    )


class RewardJob(BaseModel):
    """Distribution job: one reward for one chain link.

    Serialized payloads are deterministic, so the same job always maps to
    the same queue entry.
    """

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(..., min_length=1, max_length=128, description="Triggering event ID")
    source_user_id: int = Field(..., ge=1, description="User who earned the amount")
    beneficiary_id: int = Field(..., ge=1, description="Rewarded ancestor")
    tier: int = Field(..., ge=1, description="Chain position (1 = direct referrer)")
    base_amount: Decimal = Field(..., ge=0, description="Amount rewards are computed from")

    @property
    def key(self) -> str:
        """Idempotency key as a string: event_id:beneficiary_id:tier."""
        return f"{self.event_id}:{self.beneficiary_id}:{self.tier}"

    def to_payload(self) -> str:
        """Serialize for the queue."""
        return self.model_dump_json()

    @classmethod
    def from_payload(cls, payload: str | bytes) -> "RewardJob":
        """
        Parse a queue payload.

        Raises:
            pydantic.ValidationError: If the payload is malformed
        """
        return cls.model_validate_json(payload)

    @classmethod
    def from_transaction(cls, transaction) -> "RewardJob":
        """Build the job for a ledger row."""
        return cls(
            event_id=transaction.event_id,
            source_user_id=transaction.source_user_id,
            beneficiary_id=transaction.beneficiary_id,
            tier=transaction.tier,
            base_amount=transaction.base_amount,
        )
