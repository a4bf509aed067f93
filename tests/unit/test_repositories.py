"""
Unit tests for repositories with a mocked session.

Tests cover:
- Duplicate detection on ledger inserts
- Referral code generation
- Balance credit result mapping
- Locked reads by ID
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from app.models.user import User
from app.repositories.reward_transaction_repository import (
    RewardTransactionRepository,
)
from app.repositories.user_repository import UserRepository
from app.utils.exceptions import DuplicateTransactionError


def result_with(scalar=None, rowcount=1):
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.rowcount = rowcount
    return result


class TestRewardTransactionRepository:
    """Test ledger inserts."""

    @pytest.mark.asyncio
    async def test_create_pending_returns_row(self, mock_session):
        """Inserted rows are returned."""
        row = MagicMock()
        mock_session.execute.return_value = result_with(row)

        created = await RewardTransactionRepository(mock_session).create_pending(
            event_id="evt-1", beneficiary_id=2, tier=1,
            source_user_id=1, base_amount=Decimal("100"),
        )

        assert created is row

    @pytest.mark.asyncio
    async def test_conflict_raises_duplicate(self, mock_session):
        """ON CONFLICT DO NOTHING returning no row means the key exists."""
        mock_session.execute.return_value = result_with(None)

        with pytest.raises(DuplicateTransactionError) as exc_info:
            await RewardTransactionRepository(mock_session).create_pending(
                event_id="evt-1", beneficiary_id=2, tier=1,
                source_user_id=1, base_amount=Decimal("100"),
            )

        assert (exc_info.value.event_id, exc_info.value.tier) == ("evt-1", 1)

    @pytest.mark.asyncio
    async def test_mark_failed_on_final_row(self, mock_session):
        """Final rows are not updated."""
        mock_session.execute.return_value = result_with(None)

        retry_count = await RewardTransactionRepository(mock_session).mark_failed(
            "evt-1", 2, 1, "boom"
        )

        assert retry_count is None


class TestUserRepository:
    """Test user queries."""

    @pytest.mark.asyncio
    async def test_credit_missing_user(self, mock_session):
        """No updated row means the beneficiary does not exist."""
        mock_session.execute.return_value = result_with(rowcount=0)

        assert await UserRepository(mock_session).credit_balance(99, Decimal("1")) is False

    @pytest.mark.asyncio
    async def test_credit_existing_user(self, mock_session):
        """One updated row is a successful credit."""
        mock_session.execute.return_value = result_with(rowcount=1)

        assert await UserRepository(mock_session).credit_balance(2, Decimal("1")) is True

    @pytest.mark.asyncio
    async def test_existing_code_kept(self, mock_session):
        """Users with a code keep it."""
        mock_session.get.return_value = User(id=1, referral_code="REF_ABCDEFGH")

        code = await UserRepository(mock_session).get_or_create_referral_code(1)

        assert code == "REF_ABCDEFGH"
        mock_session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_code_generated(self, mock_session):
        """A unique code is generated and stored."""
        user = User(id=1, referral_code=None)
        mock_session.get.return_value = user
        mock_session.execute.return_value = result_with(None)

        code = await UserRepository(mock_session).get_or_create_referral_code(1)

        assert code.startswith("REF_")
        assert len(code) == len("REF_") + 8
        assert user.referral_code == code

    @pytest.mark.asyncio
    async def test_code_for_missing_user(self, mock_session):
        """Unknown users raise ValueError."""
        mock_session.get.return_value = None

        with pytest.raises(ValueError):
            await UserRepository(mock_session).get_or_create_referral_code(1)


class TestRowLocking:
    """Test locked reads by ID."""

    @pytest.mark.asyncio
    async def test_get_by_id_for_update_locks_row(self, mock_session):
        """A locked read issues SELECT ... FOR UPDATE instead of an identity lookup."""
        row = MagicMock()
        mock_session.execute.return_value = result_with(row)

        found = await RewardTransactionRepository(mock_session).get_by_id(
            7, for_update=True
        )

        assert found is row
        mock_session.get.assert_not_called()
        stmt = mock_session.execute.call_args.args[0]
        assert "FOR UPDATE" in str(stmt.compile(dialect=postgresql.dialect()))

    @pytest.mark.asyncio
    async def test_get_by_id_plain_read(self, mock_session):
        """Unlocked reads use the session identity map."""
        row = MagicMock()
        mock_session.get.return_value = row

        assert await RewardTransactionRepository(mock_session).get_by_id(7) is row
        mock_session.execute.assert_not_called()
