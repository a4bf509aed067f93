"""
Referral link service.

Validated creation and revocation of referral edges. Edge validation errors
are surfaced to the caller and never silently fixed.
"""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.referral import Referral
from app.repositories.user_repository import UserRepository
from app.services.base_service import BaseService
from app.services.referral.cache import ReferralCache
from app.services.referral.chain_resolver import ChainResolver
from app.utils.exceptions import ReferralEdgeExistsError


class ReferralLinkService(BaseService):
    """Creates and revokes referral edges."""

    def __init__(
        self, session: AsyncSession, cache: ReferralCache | None = None
    ) -> None:
        """Initialize link service."""
        super().__init__(session)
        self.user_repo = UserRepository(session)
        self.resolver = ChainResolver(session, cache=cache)
        self.referral_repo = self.resolver.referral_repo

    async def link(
        self,
        user_id: int,
        referrer_id: int,
        referral_code: str | None = None,
    ) -> Referral:
        """
        Link user_id as referred by referrer_id.

        Args:
            user_id: User being referred
            referrer_id: Direct referrer
            referral_code: Code applied

        Returns:
            Created Referral edge

        Raises:
            CircularReferenceError, MaxDepthExceededError,
            ReferralEdgeExistsError: Invariant violations, nothing written
        """
        await self.resolver.validate_new_edge(user_id, referrer_id)

        try:
            edge = await self.referral_repo.create_edge(
                user_id, referrer_id, referral_code
            )
            await self.commit()
        except IntegrityError:
            # Concurrent link of the same user won the unique index
            await self.rollback()
            current = await self.referral_repo.get_referrer(user_id)
            raise ReferralEdgeExistsError(user_id, current or referrer_id)

        await self.resolver.invalidate(user_id)

        self.logger.info(
            "Referral edge created",
            extra={
                "user_id": user_id,
                "referrer_id": referrer_id,
                "referral_code": referral_code,
            },
        )
        return edge

    async def link_by_code(self, user_id: int, referral_code: str) -> Referral:
        """
        Link a user to the owner of a referral code.

        Args:
            user_id: User applying the code
            referral_code: Referrer's code

        Returns:
            Created Referral edge

        Raises:
            ValueError: If no user owns the code
        """
        referrer = await self.user_repo.get_by_referral_code(referral_code)
        if referrer is None:
            raise ValueError(f"No user found with referral_code={referral_code}")

        return await self.link(user_id, referrer.id, referral_code)

    async def get_referral_code(self, user_id: int) -> str:
        """
        Get the user's referral code, generating it on first use.

        Raises:
            ValueError: If the user does not exist
        """
        code = await self.user_repo.get_or_create_referral_code(user_id)
        await self.commit()
        return code

    async def unlink(self, user_id: int) -> Referral | None:
        """
        Revoke a user's referrer edge.

        Args:
            user_id: Referred user

        Returns:
            Revoked edge, or None if the user had no referrer
        """
        edge = await self.referral_repo.revoke_edge(user_id)
        if edge is None:
            return None

        await self.commit()
        await self.resolver.invalidate(user_id)

        self.logger.info(
            "Referral edge revoked",
            extra={"user_id": user_id, "referrer_id": edge.referrer_id},
        )
        return edge
