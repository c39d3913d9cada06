"""Prepaid try-on credit ledger."""

import logging

from ..errors import InsufficientCreditsError
from ..models import MerchantProfile
from .stores import ProfileStore

logger = logging.getLogger(__name__)


class CreditLedger:
    """Tracks and gates a boutique's remaining try-on credits.

    The balance lives on the `MerchantProfile`; every change is a
    read-modify-write on the profile store (last write wins).
    """

    def __init__(self, profile_store: ProfileStore):
        self.profile_store = profile_store

    async def _require_profile(self) -> MerchantProfile:
        profile = await self.profile_store.get_profile()
        if profile is None:
            raise InsufficientCreditsError("No boutique profile configured")
        return profile

    async def balance(self) -> int:
        profile = await self.profile_store.get_profile()
        return profile.credits if profile else 0

    async def can_serve(self) -> bool:
        """A request may run only while the balance is positive."""
        return await self.balance() > 0

    async def consume(self, amount: int = 1) -> int:
        """Deduct credits after a successful generation. Returns the new balance.

        The balance never goes below zero.
        """
        if amount <= 0:
            raise ValueError("amount must be positive")
        profile = await self._require_profile()
        remaining = profile.credits - amount
        if remaining < 0:
            logger.warning(
                "Credit balance for %s would go negative (%d - %d); clamping to 0",
                profile.uid, profile.credits, amount,
            )
            remaining = 0
        await self.profile_store.save_profile(profile.model_copy(update={"credits": remaining}))
        logger.info("Consumed %d credit(s) for %s, %d left", amount, profile.uid, remaining)
        return remaining

    async def top_up(self, amount: int) -> int:
        """Add purchased credits. Payment itself is not handled here."""
        if amount <= 0:
            raise ValueError("amount must be positive")
        profile = await self._require_profile()
        total = profile.credits + amount
        await self.profile_store.save_profile(profile.model_copy(update={"credits": total}))
        logger.info("Added %d credit(s) for %s, %d total", amount, profile.uid, total)
        return total
