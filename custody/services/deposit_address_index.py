"""
Deposit address index.

Answers "is this address one of our custodial accounts, and whose?".
Positive answers are cached for the life of the index (accounts are never
deleted or reassigned); negative answers always go to the database because
an account may be created at any moment.
"""

from typing import Any

from loguru import logger

from custody.repositories.user_repository import UserRepository
from custody.utils.security import mask_address


class DepositAddressIndex:
    """Address → user_id lookup backed by the custodial account table."""

    def __init__(self, session_factory: Any) -> None:
        """
        Initialize index.

        Args:
            session_factory: Async session factory
        """
        self.session_factory = session_factory
        self._cache: dict[str, int] = {}

    async def resolve(self, address: str | None) -> int | None:
        """
        Resolve a deposit address to its owner.

        Args:
            address: Address (any case)

        Returns:
            User ID or None if not a deposit address
        """
        if not address:
            return None

        normalized = address.lower()
        cached = self._cache.get(normalized)
        if cached is not None:
            return cached

        async with self.session_factory() as session:
            user = await UserRepository(session).get_by_deposit_address(normalized)

        if user is None:
            return None

        self._cache[normalized] = user.id
        logger.debug(
            f"[AddressIndex] Cached {mask_address(normalized)} -> user {user.id}"
        )
        return user.id

    async def is_deposit_address(self, address: str | None) -> bool:
        """Check if address belongs to a custodial account."""
        return await self.resolve(address) is not None

    def remember(self, address: str, user_id: int) -> None:
        """Seed the cache with a freshly created account."""
        self._cache[address.lower()] = user_id

    @property
    def cached_count(self) -> int:
        """Number of cached addresses."""
        return len(self._cache)
