"""
User repository.

Data access layer for User model.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from custody.models.custodial_account import CustodialAccount
from custody.models.user import User
from custody.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """User repository with specific queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize user repository."""
        super().__init__(User, session)

    async def get_by_deposit_address(
        self, address: str
    ) -> User | None:
        """
        Get the owner of a custodial deposit address.

        Args:
            address: Deposit address (any case)

        Returns:
            User or None if the address is not a custodial account
        """
        if not address:
            return None

        stmt = (
            select(User)
            .join(CustodialAccount, CustodialAccount.user_id == User.id)
            .where(CustodialAccount.address == address.lower())
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_ticket_balance(self, user_id: int) -> int | None:
        """
        Read ticket balance without loading the entity.

        Args:
            user_id: User ID

        Returns:
            Balance or None if user does not exist
        """
        stmt = select(User.ticket_balance).where(User.id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
