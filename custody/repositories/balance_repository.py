"""
Balance repository.

Ticket balance mutation and history. Transaction boundaries belong to the
caller: every method here runs inside the caller's unit of work.
"""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from custody.models.balance_history import BalanceHistoryEntry
from custody.models.enums import HistoryEntryType
from custody.models.user import User
from custody.repositories.base import BaseRepository
from custody.utils.datetime_utils import utc_now
from custody.utils.exceptions import UserNotFoundError


class BalanceRepository(BaseRepository[BalanceHistoryEntry]):
    """Balance history repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(BalanceHistoryEntry, session)

    async def get_by_key(self, idempotency_key: str) -> BalanceHistoryEntry | None:
        """Get history entry by idempotency key."""
        return await self.get_by(idempotency_key=idempotency_key)

    async def atomic_credit_if_not_processed(
        self,
        user_id: int,
        idempotency_key: str,
        amount: int,
    ) -> int:
        """
        Increment the balance and record the credit under a unique key.

        Both statements run in the caller's transaction. If the key was
        already used the history INSERT raises IntegrityError and the
        caller must roll back, which undoes the increment as well.

        Args:
            user_id: User ID
            idempotency_key: Unique credit key
            amount: Tickets to add

        Returns:
            Balance after the credit

        Raises:
            UserNotFoundError: If user does not exist
            IntegrityError: If the key was already processed
        """
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(ticket_balance=User.ticket_balance + amount)
            .returning(User.ticket_balance)
        )
        result = await self.session.execute(stmt)
        balance_after = result.scalar_one_or_none()
        if balance_after is None:
            raise UserNotFoundError(f"User {user_id} not found")

        self.session.add(
            BalanceHistoryEntry(
                user_id=user_id,
                entry_type=HistoryEntryType.CREDIT,
                amount=amount,
                idempotency_key=idempotency_key,
                balance_after=balance_after,
                created_at=utc_now(),
            )
        )
        await self.session.flush()

        return balance_after

    async def get_history(
        self, user_id: int, limit: int = 50
    ) -> list[BalanceHistoryEntry]:
        """
        Get recent history entries for a user.

        Args:
            user_id: User ID
            limit: Max results

        Returns:
            Entries, newest first
        """
        stmt = (
            select(BalanceHistoryEntry)
            .where(BalanceHistoryEntry.user_id == user_id)
            .order_by(BalanceHistoryEntry.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
