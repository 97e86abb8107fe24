"""
Unprocessed transaction repository.

Parking lot for transactions whose dispatch failed during a block scan.
"""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from custody.models.unprocessed_transaction import UnprocessedTransaction
from custody.repositories.base import BaseRepository
from custody.utils.datetime_utils import utc_now


class UnprocessedTransactionRepository(BaseRepository[UnprocessedTransaction]):
    """Unprocessed transaction repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(UnprocessedTransaction, session)

    async def park(
        self,
        block_number: int,
        tx_hash: str,
        payload: dict[str, Any],
        error: str,
    ) -> UnprocessedTransaction:
        """
        Store a failed transaction, or count another failure if already parked.

        Args:
            block_number: Block the transaction was found in
            tx_hash: Transaction hash
            payload: Serialized transaction
            error: Dispatch error

        Returns:
            Parked row
        """
        existing = await self.get_by(tx_hash=tx_hash)
        if existing is not None:
            existing.attempts += 1
            existing.last_error = error[:1000]
            existing.updated_at = utc_now()
            await self.session.flush()
            return existing

        return await self.create(
            block_number=block_number,
            tx_hash=tx_hash,
            payload=payload,
            attempts=1,
            last_error=error[:1000],
            abandoned=False,
        )

    async def get_pending(self, limit: int) -> list[UnprocessedTransaction]:
        """
        Get rows still eligible for retry.

        Args:
            limit: Max rows

        Returns:
            Oldest rows first
        """
        stmt = (
            select(UnprocessedTransaction)
            .where(UnprocessedTransaction.abandoned.is_(False))
            .order_by(UnprocessedTransaction.id.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def record_failure(
        self,
        row_id: int,
        error: str,
        max_attempts: int,
    ) -> bool:
        """
        Count a failed retry.

        Args:
            row_id: Row ID
            error: Dispatch error
            max_attempts: Attempts before the row is abandoned

        Returns:
            True if the row is now abandoned
        """
        row = await self.get_by_id(row_id)
        if row is None:
            return False

        row.attempts += 1
        row.last_error = error[:1000]
        row.abandoned = row.attempts >= max_attempts
        row.updated_at = utc_now()
        await self.session.flush()
        return row.abandoned

    async def remove(self, row_id: int) -> None:
        """Delete a row after successful dispatch."""
        row = await self.get_by_id(row_id)
        if row is not None:
            await self.session.delete(row)
            await self.session.flush()
