"""
Chain cursor repository.

Persisted scan position per cursor name.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from custody.models.chain_cursor import ChainCursor
from custody.repositories.base import BaseRepository
from custody.utils.datetime_utils import utc_now


class ChainCursorRepository(BaseRepository[ChainCursor]):
    """Chain cursor repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(ChainCursor, session)

    async def get_cursor(self, name: str) -> int | None:
        """
        Get last processed block.

        Args:
            name: Cursor name

        Returns:
            Block number or None if never persisted
        """
        cursor = await self.get_by(name=name)
        return cursor.last_processed_block if cursor else None

    async def set_cursor(self, name: str, block_number: int) -> bool:
        """
        Persist the cursor. Never moves it backwards.

        Args:
            name: Cursor name
            block_number: Last fully processed block

        Returns:
            True if the stored value changed
        """
        cursor = await self.get_by(name=name)
        if cursor is None:
            await self.create(
                name=name,
                last_processed_block=block_number,
                error_count=0,
            )
            return True

        if block_number <= cursor.last_processed_block:
            return False

        cursor.last_processed_block = block_number
        cursor.last_error = None
        cursor.updated_at = utc_now()
        await self.session.flush()
        return True

    async def record_error(self, name: str, error: str) -> None:
        """
        Count a failed tick without touching the position.

        Args:
            name: Cursor name
            error: Error description
        """
        cursor = await self.get_by(name=name)
        if cursor is None:
            return

        cursor.error_count += 1
        cursor.last_error = error[:1000]
        cursor.updated_at = utc_now()
        await self.session.flush()
