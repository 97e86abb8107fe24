"""
Chain scanner.

Walks the chain one block per tick and hands every transaction to a
dispatch callable. The cursor advances by exactly one block, and only
after the whole block was dispatched or parked:
- a block fetch error leaves the cursor where it is (the block is retried)
- a dispatch error parks the transaction in unprocessed_transactions
- a parking error fails the tick, the block is fetched again next time

Parked transactions are retried at the start of every tick until they
succeed or run out of attempts.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from custody.config.constants import (
    DEPOSIT_CURSOR_NAME,
    UNPROCESSED_DRAIN_BATCH,
    UNPROCESSED_MAX_ATTEMPTS,
)
from custody.repositories.chain_cursor_repository import ChainCursorRepository
from custody.repositories.unprocessed_transaction_repository import (
    UnprocessedTransactionRepository,
)
from custody.services.ledger.client import ChainTransaction, LedgerClient
from custody.utils.exceptions import LedgerUnavailableError
from custody.utils.security import mask_tx_hash


Dispatch = Callable[[ChainTransaction], Awaitable[None]]


@dataclass(frozen=True)
class TickResult:
    """What a tick did."""

    block_number: int | None = None
    transactions: int = 0
    parked: int = 0
    drained: int = 0
    advanced: bool = False
    error: str | None = None


class ChainScanner:
    """Block-by-block scanner with a persisted cursor."""

    def __init__(
        self,
        ledger: LedgerClient,
        session_factory: Any,
        dispatch: Dispatch,
        cursor_name: str = DEPOSIT_CURSOR_NAME,
        start_block: int | None = None,
        drain_batch: int = UNPROCESSED_DRAIN_BATCH,
        max_attempts: int = UNPROCESSED_MAX_ATTEMPTS,
    ) -> None:
        """
        Initialize scanner.

        Args:
            ledger: Ledger client
            session_factory: Async session factory
            dispatch: Coroutine called for every transaction, in block order
            cursor_name: Persisted cursor name
            start_block: First block to scan when no cursor is persisted
            drain_batch: Parked transactions retried per tick
            max_attempts: Attempts before a parked transaction is abandoned
        """
        self.ledger = ledger
        self.session_factory = session_factory
        self.dispatch = dispatch
        self.cursor_name = cursor_name
        self.start_block = start_block
        self.drain_batch = drain_batch
        self.max_attempts = max_attempts

        self.cursor: int | None = None
        self.last_height: int | None = None

    async def _ensure_cursor(self, height: int) -> int:
        """
        Load the cursor, initializing it on first run.

        Without a persisted cursor scanning starts at start_block, or at
        the next block after the current height.
        """
        if self.cursor is not None:
            return self.cursor

        async with self.session_factory() as session:
            repo = ChainCursorRepository(session)
            persisted = await repo.get_cursor(self.cursor_name)
            if persisted is None:
                if self.start_block is not None:
                    persisted = max(self.start_block - 1, 0)
                else:
                    persisted = height
                await repo.set_cursor(self.cursor_name, persisted)
                await session.commit()
                logger.info(
                    f"[Scanner] Initialized cursor '{self.cursor_name}' at block {persisted}"
                )

        self.cursor = persisted
        return persisted

    async def _record_error(self, error: str) -> None:
        """Count a failed tick on the cursor row."""
        async with self.session_factory() as session:
            await ChainCursorRepository(session).record_error(self.cursor_name, error)
            await session.commit()

    async def drain_unprocessed(self) -> int:
        """
        Retry parked transactions.

        Returns:
            Number of transactions dispatched successfully
        """
        async with self.session_factory() as session:
            rows = await UnprocessedTransactionRepository(session).get_pending(
                self.drain_batch
            )
            pending = [(row.id, row.tx_hash, dict(row.payload)) for row in rows]

        drained = 0
        for row_id, tx_hash, payload in pending:
            try:
                await self.dispatch(ChainTransaction.from_payload(payload))
            except Exception as e:
                async with self.session_factory() as session:
                    abandoned = await UnprocessedTransactionRepository(
                        session
                    ).record_failure(row_id, f"{type(e).__name__}: {e}", self.max_attempts)
                    await session.commit()
                if abandoned:
                    logger.error(
                        f"[Scanner] Abandoning {mask_tx_hash(tx_hash)} after "
                        f"{self.max_attempts} attempts: {e}"
                    )
                else:
                    logger.warning(f"[Scanner] Retry of {mask_tx_hash(tx_hash)} failed: {e}")
                continue

            async with self.session_factory() as session:
                await UnprocessedTransactionRepository(session).remove(row_id)
                await session.commit()
            drained += 1
            logger.info(f"[Scanner] Recovered parked transaction {mask_tx_hash(tx_hash)}")

        return drained

    async def _park(self, tx: ChainTransaction, error: Exception) -> None:
        """Persist a transaction whose dispatch failed."""
        async with self.session_factory() as session:
            await UnprocessedTransactionRepository(session).park(
                tx.block_number,
                tx.tx_hash,
                tx.to_payload(),
                f"{type(error).__name__}: {error}",
            )
            await session.commit()

    async def tick(self) -> TickResult:
        """
        Process at most one new block.

        Returns:
            TickResult

        Raises:
            Exception: If a failed transaction could not be parked or the
                cursor could not be saved; the cursor is not advanced
        """
        drained = 0
        try:
            drained = await self.drain_unprocessed()
        except Exception as e:
            logger.exception(f"[Scanner] Draining unprocessed transactions failed: {e}")

        try:
            height = await self.ledger.get_chain_height()
            self.last_height = height
            cursor = await self._ensure_cursor(height)
            if height <= cursor:
                return TickResult(drained=drained)

            block_number = cursor + 1
            transactions = await self.ledger.get_block_transactions(block_number)
        except LedgerUnavailableError as e:
            logger.warning(f"[Scanner] Tick failed, cursor stays at {self.cursor}: {e}")
            await self._record_error(str(e))
            return TickResult(drained=drained, error=str(e))

        parked = 0
        for tx in transactions:
            try:
                await self.dispatch(tx)
            except Exception as e:
                logger.error(
                    f"[Scanner] Dispatch of {mask_tx_hash(tx.tx_hash)} in block "
                    f"{block_number} failed, parking: {type(e).__name__}: {e}"
                )
                await self._park(tx, e)
                parked += 1

        async with self.session_factory() as session:
            await ChainCursorRepository(session).set_cursor(self.cursor_name, block_number)
            await session.commit()
        self.cursor = block_number

        if transactions:
            logger.debug(
                f"[Scanner] Block {block_number}: {len(transactions)} txs, {parked} parked"
            )

        return TickResult(
            block_number=block_number,
            transactions=len(transactions),
            parked=parked,
            drained=drained,
            advanced=True,
        )

    @property
    def lag(self) -> int | None:
        """Blocks behind the last seen height."""
        if self.cursor is None or self.last_height is None:
            return None
        return max(0, self.last_height - self.cursor)
