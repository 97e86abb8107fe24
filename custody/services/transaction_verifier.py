"""
Transaction verifier.

Confirms that a purchase memo really landed on the ledger before tickets
are credited. The explorer (indexer) is searched for the memo key, then the
match is corroborated with a receipt query on the RPC node. Exhausting the
retry budget yields PENDING, never a failure: the transfer may simply not
be indexed yet, and reconciliation will look again.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from loguru import logger

from custody.config.constants import (
    ACCOUNT_HISTORY_LIMIT,
    DEPOSIT_MEMO_TAGS,
    VERIFIER_INITIAL_DELAY_SECONDS,
    VERIFIER_MAX_ATTEMPTS,
    VERIFIER_MIN_CONFIRMATIONS,
    VERIFIER_RETRY_DELAY_SECONDS,
    VERIFIER_STALENESS_SECONDS,
)
from custody.repositories.deposit_record_repository import DepositRecordRepository
from custody.services.ledger.client import ChainTransaction, LedgerClient
from custody.services.memo_parser import (
    RecognizedMemo,
    covers_ticket_price,
    parse_memo,
)
from custody.utils.datetime_utils import ensure_utc, from_timestamp, utc_now
from custody.utils.exceptions import LedgerUnavailableError
from custody.utils.security import mask_address, mask_tx_hash


class VerificationStatus(StrEnum):
    """Verifier outcome."""

    CONFIRMED = "confirmed"
    PENDING = "pending"
    ALREADY_FINAL = "already_final"


@dataclass(frozen=True)
class VerificationResult:
    """Result of a verification run."""

    status: VerificationStatus
    tx_hash: str | None = None
    amount: int | None = None
    value_wei: int | None = None
    attempts: int = 0

    @property
    def is_confirmed(self) -> bool:
        """True if the deposit can be credited."""
        return self.status == VerificationStatus.CONFIRMED


class TransactionVerifier:
    """Finality check for deposits."""

    def __init__(
        self,
        ledger: LedgerClient,
        session_factory: Any,
        memo_tags: tuple[str, ...] = DEPOSIT_MEMO_TAGS,
        initial_delay: float = VERIFIER_INITIAL_DELAY_SECONDS,
        retry_delay: float = VERIFIER_RETRY_DELAY_SECONDS,
        max_attempts: int = VERIFIER_MAX_ATTEMPTS,
        staleness_seconds: int = VERIFIER_STALENESS_SECONDS,
        min_confirmations: int = VERIFIER_MIN_CONFIRMATIONS,
        history_limit: int = ACCOUNT_HISTORY_LIMIT,
        ticket_price_wei: int = 0,
    ) -> None:
        """
        Initialize verifier.

        Args:
            ledger: Ledger client
            session_factory: Async session factory
            memo_tags: Recognized memo tags
            initial_delay: Wait before the first lookup (indexer lag)
            retry_delay: Wait between lookups
            max_attempts: Lookups before reporting PENDING
            staleness_seconds: Without a known hash, matches older than the record
                by more than this are ignored
            min_confirmations: Receipt confirmations required
            history_limit: Recent account transactions to search
            ticket_price_wei: Minimum value per ticket (0 disables the check)
        """
        self.ledger = ledger
        self.session_factory = session_factory
        self.memo_tags = memo_tags
        self.initial_delay = initial_delay
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts
        self.staleness = timedelta(seconds=staleness_seconds)
        self.min_confirmations = min_confirmations
        self.history_limit = history_limit
        self.ticket_price_wei = ticket_price_wei

    async def verify(
        self,
        idempotency_key: str,
        deposit_address: str,
        tx_hash: str | None = None,
    ) -> VerificationResult:
        """
        Verify a deposit.

        Args:
            idempotency_key: Key from the memo
            deposit_address: Custodial account that should have received it
            tx_hash: Transaction hash if already known (scanner path)

        Returns:
            VerificationResult
        """
        async with self.session_factory() as session:
            record = await DepositRecordRepository(session).get_by_key(idempotency_key)

        if record is not None and record.deposit_status.is_credited():
            return VerificationResult(
                status=VerificationStatus.ALREADY_FINAL,
                tx_hash=record.chain_tx_hash,
                amount=record.amount_requested,
            )

        anchor = ensure_utc(record.created_at) if record is not None else utc_now()
        known_hash = tx_hash.lower() if tx_hash else None

        if self.initial_delay > 0:
            await asyncio.sleep(self.initial_delay)

        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await self._attempt(
                    idempotency_key, deposit_address, known_hash, anchor, attempt
                )
                if result is not None:
                    return result
            except LedgerUnavailableError as e:
                logger.warning(
                    f"[Verifier] Attempt {attempt}/{self.max_attempts} for "
                    f"{idempotency_key} failed: {e}"
                )

            if attempt < self.max_attempts and self.retry_delay > 0:
                await asyncio.sleep(self.retry_delay)

        logger.info(
            f"[Verifier] {idempotency_key} not final after {self.max_attempts} attempts, "
            f"leaving pending"
        )
        return VerificationResult(
            status=VerificationStatus.PENDING,
            tx_hash=known_hash,
            attempts=self.max_attempts,
        )

    async def _attempt(
        self,
        idempotency_key: str,
        deposit_address: str,
        known_hash: str | None,
        anchor: datetime,
        attempt: int,
    ) -> VerificationResult | None:
        """One lookup + corroboration round. None means "try again"."""
        transactions = await self.ledger.get_account_transactions(
            deposit_address, self.history_limit
        )

        for tx in transactions:
            memo = self._match(tx, idempotency_key, deposit_address, known_hash)
            if memo is None:
                continue

            # A hash seen by the scanner is the transfer itself, however old the block
            if (
                known_hash is None
                and tx.timestamp is not None
                and from_timestamp(tx.timestamp) < anchor - self.staleness
            ):
                logger.warning(
                    f"[Verifier] Stale match {mask_tx_hash(tx.tx_hash)} for "
                    f"{idempotency_key}, ignoring"
                )
                continue

            outcome = await self.ledger.get_transaction_outcome(tx.tx_hash)
            if not outcome.found:
                logger.debug(
                    f"[Verifier] {mask_tx_hash(tx.tx_hash)} indexed but no receipt yet"
                )
                continue
            if not outcome.success:
                logger.warning(
                    f"[Verifier] {mask_tx_hash(tx.tx_hash)} reverted, not crediting "
                    f"{idempotency_key}"
                )
                continue
            if outcome.confirmations < self.min_confirmations:
                logger.debug(
                    f"[Verifier] {mask_tx_hash(tx.tx_hash)} has "
                    f"{outcome.confirmations}/{self.min_confirmations} confirmations"
                )
                continue

            logger.info(
                f"[Verifier] Confirmed {idempotency_key} at {mask_address(deposit_address)} "
                f"tx={mask_tx_hash(tx.tx_hash)} (attempt {attempt})"
            )
            return VerificationResult(
                status=VerificationStatus.CONFIRMED,
                tx_hash=tx.tx_hash,
                amount=memo.amount,
                value_wei=tx.value_wei,
                attempts=attempt,
            )

        return None

    def _match(
        self,
        tx: ChainTransaction,
        idempotency_key: str,
        deposit_address: str,
        known_hash: str | None,
    ) -> RecognizedMemo | None:
        """Return the parsed memo if tx is the incoming transfer for the key."""
        if (tx.to_address or "").lower() != deposit_address.lower():
            return None
        if tx.value_wei <= 0 or tx.success is False:
            return None
        if known_hash and tx.tx_hash.lower() != known_hash:
            return None

        memo = parse_memo(tx.memo, self.memo_tags)
        if not isinstance(memo, RecognizedMemo) or memo.key != idempotency_key:
            return None
        if not covers_ticket_price(memo, tx.value_wei, self.ticket_price_wei):
            logger.warning(
                f"[Verifier] {mask_tx_hash(tx.tx_hash)} underpays {memo.amount} tickets "
                f"({tx.value_wei} wei), not crediting {idempotency_key}"
            )
            return None
        return memo
