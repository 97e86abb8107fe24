"""
Deposit processor.

Classifier → Verifier → Credit Ledger → Sweep Engine, split in two parts:
- register: durable, fast; creates the PENDING deposit record
- settle: slow; verifies, credits and requests the sweep

Every stage is resumable from the stored record, so a crash between stages
loses nothing: reconciliation calls reprocess() on whatever is left.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from custody.models.custodial_account import CustodialAccount
from custody.models.deposit_record import DepositRecord
from custody.models.enums import DepositSource, DepositStatus
from custody.repositories.custodial_account_repository import (
    CustodialAccountRepository,
)
from custody.repositories.deposit_record_repository import DepositRecordRepository
from custody.services.credit_ledger import CreditLedger
from custody.services.deposit_classifier import DepositCandidate
from custody.services.memo_parser import is_valid_idempotency_key
from custody.services.sweep_engine import SweepEngine, SweepResult
from custody.services.transaction_verifier import (
    TransactionVerifier,
    VerificationStatus,
)
from custody.utils.exceptions import CustodialAccountNotFoundError
from custody.utils.security import mask_address, mask_tx_hash


@dataclass(frozen=True)
class ProcessingResult:
    """Where a deposit stands after a processing pass."""

    idempotency_key: str
    status: DepositStatus | None
    credited: bool = False
    already_processed: bool = False
    balance: int | None = None
    reason: str | None = None


class DepositProcessor:
    """Runs deposits through verification, crediting and sweeping."""

    def __init__(
        self,
        session_factory: Any,
        verifier: TransactionVerifier,
        credit_ledger: CreditLedger,
        sweep_engine: SweepEngine,
        request_sweep: Callable[[str], Any] | None = None,
    ) -> None:
        """
        Initialize processor.

        Args:
            session_factory: Async session factory
            verifier: Transaction verifier
            credit_ledger: Credit ledger
            sweep_engine: Sweep engine
            request_sweep: Hands a credited key to the sweep queue; when
                unset, sweeps run inline
        """
        self.session_factory = session_factory
        self.verifier = verifier
        self.credit_ledger = credit_ledger
        self.sweep_engine = sweep_engine
        self.request_sweep = request_sweep

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register_candidate(
        self, candidate: DepositCandidate
    ) -> DepositRecord | None:
        """
        Persist the deposit record for a classified transaction.

        Args:
            candidate: Classified deposit

        Returns:
            Deposit record, or None if the key belongs to another account
        """
        async with self.session_factory() as session:
            account = await CustodialAccountRepository(session).get_by_address(
                candidate.recipient_address
            )
            if account is None:
                raise CustodialAccountNotFoundError(
                    f"No custodial account for {mask_address(candidate.recipient_address)}"
                )

            record, created = await DepositRecordRepository(session).create_if_absent(
                idempotency_key=candidate.idempotency_key,
                user_id=account.user_id,
                custodial_account_id=account.id,
                amount_requested=candidate.amount,
                source=DepositSource.CHAIN,
                chain_tx_hash=candidate.tx_hash,
                value_wei=candidate.value_wei,
            )
            await session.commit()

        if record.custodial_account_id != account.id:
            logger.warning(
                f"[Deposit] Key {candidate.idempotency_key} reused by "
                f"{mask_tx_hash(candidate.tx_hash)} for another account, ignoring"
            )
            return None

        if created:
            logger.info(
                f"[Deposit] New deposit {candidate.idempotency_key}: "
                f"{candidate.amount} tickets, {candidate.value_wei} wei "
                f"to {mask_address(candidate.recipient_address)} "
                f"(block {candidate.block_number})"
            )
        return record

    async def register_notification(
        self,
        user_id: int,
        idempotency_key: str,
        amount: int,
    ) -> DepositRecord | None:
        """
        Persist the deposit record for a client-reported payment.

        Args:
            user_id: Reporting user
            idempotency_key: Key the client put in the memo
            amount: Tickets the client claims to have bought

        Returns:
            Deposit record, or None if the key belongs to another user

        Raises:
            ValueError: If key or amount are malformed
            CustodialAccountNotFoundError: If the user never got a deposit address
        """
        if not is_valid_idempotency_key(idempotency_key):
            raise ValueError(f"Invalid idempotency key: {idempotency_key!r}")
        if amount <= 0:
            raise ValueError(f"Amount must be positive, got {amount}")

        async with self.session_factory() as session:
            account = await CustodialAccountRepository(session).get_by_user_id(user_id)
            if account is None:
                raise CustodialAccountNotFoundError(
                    f"User {user_id} has no deposit address"
                )

            record, _ = await DepositRecordRepository(session).create_if_absent(
                idempotency_key=idempotency_key,
                user_id=user_id,
                custodial_account_id=account.id,
                amount_requested=amount,
                source=DepositSource.NOTIFICATION,
            )
            await session.commit()

        if record.user_id != user_id:
            logger.warning(
                f"[Deposit] User {user_id} reported key {idempotency_key} "
                f"owned by user {record.user_id}, ignoring"
            )
            return None
        return record

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def _load(
        self, idempotency_key: str
    ) -> tuple[DepositRecord | None, CustodialAccount | None]:
        """Load record and its custodial account."""
        async with self.session_factory() as session:
            record = await DepositRecordRepository(session).get_by_key(idempotency_key)
            if record is None:
                return None, None
            account = await CustodialAccountRepository(session).get_by_id(
                record.custodial_account_id
            )
        return record, account

    async def settle(
        self, idempotency_key: str, tx_hash: str | None = None
    ) -> ProcessingResult:
        """
        Verify and credit a registered deposit, then request its sweep.

        Args:
            idempotency_key: Deposit key
            tx_hash: Transaction hash, if known

        Returns:
            ProcessingResult
        """
        record, account = await self._load(idempotency_key)
        if record is None or account is None:
            return ProcessingResult(
                idempotency_key, status=None, reason="unknown deposit"
            )

        verification = await self.verifier.verify(
            idempotency_key, account.address, tx_hash or record.chain_tx_hash
        )

        if verification.status == VerificationStatus.ALREADY_FINAL:
            await self._sweep_if_needed(record)
            return ProcessingResult(
                idempotency_key,
                status=record.deposit_status,
                already_processed=True,
            )

        if verification.status == VerificationStatus.PENDING:
            return ProcessingResult(
                idempotency_key,
                status=DepositStatus.PENDING,
                reason="not final yet",
            )

        amount = verification.amount or record.amount_requested
        if amount != record.amount_requested:
            # The memo on chain is authoritative, not the client's report
            logger.warning(
                f"[Deposit] {idempotency_key}: reported {record.amount_requested} "
                f"tickets, memo on chain says {amount}"
            )

        async with self.session_factory() as session:
            await DepositRecordRepository(session).advance_status(
                idempotency_key,
                DepositStatus.VERIFIED,
                chain_tx_hash=verification.tx_hash,
                value_wei=verification.value_wei,
            )
            await session.commit()

        credit = await self.credit_ledger.credit(record.user_id, idempotency_key, amount)

        await self._dispatch_sweep(idempotency_key)

        return ProcessingResult(
            idempotency_key,
            status=DepositStatus.CREDITED,
            credited=not credit.already_processed,
            already_processed=credit.already_processed,
            balance=credit.balance,
        )

    async def _sweep_if_needed(self, record: DepositRecord) -> None:
        """Re-request the sweep of a credited deposit that was never swept."""
        if record.deposit_status in (DepositStatus.CREDITED, DepositStatus.SWEEP_FAILED):
            await self._dispatch_sweep(record.idempotency_key)

    async def _dispatch_sweep(self, idempotency_key: str) -> None:
        """Queue the sweep, or run it inline when there is no queue."""
        if self.request_sweep is not None:
            self.request_sweep(idempotency_key)
        else:
            await self.sweep_for_key(idempotency_key)

    async def sweep_for_key(self, idempotency_key: str) -> SweepResult | None:
        """
        Sweep the custodial account of a credited deposit.

        Args:
            idempotency_key: Deposit key

        Returns:
            SweepResult, or None if the deposit is unknown or not credited
        """
        record, account = await self._load(idempotency_key)
        if record is None or account is None:
            logger.warning(f"[Deposit] Sweep requested for unknown key {idempotency_key}")
            return None
        if not record.deposit_status.is_credited():
            logger.warning(
                f"[Deposit] Sweep requested for uncredited key {idempotency_key} "
                f"({record.status})"
            )
            return None

        result = await self.sweep_engine.sweep(account, idempotency_key)
        logger.info(f"[Deposit] Sweep {idempotency_key}: {result.outcome}")
        return result

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def process_candidate(self, candidate: DepositCandidate) -> ProcessingResult:
        """Register and settle a classified chain transaction."""
        record = await self.register_candidate(candidate)
        if record is None:
            return ProcessingResult(
                candidate.idempotency_key, status=None, reason="key owned elsewhere"
            )
        return await self.settle(candidate.idempotency_key, candidate.tx_hash)

    async def process_notification(
        self,
        user_id: int,
        idempotency_key: str,
        amount: int,
    ) -> ProcessingResult:
        """Register and settle a client-reported payment."""
        record = await self.register_notification(user_id, idempotency_key, amount)
        if record is None:
            return ProcessingResult(
                idempotency_key, status=None, reason="key owned elsewhere"
            )
        return await self.settle(idempotency_key)

    async def reprocess(self, record: DepositRecord) -> ProcessingResult:
        """
        Resume a stored deposit from wherever it stopped.

        Args:
            record: Deposit record (any status)

        Returns:
            ProcessingResult
        """
        if record.deposit_status.is_credited():
            await self._sweep_if_needed(record)
            return ProcessingResult(
                record.idempotency_key,
                status=record.deposit_status,
                already_processed=True,
            )
        return await self.settle(record.idempotency_key, record.chain_tx_hash)
