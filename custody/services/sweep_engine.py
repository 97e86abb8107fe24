"""
Custodial sweep engine.

Moves credited funds from a custodial account to the operating account.
Duplicate protection is layered:
- durable sweep status per idempotency key (survives restarts)
- in-process guard set owned by the engine instance
- the balance check, a second sweep sees the reduced balance
- the confirmed nonce, racing submissions collide and one is dropped

A sweep never touches the ticket balance; a failed sweep is retried by
reconciliation, the credit stands.
"""

import asyncio
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from loguru import logger

from custody.config.constants import (
    SWEEP_CONFIRM_ATTEMPTS,
    SWEEP_CONFIRM_DELAY_SECONDS,
    SWEEP_DUST_THRESHOLD_WEI,
    SWEEP_FEE_RESERVE_WEI,
    SWEEP_MEMO_TAG,
    SWEEP_MIN_TRANSFER_WEI,
)
from custody.models.custodial_account import CustodialAccount
from custody.models.enums import SweepStatus
from custody.repositories.sweep_repository import SweepRepository
from custody.services.custodial_wallet_service import CustodialWalletService
from custody.services.ledger.client import LedgerClient
from custody.services.memo_parser import build_sweep_memo
from custody.utils.exceptions import LedgerUnavailableError, SigningError
from custody.utils.security import mask_address, mask_tx_hash


class SweepOutcome(StrEnum):
    """Result of a sweep call."""

    SUCCESS = "success"
    PENDING = "pending"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    ALREADY_ATTEMPTED = "already_attempted"
    ERROR = "error"


@dataclass(frozen=True)
class SweepResult:
    """Sweep call result."""

    outcome: SweepOutcome
    amount_wei: int | None = None
    tx_hash: str | None = None
    reason: str | None = None


def compute_sweep_amount(balance: int, fee_reserve: int, dust_threshold: int) -> int:
    """
    Amount to sweep from a balance.

    The fee reserve is kept back, unless what would be swept is below the
    dust threshold: then the whole balance goes and the fee is paid out of
    it, so no unsweepable remainder is left behind.

    Args:
        balance: Account balance (wei)
        fee_reserve: Fee buffer (wei)
        dust_threshold: Dust threshold (wei)

    Returns:
        Sweep amount (wei)
    """
    remainder = balance - fee_reserve
    if remainder < dust_threshold:
        return balance
    return remainder


class SweepEngine:
    """Sweeps custodial accounts into the operating account."""

    def __init__(
        self,
        ledger: LedgerClient,
        wallet: CustodialWalletService,
        session_factory: Any,
        operating_address: str,
        fee_reserve_wei: int = SWEEP_FEE_RESERVE_WEI,
        min_transfer_wei: int = SWEEP_MIN_TRANSFER_WEI,
        dust_threshold_wei: int = SWEEP_DUST_THRESHOLD_WEI,
        confirm_attempts: int = SWEEP_CONFIRM_ATTEMPTS,
        confirm_delay: float = SWEEP_CONFIRM_DELAY_SECONDS,
        memo_tag: str = SWEEP_MEMO_TAG,
        poll_confirmations: bool = True,
    ) -> None:
        """
        Initialize sweep engine.

        Args:
            ledger: Ledger client
            wallet: Custodial wallet service (signing)
            session_factory: Async session factory
            operating_address: Destination of all sweeps
            fee_reserve_wei: Fee buffer kept back on a regular sweep
            min_transfer_wei: Minimum worth sweeping on top of the reserve
            dust_threshold_wei: Below this the whole balance is swept
            confirm_attempts: Confirmation polls before FAILED
            confirm_delay: Delay between confirmation polls
            memo_tag: Tag of the sweep memo
            poll_confirmations: Spawn a detached confirmation poller after
                submission; without it INITIATED sweeps are confirmed by
                reconciliation
        """
        self.ledger = ledger
        self.wallet = wallet
        self.session_factory = session_factory
        self.operating_address = operating_address.lower()
        self.fee_reserve_wei = fee_reserve_wei
        self.min_transfer_wei = min_transfer_wei
        self.dust_threshold_wei = dust_threshold_wei
        self.confirm_attempts = confirm_attempts
        self.confirm_delay = confirm_delay
        self.memo_tag = memo_tag
        self.poll_confirmations = poll_confirmations

        # Keys with a sweep in flight in this process
        self._guard: set[str] = set()
        self._pollers: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        """Keys currently guarded."""
        return len(self._guard)

    @property
    def active_pollers(self) -> int:
        """Confirmation pollers still running."""
        return len(self._pollers)

    async def get_status(self, idempotency_key: str) -> SweepStatus | None:
        """Durable sweep status of a key."""
        async with self.session_factory() as session:
            return await SweepRepository(session).get_status(idempotency_key)

    async def _record(
        self,
        idempotency_key: str,
        account_id: int,
        status: SweepStatus,
        amount_wei: int | None = None,
        tx_hash: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Persist a transition in its own transaction."""
        async with self.session_factory() as session:
            await SweepRepository(session).set_status(
                idempotency_key,
                account_id,
                status,
                amount_wei=amount_wei,
                tx_hash=tx_hash,
                reason=reason,
            )
            await session.commit()

    async def sweep(
        self, account: CustodialAccount, idempotency_key: str
    ) -> SweepResult:
        """
        Sweep a custodial account for a credited deposit.

        Args:
            account: Custodial account to sweep
            idempotency_key: Key of the deposit that triggered the sweep

        Returns:
            SweepResult

        Raises:
            SigningError: If the account key cannot be used (after persisting ERROR)
        """
        status = await self.get_status(idempotency_key)
        if status == SweepStatus.CONFIRMED:
            return SweepResult(outcome=SweepOutcome.SUCCESS)
        if status == SweepStatus.INITIATED:
            return SweepResult(outcome=SweepOutcome.PENDING)

        if idempotency_key in self._guard:
            logger.debug(f"[Sweep] {idempotency_key} already in flight")
            return SweepResult(outcome=SweepOutcome.ALREADY_ATTEMPTED)

        self._guard.add(idempotency_key)
        try:
            return await self._sweep(account, idempotency_key)
        finally:
            self._guard.discard(idempotency_key)

    async def _sweep(
        self, account: CustodialAccount, idempotency_key: str
    ) -> SweepResult:
        """Balance check, signing and submission. Runs with the key guarded."""
        address = account.address

        try:
            balance = await self.ledger.get_balance(address)
        except LedgerUnavailableError as e:
            reason = f"balance query failed: {e}"
            await self._record(idempotency_key, account.id, SweepStatus.ERROR, reason=reason)
            return SweepResult(outcome=SweepOutcome.ERROR, reason=reason)

        if balance < self.min_transfer_wei + self.fee_reserve_wei:
            reason = (
                f"balance {balance} below {self.min_transfer_wei} + "
                f"{self.fee_reserve_wei} reserve"
            )
            logger.info(f"[Sweep] {mask_address(address)} not swept: {reason}")
            await self._record(
                idempotency_key,
                account.id,
                SweepStatus.INSUFFICIENT_BALANCE,
                amount_wei=balance,
                reason=reason,
            )
            return SweepResult(
                outcome=SweepOutcome.INSUFFICIENT_BALANCE,
                amount_wei=balance,
                reason=reason,
            )

        amount = compute_sweep_amount(balance, self.fee_reserve_wei, self.dust_threshold_wei)

        # Sweeping everything: the fee comes out of the transferred value
        value = amount - self.wallet.max_fee_wei if amount == balance else amount
        if value <= 0:
            reason = f"balance {balance} cannot cover fee {self.wallet.max_fee_wei}"
            await self._record(
                idempotency_key,
                account.id,
                SweepStatus.INSUFFICIENT_BALANCE,
                amount_wei=balance,
                reason=reason,
            )
            return SweepResult(
                outcome=SweepOutcome.INSUFFICIENT_BALANCE,
                amount_wei=balance,
                reason=reason,
            )

        try:
            nonce = await self.ledger.get_sequence_number(address)
        except LedgerUnavailableError as e:
            reason = f"nonce query failed: {e}"
            await self._record(idempotency_key, account.id, SweepStatus.ERROR, reason=reason)
            return SweepResult(outcome=SweepOutcome.ERROR, reason=reason)
        if nonce is None:
            nonce = 0

        try:
            signed = self.wallet.sign_transfer(
                account,
                self.operating_address,
                value,
                nonce,
                memo=build_sweep_memo(idempotency_key, self.memo_tag),
            )
        except SigningError as e:
            logger.error(f"[Sweep] Signing failed for {mask_address(address)}: {e}")
            await self._record(
                idempotency_key, account.id, SweepStatus.ERROR, reason=f"signing: {e}"
            )
            raise

        try:
            tx_hash = await self.ledger.submit_transfer(signed)
        except LedgerUnavailableError as e:
            reason = f"submit failed: {e}"
            logger.warning(f"[Sweep] {idempotency_key}: {reason}")
            await self._record(
                idempotency_key,
                account.id,
                SweepStatus.ERROR,
                amount_wei=value,
                tx_hash=signed.tx_hash,
                reason=reason,
            )
            return SweepResult(
                outcome=SweepOutcome.ERROR,
                amount_wei=value,
                tx_hash=signed.tx_hash,
                reason=reason,
            )

        await self._record(
            idempotency_key,
            account.id,
            SweepStatus.INITIATED,
            amount_wei=value,
            tx_hash=tx_hash,
        )
        logger.success(
            f"[Sweep] Submitted {value} wei {mask_address(address)} -> "
            f"{mask_address(self.operating_address)} tx={mask_tx_hash(tx_hash)} "
            f"(key={idempotency_key}, nonce={nonce})"
        )

        if self.poll_confirmations:
            self._spawn_poller(idempotency_key, account.id, tx_hash)

        return SweepResult(
            outcome=SweepOutcome.SUCCESS,
            amount_wei=value,
            tx_hash=tx_hash,
        )

    def _spawn_poller(self, idempotency_key: str, account_id: int, tx_hash: str) -> None:
        """Start a detached confirmation poller."""
        task = asyncio.create_task(
            self._run_poller(idempotency_key, account_id, tx_hash),
            name=f"sweep-confirm-{idempotency_key}",
        )
        self._pollers.add(task)
        task.add_done_callback(self._pollers.discard)

    async def check_confirmation(
        self,
        idempotency_key: str,
        account_id: int,
        tx_hash: str,
        final: bool = False,
    ) -> SweepStatus | None:
        """
        Check an INITIATED sweep once and persist a terminal status.

        Args:
            idempotency_key: Deposit key
            account_id: Custodial account ID
            tx_hash: Sweep transaction hash
            final: Persist FAILED if the transaction is still not mined

        Returns:
            CONFIRMED / FAILED if persisted, None if still undecided
        """
        outcome = await self.ledger.get_transaction_outcome(tx_hash)

        if outcome.found and outcome.success:
            await self._record(
                idempotency_key, account_id, SweepStatus.CONFIRMED, tx_hash=tx_hash
            )
            logger.success(
                f"[Sweep] Confirmed {idempotency_key} tx={mask_tx_hash(tx_hash)}"
            )
            return SweepStatus.CONFIRMED

        if outcome.found:
            reason = "sweep transaction reverted"
        elif final:
            reason = "sweep transaction not mined (dropped or replaced)"
        else:
            return None

        logger.error(f"[Sweep] {idempotency_key} failed: {reason}")
        await self._record(
            idempotency_key, account_id, SweepStatus.FAILED, tx_hash=tx_hash, reason=reason
        )
        return SweepStatus.FAILED

    async def _run_poller(
        self, idempotency_key: str, account_id: int, tx_hash: str
    ) -> None:
        """Detached poller wrapper, INITIATED sweeps left behind are reconciled later."""
        try:
            await self._poll_confirmation(idempotency_key, account_id, tx_hash)
        except Exception as e:
            logger.exception(f"[Sweep] Confirmation poller for {idempotency_key} crashed: {e}")

    async def _poll_confirmation(
        self, idempotency_key: str, account_id: int, tx_hash: str
    ) -> None:
        """Poll until the sweep is mined or the budget runs out."""
        last_error: str | None = None
        for attempt in range(1, self.confirm_attempts + 1):
            await asyncio.sleep(self.confirm_delay)
            try:
                status = await self.check_confirmation(
                    idempotency_key,
                    account_id,
                    tx_hash,
                    final=attempt == self.confirm_attempts,
                )
            except LedgerUnavailableError as e:
                last_error = str(e)
                logger.warning(
                    f"[Sweep] Confirmation poll {attempt}/{self.confirm_attempts} "
                    f"for {idempotency_key} failed: {e}"
                )
                continue
            if status is not None:
                return

        reason = f"confirmation polling exhausted: {last_error or 'no receipt'}"
        logger.error(f"[Sweep] {idempotency_key}: {reason}")
        await self._record(
            idempotency_key, account_id, SweepStatus.FAILED, tx_hash=tx_hash, reason=reason
        )

    async def wait_for_pollers(self) -> None:
        """Wait for all running confirmation pollers (tests, shutdown)."""
        if self._pollers:
            await asyncio.gather(*list(self._pollers), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel running pollers. INITIATED sweeps are picked up by reconciliation."""
        for task in list(self._pollers):
            task.cancel()
        await self.wait_for_pollers()
