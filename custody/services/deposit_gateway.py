"""
Deposit gateway.

Operations the rest of the application (bot handlers, API) calls. Nothing
here blocks on the chain: notifications are registered and settled in the
background.
"""

from dataclasses import dataclass

from loguru import logger

from custody.models.enums import DepositStatus, SweepStatus
from custody.repositories.deposit_record_repository import DepositRecordRepository
from custody.services.credit_ledger import CreditLedger
from custody.services.custodial_wallet_service import CustodialWalletService
from custody.services.deposit_address_index import DepositAddressIndex
from custody.services.deposit_coordinator import DepositCoordinator
from custody.services.deposit_processor import DepositProcessor
from custody.services.sweep_engine import SweepEngine


@dataclass(frozen=True)
class NotificationResult:
    """Reply to a client payment notification."""

    idempotency_key: str
    status: DepositStatus | None
    balance: int
    accepted: bool


class DepositGateway:
    """Application-facing deposit operations."""

    def __init__(
        self,
        processor: DepositProcessor,
        coordinator: DepositCoordinator,
        wallet: CustodialWalletService,
        address_index: DepositAddressIndex,
        credit_ledger: CreditLedger,
        sweep_engine: SweepEngine,
    ) -> None:
        """
        Initialize gateway.

        Args:
            processor: Deposit processor
            coordinator: Coordinator running background settlement
            wallet: Custodial wallet service
            address_index: Deposit address index
            credit_ledger: Credit ledger
            sweep_engine: Sweep engine
        """
        self.processor = processor
        self.coordinator = coordinator
        self.wallet = wallet
        self.address_index = address_index
        self.credit_ledger = credit_ledger
        self.sweep_engine = sweep_engine

    async def on_external_payment_notification(
        self,
        user_id: int,
        idempotency_key: str,
        amount: int,
    ) -> NotificationResult:
        """
        Handle "I have paid" from a client.

        The claim is never trusted: it only registers the deposit and
        starts verification against the chain.

        Args:
            user_id: Reporting user
            idempotency_key: Key the client put in the memo
            amount: Tickets the client claims to have bought

        Returns:
            NotificationResult with the current status and balance

        Raises:
            ValueError: If key or amount are malformed
            CustodialAccountNotFoundError: If the user has no deposit address
            UserNotFoundError: If the user does not exist
        """
        record = await self.processor.register_notification(
            user_id, idempotency_key, amount
        )
        balance = await self.credit_ledger.get_balance(user_id)

        if record is None:
            return NotificationResult(idempotency_key, None, balance, accepted=False)

        if not record.deposit_status.is_credited():
            self.coordinator.schedule_settlement(idempotency_key, record.chain_tx_hash)
            logger.info(
                f"[Gateway] Payment notification {idempotency_key} from user {user_id}, "
                f"verifying"
            )

        return NotificationResult(
            idempotency_key, record.deposit_status, balance, accepted=True
        )

    async def get_balance(self, user_id: int) -> int:
        """
        Get ticket balance.

        Raises:
            UserNotFoundError: If the user does not exist
        """
        return await self.credit_ledger.get_balance(user_id)

    async def get_deposit_address(self, user_id: int) -> str:
        """
        Get the user's deposit address, creating the account on first call.

        Raises:
            UserNotFoundError: If the user does not exist
        """
        account, _ = await self.wallet.ensure_account(user_id)
        self.address_index.remember(account.address, user_id)
        return account.address

    async def get_sweep_status(self, idempotency_key: str) -> SweepStatus | None:
        """Durable sweep status, None if never swept."""
        return await self.sweep_engine.get_status(idempotency_key)

    async def get_deposit_status(self, idempotency_key: str) -> DepositStatus | None:
        """Deposit record status, None if unknown."""
        async with self.processor.session_factory() as session:
            record = await DepositRecordRepository(session).get_by_key(idempotency_key)
        return record.deposit_status if record else None
