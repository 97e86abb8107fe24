"""
Service wiring.

Builds the deposit service graph from settings. The worker process and the
reconciliation jobs build their own graphs (jobs run without a coordinator
and sweep inline).
"""

from dataclasses import dataclass
from typing import Any

from custody.config.settings import Settings
from custody.services.chain_scanner import ChainScanner
from custody.services.credit_ledger import CreditLedger
from custody.services.custodial_wallet_service import CustodialWalletService
from custody.services.deposit_address_index import DepositAddressIndex
from custody.services.deposit_classifier import DepositClassifier
from custody.services.deposit_coordinator import DepositCoordinator
from custody.services.deposit_gateway import DepositGateway
from custody.services.deposit_processor import DepositProcessor
from custody.services.ledger.client import LedgerClient
from custody.services.reconciliation_service import DepositReconciliationService
from custody.services.sweep_engine import SweepEngine
from custody.services.transaction_verifier import TransactionVerifier
from custody.utils.encryption import EncryptionService


@dataclass
class DepositServices:
    """Wired deposit services."""

    ledger: LedgerClient
    wallet: CustodialWalletService
    address_index: DepositAddressIndex
    classifier: DepositClassifier
    verifier: TransactionVerifier
    credit_ledger: CreditLedger
    sweep_engine: SweepEngine
    processor: DepositProcessor
    coordinator: DepositCoordinator | None = None
    scanner: ChainScanner | None = None
    gateway: DepositGateway | None = None
    reconciliation: DepositReconciliationService | None = None

    async def close(self) -> None:
        """Stop background work and release ledger connections."""
        if self.coordinator is not None:
            await self.coordinator.stop()
        await self.sweep_engine.stop()
        await self.ledger.close()


def build_deposit_services(
    settings: Settings,
    session_factory: Any,
    ledger: LedgerClient,
    encryption: EncryptionService,
    with_coordinator: bool = True,
) -> DepositServices:
    """
    Build the deposit service graph.

    Args:
        settings: Application settings
        session_factory: Async session factory
        ledger: Ledger client
        encryption: Encryption service for custodial keys
        with_coordinator: Build scanner + coordinator + gateway (worker
            process); otherwise build the reconciliation graph, which
            verifies in a single attempt and sweeps inline

    Returns:
        DepositServices
    """
    memo_tags = settings.get_memo_tags()

    wallet = CustodialWalletService(
        session_factory,
        encryption,
        chain_id=settings.chain_id,
        gas_limit=settings.sweep_gas_limit,
        gas_price_wei=settings.sweep_gas_price_wei,
    )
    address_index = DepositAddressIndex(session_factory)
    classifier = DepositClassifier(
        address_index, memo_tags, ticket_price_wei=settings.ticket_price_wei
    )
    verifier = TransactionVerifier(
        ledger,
        session_factory,
        memo_tags=memo_tags,
        initial_delay=settings.verifier_initial_delay if with_coordinator else 0,
        retry_delay=settings.verifier_retry_delay,
        max_attempts=settings.verifier_max_attempts if with_coordinator else 1,
        staleness_seconds=settings.verifier_staleness_seconds,
        min_confirmations=settings.verifier_min_confirmations,
        history_limit=settings.account_history_limit,
        ticket_price_wei=settings.ticket_price_wei,
    )
    credit_ledger = CreditLedger(session_factory)
    sweep_engine = SweepEngine(
        ledger,
        wallet,
        session_factory,
        operating_address=settings.operating_wallet_address,
        fee_reserve_wei=settings.sweep_fee_reserve_wei,
        min_transfer_wei=settings.sweep_min_transfer_wei,
        dust_threshold_wei=settings.sweep_dust_threshold_wei,
        confirm_attempts=settings.sweep_confirm_attempts,
        confirm_delay=settings.sweep_confirm_delay,
        poll_confirmations=with_coordinator,
    )
    processor = DepositProcessor(session_factory, verifier, credit_ledger, sweep_engine)

    services = DepositServices(
        ledger=ledger,
        wallet=wallet,
        address_index=address_index,
        classifier=classifier,
        verifier=verifier,
        credit_ledger=credit_ledger,
        sweep_engine=sweep_engine,
        processor=processor,
    )

    if not with_coordinator:
        services.reconciliation = DepositReconciliationService(
            session_factory,
            processor,
            sweep_engine,
            batch_size=settings.reconcile_batch_size,
            min_age_seconds=settings.reconcile_min_age_seconds,
            max_age_seconds=settings.reconcile_max_age_seconds,
            sweep_retry_seconds=settings.reconcile_sweep_retry_seconds,
        )
        return services

    coordinator = DepositCoordinator(
        classifier,
        processor,
        queue_size=settings.coordinator_queue_size,
        max_concurrent_deposits=settings.coordinator_max_concurrent_deposits,
    )
    scanner = ChainScanner(
        ledger,
        session_factory,
        coordinator.dispatch_transaction,
        start_block=settings.scanner_start_block,
        drain_batch=settings.unprocessed_drain_batch,
        max_attempts=settings.unprocessed_max_attempts,
    )
    coordinator.attach_scanner(scanner)

    services.coordinator = coordinator
    services.scanner = scanner
    services.gateway = DepositGateway(
        processor,
        coordinator,
        wallet,
        address_index,
        credit_ledger,
        sweep_engine,
    )
    return services
