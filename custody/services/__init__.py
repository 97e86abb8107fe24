"""
Services.

Business logic layer.
"""

from custody.services.chain_scanner import ChainScanner, TickResult
from custody.services.container import DepositServices, build_deposit_services
from custody.services.credit_ledger import CreditLedger, CreditResult
from custody.services.custodial_wallet_service import CustodialWalletService
from custody.services.deposit_address_index import DepositAddressIndex
from custody.services.deposit_classifier import DepositCandidate, DepositClassifier
from custody.services.deposit_coordinator import DepositCoordinator
from custody.services.deposit_gateway import DepositGateway, NotificationResult
from custody.services.deposit_processor import DepositProcessor, ProcessingResult
from custody.services.memo_parser import (
    RecognizedMemo,
    UnrecognizedMemo,
    parse_memo,
)
from custody.services.reconciliation_service import (
    DepositReconciliationService,
    ReconciliationStats,
)
from custody.services.sweep_engine import (
    SweepEngine,
    SweepOutcome,
    SweepResult,
    compute_sweep_amount,
)
from custody.services.transaction_verifier import (
    TransactionVerifier,
    VerificationResult,
    VerificationStatus,
)


__all__ = [
    "ChainScanner",
    "CreditLedger",
    "CreditResult",
    "CustodialWalletService",
    "DepositAddressIndex",
    "DepositCandidate",
    "DepositClassifier",
    "DepositCoordinator",
    "DepositGateway",
    "DepositProcessor",
    "DepositReconciliationService",
    "DepositServices",
    "NotificationResult",
    "ProcessingResult",
    "RecognizedMemo",
    "ReconciliationStats",
    "SweepEngine",
    "SweepOutcome",
    "SweepResult",
    "TickResult",
    "TransactionVerifier",
    "UnrecognizedMemo",
    "VerificationResult",
    "VerificationStatus",
    "build_deposit_services",
    "compute_sweep_amount",
    "parse_memo",
]
