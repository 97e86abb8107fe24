"""
Ledger access.

The LedgerClient protocol is everything the deposit pipeline needs from the
chain; Web3LedgerClient implements it over JSON-RPC and an explorer API.
"""

from .client import (
    ChainTransaction,
    LedgerClient,
    SignedTransfer,
    TransactionOutcome,
    decode_memo,
)
from .singleton import get_ledger_client, init_ledger_client
from .web3_client import Web3LedgerClient


__all__ = [
    "ChainTransaction",
    "LedgerClient",
    "SignedTransfer",
    "TransactionOutcome",
    "Web3LedgerClient",
    "decode_memo",
    "get_ledger_client",
    "init_ledger_client",
]
