"""
Database models.

Exports all SQLAlchemy models for easy imports.
"""

from custody.models.balance_history import BalanceHistoryEntry
from custody.models.base import Base
from custody.models.chain_cursor import ChainCursor
from custody.models.custodial_account import CustodialAccount
from custody.models.deposit_record import DepositRecord
from custody.models.enums import (
    DepositSource,
    DepositStatus,
    HistoryEntryType,
    SweepStatus,
)
from custody.models.sweep_record import SweepRecord, SweepStatusEvent
from custody.models.unprocessed_transaction import UnprocessedTransaction
from custody.models.user import User

__all__ = [
    "Base",
    "BalanceHistoryEntry",
    "ChainCursor",
    "CustodialAccount",
    "DepositRecord",
    "DepositSource",
    "DepositStatus",
    "HistoryEntryType",
    "SweepRecord",
    "SweepStatus",
    "SweepStatusEvent",
    "UnprocessedTransaction",
    "User",
]
