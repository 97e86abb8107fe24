"""
Status enumerations shared by models and services.
"""

from enum import StrEnum


class DepositStatus(StrEnum):
    """Lifecycle of a deposit record. Moves forward only."""

    PENDING = "pending"
    VERIFIED = "verified"
    CREDITED = "credited"
    SWEEP_INITIATED = "sweep_initiated"
    SWEEP_FAILED = "sweep_failed"
    SWEEP_CONFIRMED = "sweep_confirmed"

    @property
    def rank(self) -> int:
        """Position in the forward-only ordering."""
        return _DEPOSIT_STATUS_ORDER.index(self)

    def is_credited(self) -> bool:
        """True once the ticket credit has been applied."""
        return self.rank >= DepositStatus.CREDITED.rank


_DEPOSIT_STATUS_ORDER = (
    DepositStatus.PENDING,
    DepositStatus.VERIFIED,
    DepositStatus.CREDITED,
    DepositStatus.SWEEP_INITIATED,
    DepositStatus.SWEEP_FAILED,
    DepositStatus.SWEEP_CONFIRMED,
)


class DepositSource(StrEnum):
    """Where the deposit intent was first observed."""

    CHAIN = "chain"  # Chain scanner
    NOTIFICATION = "notification"  # Client-reported payment


class SweepStatus(StrEnum):
    """Durable sweep state per idempotency key."""

    INSUFFICIENT_BALANCE = "insufficient_balance"
    INITIATED = "initiated"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    ERROR = "error"


# Deposit record status implied by a sweep transition
SWEEP_TO_DEPOSIT_STATUS = {
    SweepStatus.INITIATED: DepositStatus.SWEEP_INITIATED,
    SweepStatus.FAILED: DepositStatus.SWEEP_FAILED,
    SweepStatus.CONFIRMED: DepositStatus.SWEEP_CONFIRMED,
}


class HistoryEntryType(StrEnum):
    """Balance history entry types."""

    CREDIT = "credit"
