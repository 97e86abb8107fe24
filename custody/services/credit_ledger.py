"""
Idempotent credit ledger.

The only writer of ticket balances. A credit is one database transaction:
increment, append the history entry under its unique idempotency key,
advance the deposit record. The unique constraint is the at-most-once
guarantee; no in-process lock is involved, so concurrent workers are safe.
"""

from dataclasses import dataclass
from typing import Any

from loguru import logger
from sqlalchemy.exc import IntegrityError

from custody.models.balance_history import BalanceHistoryEntry
from custody.models.enums import DepositStatus
from custody.repositories.balance_repository import BalanceRepository
from custody.repositories.deposit_record_repository import DepositRecordRepository
from custody.repositories.user_repository import UserRepository
from custody.utils.exceptions import UserNotFoundError


@dataclass(frozen=True)
class CreditResult:
    """Outcome of a credit call."""

    balance: int
    already_processed: bool


class CreditLedger:
    """Idempotent ticket crediting."""

    def __init__(self, session_factory: Any) -> None:
        """
        Initialize credit ledger.

        Args:
            session_factory: Async session factory
        """
        self.session_factory = session_factory

    async def credit(
        self,
        user_id: int,
        idempotency_key: str,
        amount: int,
    ) -> CreditResult:
        """
        Credit tickets exactly once per idempotency key.

        Args:
            user_id: User ID
            idempotency_key: Unique key of the purchase
            amount: Tickets to add (positive)

        Returns:
            CreditResult with the balance after the call

        Raises:
            UserNotFoundError: If user does not exist
            ValueError: If amount is not positive
        """
        if amount <= 0:
            raise ValueError(f"Credit amount must be positive, got {amount}")

        async with self.session_factory() as session:
            try:
                async with session.begin():
                    balance = await BalanceRepository(
                        session
                    ).atomic_credit_if_not_processed(user_id, idempotency_key, amount)
                    await DepositRecordRepository(session).advance_status(
                        idempotency_key, DepositStatus.CREDITED
                    )
            except IntegrityError:
                # Transaction already rolled back by session.begin()
                logger.info(
                    f"[Credit] Key {idempotency_key} already processed for user {user_id}"
                )
                async with session.begin():
                    # A lost race may leave the record behind; the credit itself is done
                    await DepositRecordRepository(session).advance_status(
                        idempotency_key, DepositStatus.CREDITED
                    )
                    current = await UserRepository(session).get_ticket_balance(user_id)
                if current is None:
                    raise UserNotFoundError(f"User {user_id} not found")
                return CreditResult(balance=current, already_processed=True)

        logger.success(
            f"[Credit] +{amount} tickets for user {user_id} "
            f"(key={idempotency_key}, balance={balance})"
        )
        return CreditResult(balance=balance, already_processed=False)

    async def get_balance(self, user_id: int) -> int:
        """
        Get ticket balance.

        Raises:
            UserNotFoundError: If user does not exist
        """
        async with self.session_factory() as session:
            balance = await UserRepository(session).get_ticket_balance(user_id)
        if balance is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return balance

    async def get_history(
        self, user_id: int, limit: int = 50
    ) -> list[BalanceHistoryEntry]:
        """Get recent credits, newest first."""
        async with self.session_factory() as session:
            return await BalanceRepository(session).get_history(user_id, limit)

    async def is_processed(self, idempotency_key: str) -> bool:
        """Check if a key has already been credited."""
        async with self.session_factory() as session:
            return await BalanceRepository(session).get_by_key(idempotency_key) is not None
