"""
Sweep repository.

Durable sweep status per idempotency key. Every transition is written
together with its audit event, the account's last sweep fields and the
deposit record status it implies.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from custody.models.enums import SWEEP_TO_DEPOSIT_STATUS, SweepStatus
from custody.models.sweep_record import SweepRecord, SweepStatusEvent
from custody.repositories.base import BaseRepository
from custody.repositories.custodial_account_repository import (
    CustodialAccountRepository,
)
from custody.repositories.deposit_record_repository import DepositRecordRepository
from custody.utils.datetime_utils import utc_now


class SweepRepository(BaseRepository[SweepRecord]):
    """Sweep record repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(SweepRecord, session)
        self.account_repo = CustodialAccountRepository(session)
        self.deposit_repo = DepositRecordRepository(session)

    async def get_by_key(self, idempotency_key: str) -> SweepRecord | None:
        """Get sweep record by idempotency key."""
        return await self.get_by(idempotency_key=idempotency_key)

    async def get_status(self, idempotency_key: str) -> SweepStatus | None:
        """
        Get durable sweep status.

        Args:
            idempotency_key: Deposit key

        Returns:
            Status or None if no sweep was ever recorded
        """
        record = await self.get_by_key(idempotency_key)
        return record.sweep_status if record else None

    async def set_status(
        self,
        idempotency_key: str,
        custodial_account_id: int,
        status: SweepStatus,
        amount_wei: int | None = None,
        tx_hash: str | None = None,
        reason: str | None = None,
    ) -> SweepRecord:
        """
        Record a sweep transition.

        Args:
            idempotency_key: Deposit key
            custodial_account_id: Swept account
            status: New status
            amount_wei: Swept amount, if known
            tx_hash: Sweep transaction hash, if submitted
            reason: Failure reason, if any

        Returns:
            Updated sweep record
        """
        amount = Decimal(amount_wei) if amount_wei is not None else None
        now = utc_now()

        record = await self.get_by_key(idempotency_key)
        if record is None:
            record = SweepRecord(
                idempotency_key=idempotency_key,
                custodial_account_id=custodial_account_id,
                status=status,
                attempts=0,
                created_at=now,
            )
            self.session.add(record)

        record.status = status
        record.reason = reason
        record.updated_at = now
        if amount is not None:
            record.amount_wei = amount
        if tx_hash is not None:
            record.tx_hash = tx_hash
        if status == SweepStatus.INITIATED:
            record.attempts = (record.attempts or 0) + 1

        self.session.add(
            SweepStatusEvent(
                idempotency_key=idempotency_key,
                custodial_account_id=custodial_account_id,
                status=status,
                reason=reason,
                amount_wei=amount,
                tx_hash=tx_hash,
                created_at=now,
            )
        )

        await self.account_repo.set_last_sweep(
            custodial_account_id, status, idempotency_key, reason
        )

        deposit_status = SWEEP_TO_DEPOSIT_STATUS.get(status)
        if deposit_status is not None:
            await self.deposit_repo.advance_status(idempotency_key, deposit_status)

        await self.session.flush()
        return record

    async def get_events(self, idempotency_key: str) -> list[SweepStatusEvent]:
        """Get the audit trail of a key, oldest first."""
        stmt = (
            select(SweepStatusEvent)
            .where(SweepStatusEvent.idempotency_key == idempotency_key)
            .order_by(SweepStatusEvent.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_statuses(
        self,
        statuses: list[SweepStatus],
        older_than: datetime,
        limit: int = 50,
    ) -> list[SweepRecord]:
        """
        Find sweep records in the given statuses not updated recently.

        Args:
            statuses: Statuses to match
            older_than: Only records last updated before this moment
            limit: Max results

        Returns:
            Records ordered by last update
        """
        stmt = (
            select(SweepRecord)
            .where(
                SweepRecord.status.in_([s.value for s in statuses]),
                SweepRecord.updated_at < older_than,
            )
            .order_by(SweepRecord.updated_at.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
