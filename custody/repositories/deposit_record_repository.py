"""
Deposit record repository.

Data access layer for DepositRecord model.
"""

from datetime import datetime
from decimal import Decimal

from loguru import logger
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from custody.models.deposit_record import DepositRecord
from custody.models.enums import DepositSource, DepositStatus, SweepStatus
from custody.models.sweep_record import SweepRecord
from custody.repositories.base import BaseRepository
from custody.utils.datetime_utils import utc_now


class DepositRecordRepository(BaseRepository[DepositRecord]):
    """Deposit record repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(DepositRecord, session)

    async def get_by_key(self, idempotency_key: str) -> DepositRecord | None:
        """Get deposit record by idempotency key."""
        return await self.get_by(idempotency_key=idempotency_key)

    async def create_if_absent(
        self,
        idempotency_key: str,
        user_id: int,
        custodial_account_id: int,
        amount_requested: int,
        source: DepositSource,
        chain_tx_hash: str | None = None,
        value_wei: int | None = None,
    ) -> tuple[DepositRecord, bool]:
        """
        Create a PENDING record unless the key is already known.

        An existing record is never re-created or reset; only a missing
        transaction hash and value are filled in.

        Args:
            idempotency_key: Key from the memo
            user_id: Owner of the deposit address
            custodial_account_id: Receiving custodial account
            amount_requested: Tickets requested
            source: Where the intent was first observed
            chain_tx_hash: Transaction hash, if known
            value_wei: Transferred value, if known

        Returns:
            Tuple of (record, created)
        """
        now = utc_now()
        created = await self.insert_if_absent(
            idempotency_key=idempotency_key,
            user_id=user_id,
            custodial_account_id=custodial_account_id,
            amount_requested=amount_requested,
            status=DepositStatus.PENDING,
            source=source,
            chain_tx_hash=chain_tx_hash,
            value_wei=Decimal(value_wei) if value_wei is not None else None,
            created_at=now,
            updated_at=now,
        )

        record = await self.get_by_key(idempotency_key)
        if record is None:  # pragma: no cover - row was just written
            raise RuntimeError(f"Deposit record {idempotency_key} vanished")

        if not created and chain_tx_hash and not record.chain_tx_hash:
            record.chain_tx_hash = chain_tx_hash
            if value_wei is not None:
                record.value_wei = Decimal(value_wei)
            await self.session.flush()

        return record, created

    async def advance_status(
        self,
        idempotency_key: str,
        status: DepositStatus,
        chain_tx_hash: str | None = None,
        value_wei: int | None = None,
    ) -> bool:
        """
        Move a record forward to status.

        Transitions that would move the record backwards (or keep it in
        place) are ignored.

        Args:
            idempotency_key: Record key
            status: Target status
            chain_tx_hash: Transaction hash to store, if not yet known
            value_wei: Transferred value to store, if not yet known

        Returns:
            True if the status changed
        """
        stmt = (
            select(DepositRecord)
            .where(DepositRecord.idempotency_key == idempotency_key)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        record = result.scalar_one_or_none()
        if record is None:
            return False

        if chain_tx_hash and not record.chain_tx_hash:
            record.chain_tx_hash = chain_tx_hash
        if value_wei is not None and record.value_wei is None:
            record.value_wei = Decimal(value_wei)

        current = record.deposit_status
        if status.rank <= current.rank:
            if status != current:
                logger.debug(
                    f"[Deposit] Ignoring backward transition {current} -> {status} "
                    f"for {idempotency_key}"
                )
            await self.session.flush()
            return False

        record.status = status
        record.updated_at = utc_now()
        await self.session.flush()
        return True

    async def find_by_statuses(
        self,
        statuses: list[DepositStatus],
        older_than: datetime,
        newer_than: datetime | None = None,
        limit: int = 50,
    ) -> list[DepositRecord]:
        """
        Find records in the given statuses within an age window.

        Args:
            statuses: Statuses to match
            older_than: Only records created before this moment
            newer_than: Only records created after this moment
            limit: Max results

        Returns:
            Records ordered oldest first
        """
        stmt = (
            select(DepositRecord)
            .where(
                DepositRecord.status.in_([s.value for s in statuses]),
                DepositRecord.created_at < older_than,
            )
            .order_by(DepositRecord.updated_at.asc())
            .limit(limit)
        )
        if newer_than is not None:
            stmt = stmt.where(DepositRecord.created_at > newer_than)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_unswept(
        self,
        older_than: datetime,
        retry_before: datetime,
        give_up_before: datetime,
        limit: int = 50,
    ) -> list[DepositRecord]:
        """
        Find credited deposits whose funds still sit in the custodial account.

        Deposits that were never swept are always returned. Deposits whose
        last sweep attempt ended without a submission (insufficient balance,
        error, failed) are returned again only once that attempt is older
        than `retry_before`, and only while the deposit is newer than
        `give_up_before`.

        Args:
            older_than: Only deposits created before this moment
            retry_before: Last sweep attempt must be older than this
            give_up_before: Attempted deposits created earlier are left alone
            limit: Max results

        Returns:
            Records, least recently attempted first
        """
        last_touched = func.coalesce(SweepRecord.updated_at, DepositRecord.updated_at)
        stmt = (
            select(DepositRecord)
            .outerjoin(
                SweepRecord,
                SweepRecord.idempotency_key == DepositRecord.idempotency_key,
            )
            .where(
                DepositRecord.status.in_(
                    [DepositStatus.CREDITED.value, DepositStatus.SWEEP_FAILED.value]
                ),
                DepositRecord.created_at < older_than,
                or_(
                    SweepRecord.id.is_(None),
                    and_(
                        SweepRecord.status != SweepStatus.INITIATED.value,
                        SweepRecord.updated_at < retry_before,
                        DepositRecord.created_at > give_up_before,
                    ),
                ),
            )
            .order_by(last_touched.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
