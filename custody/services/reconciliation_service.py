"""
Deposit reconciliation.

Catches what the live pipeline left behind:
- deposits still PENDING/VERIFIED after verification gave up
- credited deposits whose sweep never happened, failed or errored
- INITIATED sweeps whose confirmation poller died with the process
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from loguru import logger

from custody.config.constants import (
    RECONCILE_BATCH_SIZE,
    RECONCILE_MAX_AGE_SECONDS,
    RECONCILE_MIN_AGE_SECONDS,
    RECONCILE_SWEEP_RETRY_SECONDS,
)
from custody.models.enums import DepositStatus, SweepStatus
from custody.repositories.deposit_record_repository import DepositRecordRepository
from custody.repositories.sweep_repository import SweepRepository
from custody.services.deposit_processor import DepositProcessor
from custody.services.sweep_engine import SweepEngine, SweepOutcome
from custody.utils.datetime_utils import utc_now
from custody.utils.exceptions import is_fatal


@dataclass
class ReconciliationStats:
    """Counters of one reconciliation run."""

    checked: int = 0
    credited: int = 0
    pending: int = 0
    swept: int = 0
    confirmed: int = 0
    failed: int = 0
    errors: int = 0


class DepositReconciliationService:
    """Resumes stalled deposits and sweeps."""

    def __init__(
        self,
        session_factory: Any,
        processor: DepositProcessor,
        sweep_engine: SweepEngine,
        batch_size: int = RECONCILE_BATCH_SIZE,
        min_age_seconds: int = RECONCILE_MIN_AGE_SECONDS,
        max_age_seconds: int = RECONCILE_MAX_AGE_SECONDS,
        sweep_retry_seconds: int = RECONCILE_SWEEP_RETRY_SECONDS,
    ) -> None:
        """
        Initialize reconciliation service.

        Args:
            session_factory: Async session factory
            processor: Deposit processor (sweeps inline)
            sweep_engine: Sweep engine
            batch_size: Records handled per run
            min_age_seconds: Younger records are left to the live pipeline
            max_age_seconds: Older unverified records, and older deposits whose
                sweep keeps failing, are given up on
            sweep_retry_seconds: Wait between sweep attempts of one deposit
        """
        self.session_factory = session_factory
        self.processor = processor
        self.sweep_engine = sweep_engine
        self.batch_size = batch_size
        self.min_age = timedelta(seconds=min_age_seconds)
        self.max_age = timedelta(seconds=max_age_seconds)
        self.sweep_retry = timedelta(seconds=sweep_retry_seconds)

    async def reconcile_pending_deposits(self) -> ReconciliationStats:
        """
        Re-verify deposits that never reached CREDITED.

        Returns:
            ReconciliationStats
        """
        stats = ReconciliationStats()
        now = utc_now()

        async with self.session_factory() as session:
            records = await DepositRecordRepository(session).find_by_statuses(
                [DepositStatus.PENDING, DepositStatus.VERIFIED],
                older_than=now - self.min_age,
                newer_than=now - self.max_age,
                limit=self.batch_size,
            )

        for record in records:
            stats.checked += 1
            try:
                result = await self.processor.reprocess(record)
            except Exception as e:
                stats.errors += 1
                logger.exception(
                    f"[Reconcile] Deposit {record.idempotency_key} failed: {e}"
                )
                continue

            if result.credited:
                stats.credited += 1
            elif result.status == DepositStatus.PENDING:
                stats.pending += 1

        if stats.checked:
            logger.info(
                f"[Reconcile] Pending deposits: checked={stats.checked}, "
                f"credited={stats.credited}, pending={stats.pending}, errors={stats.errors}"
            )
        return stats

    async def retry_stalled_sweeps(self) -> ReconciliationStats:
        """
        Finish or retry sweeps of credited deposits.

        Returns:
            ReconciliationStats
        """
        stats = ReconciliationStats()
        now = utc_now()
        poll_window = timedelta(
            seconds=self.sweep_engine.confirm_attempts * self.sweep_engine.confirm_delay
        )

        async with self.session_factory() as session:
            initiated = await SweepRepository(session).find_by_statuses(
                [SweepStatus.INITIATED],
                older_than=now - max(poll_window, self.min_age),
                limit=self.batch_size,
            )
            unswept = await DepositRecordRepository(session).find_unswept(
                older_than=now - self.min_age,
                retry_before=now - self.sweep_retry,
                give_up_before=now - self.max_age,
                limit=self.batch_size,
            )

        for sweep in initiated:
            stats.checked += 1
            if not sweep.tx_hash:
                continue
            try:
                status = await self.sweep_engine.check_confirmation(
                    sweep.idempotency_key,
                    sweep.custodial_account_id,
                    sweep.tx_hash,
                    final=True,
                )
            except Exception as e:
                stats.errors += 1
                logger.warning(
                    f"[Reconcile] Confirmation check for {sweep.idempotency_key} failed: {e}"
                )
                continue
            if status == SweepStatus.CONFIRMED:
                stats.confirmed += 1
            elif status == SweepStatus.FAILED:
                stats.failed += 1

        for record in unswept:
            stats.checked += 1
            try:
                result = await self.processor.sweep_for_key(record.idempotency_key)
            except Exception as e:
                stats.errors += 1
                if is_fatal(e):
                    logger.error(
                        f"[Reconcile] Sweep {record.idempotency_key} needs attention: {e}"
                    )
                else:
                    logger.exception(f"[Reconcile] Sweep {record.idempotency_key} failed: {e}")
                continue

            if result is not None and result.outcome == SweepOutcome.SUCCESS:
                stats.swept += 1
            elif result is not None and result.outcome == SweepOutcome.ERROR:
                stats.errors += 1

        if stats.checked:
            logger.info(
                f"[Reconcile] Stalled sweeps: checked={stats.checked}, swept={stats.swept}, "
                f"confirmed={stats.confirmed}, failed={stats.failed}, errors={stats.errors}"
            )
        return stats
