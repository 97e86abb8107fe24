"""
Deposit reconciliation tasks.

Resume deposits and sweeps the live pipeline could not finish.
Enqueued by the worker scheduler every RECONCILE_INTERVAL_SECONDS.
"""

import dramatiq
from loguru import logger

from custody.config.constants import (
    DRAMATIQ_TIME_LIMIT_RECONCILE,
    RECONCILE_LOCK_TIMEOUT_SECONDS,
)
from custody.services.reconciliation_service import ReconciliationStats
from custody.utils.redis_utils import job_lock
from jobs.async_runner import run_async
from jobs.broker import broker  # noqa: F401
from jobs.initialization import create_task_engine, initialize_services


@dramatiq.actor(max_retries=0, time_limit=DRAMATIQ_TIME_LIMIT_RECONCILE)
def reconcile_pending_deposits() -> dict:
    """
    Re-verify deposits stuck in PENDING/VERIFIED.

    Returns:
        Dict with run counters
    """
    logger.info("Starting pending deposit reconciliation...")
    return run_async(_run_locked("reconcile_pending_deposits"))


@dramatiq.actor(max_retries=0, time_limit=DRAMATIQ_TIME_LIMIT_RECONCILE)
def retry_stalled_sweeps() -> dict:
    """
    Confirm orphaned INITIATED sweeps and retry missing or failed ones.

    Returns:
        Dict with run counters
    """
    logger.info("Starting stalled sweep reconciliation...")
    return run_async(_run_locked("retry_stalled_sweeps"))


async def _run_locked(job: str) -> dict:
    """Run one reconciliation job unless another worker is running it."""
    async with job_lock(job, RECONCILE_LOCK_TIMEOUT_SECONDS) as acquired:
        if not acquired:
            logger.info(f"{job}: another run holds the lock, skipping")
            return {"skipped": True}
        stats = await _run(job)

    logger.info(f"{job} complete: {stats}")
    return {"skipped": False, **stats.__dict__}


async def _run(job: str) -> ReconciliationStats:
    """Build the reconciliation graph on a task engine and run the job."""
    engine, session_factory = create_task_engine()
    services = initialize_services(session_factory, with_coordinator=False)
    try:
        if job == "reconcile_pending_deposits":
            return await services.reconciliation.reconcile_pending_deposits()
        return await services.reconciliation.retry_stalled_sweeps()
    finally:
        await services.close()
        await engine.dispose()
