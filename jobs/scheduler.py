"""
Deposit worker entry point.

Runs the deposit coordinator in-process, drives it with an APScheduler
interval job and enqueues the reconciliation actors on the Dramatiq broker.

Usage:
    python -m jobs.scheduler
"""

import asyncio
import signal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from custody.config.database import async_engine, async_session_maker
from custody.config.settings import settings
from custody.services.container import DepositServices
from jobs.broker import broker  # noqa: F401
from jobs.health import (
    set_coordinator,
    set_scheduler,
    start_health_server,
    stop_health_server,
)
from jobs.initialization import initialize_services, setup_logging, validate_environment
from jobs.tasks.deposit_reconciliation import (
    reconcile_pending_deposits,
    retry_stalled_sweeps,
)


def create_scheduler(services: DepositServices) -> AsyncIOScheduler:
    """
    Create the worker scheduler.

    Args:
        services: Worker service graph (with coordinator)

    Returns:
        Configured, not yet started, AsyncIOScheduler
    """
    scheduler = AsyncIOScheduler(
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 30,
        },
        timezone="UTC",
    )

    scheduler.add_job(
        services.coordinator.request_tick,
        trigger=IntervalTrigger(seconds=settings.scanner_tick_seconds),
        id="deposit_scan_tick",
        name="Deposit Scan Tick",
        max_instances=1,
        coalesce=True,
    )

    scheduler.add_job(
        reconcile_pending_deposits.send,
        trigger=IntervalTrigger(seconds=settings.reconcile_interval_seconds),
        id="reconcile_pending_deposits",
        name="Reconcile Pending Deposits",
    )

    scheduler.add_job(
        retry_stalled_sweeps.send,
        trigger=IntervalTrigger(seconds=settings.reconcile_interval_seconds),
        id="retry_stalled_sweeps",
        name="Retry Stalled Sweeps",
    )

    return scheduler


async def run_worker() -> None:
    """Run the worker until SIGTERM/SIGINT."""
    validate_environment()
    services = initialize_services(async_session_maker)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    services.coordinator.start()
    scheduler = create_scheduler(services)
    scheduler.start()
    set_scheduler(scheduler)
    set_coordinator(services.coordinator)

    runner, _ = await start_health_server(port=settings.health_check_port)
    logger.info(
        f"Deposit worker started: tick every {settings.scanner_tick_seconds}s, "
        f"reconciliation every {settings.reconcile_interval_seconds}s"
    )

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down deposit worker...")
        scheduler.shutdown(wait=False)
        set_scheduler(None)
        set_coordinator(None)
        await stop_health_server(runner)
        await services.close()
        await async_engine.dispose()
        logger.info("Deposit worker stopped")


def main() -> None:
    """Process entry point."""
    setup_logging()
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
