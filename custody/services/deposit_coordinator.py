"""
Deposit coordinator.

Single owner of the scan loop and the sweep queue. The scheduler only ever
calls request_tick(); the coordinator decides whether a tick runs, so two
ticks can never overlap. Sweeps are serialized through the same queue.
Candidate settlement (verification can take minutes) runs in tracked
background tasks so it never holds up the scan.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger

from custody.config.constants import (
    COORDINATOR_MAX_CONCURRENT_DEPOSITS,
    COORDINATOR_QUEUE_SIZE,
)
from custody.services.chain_scanner import ChainScanner, TickResult
from custody.services.deposit_classifier import DepositClassifier
from custody.services.deposit_processor import DepositProcessor
from custody.services.ledger.client import ChainTransaction
from custody.utils.datetime_utils import utc_now
from custody.utils.exceptions import is_fatal, is_transient


@dataclass(frozen=True)
class ScanTick:
    """Run one scanner tick."""


@dataclass(frozen=True)
class SweepRequest:
    """Sweep the account of a credited deposit."""

    idempotency_key: str


class DepositCoordinator:
    """Event loop owner for scanning and sweeping."""

    def __init__(
        self,
        classifier: DepositClassifier,
        processor: DepositProcessor,
        queue_size: int = COORDINATOR_QUEUE_SIZE,
        max_concurrent_deposits: int = COORDINATOR_MAX_CONCURRENT_DEPOSITS,
    ) -> None:
        """
        Initialize coordinator.

        The scanner is attached separately (attach_scanner) because its
        dispatch callable is this coordinator.

        Args:
            classifier: Deposit classifier
            processor: Deposit processor
            queue_size: Event queue capacity
            max_concurrent_deposits: Settlements running at once
        """
        self.classifier = classifier
        self.processor = processor
        self.scanner: ChainScanner | None = None

        self._queue: asyncio.Queue[ScanTick | SweepRequest] = asyncio.Queue(
            maxsize=queue_size
        )
        self._semaphore = asyncio.Semaphore(max_concurrent_deposits)
        self._consumer: asyncio.Task | None = None
        self._settlements: dict[str, asyncio.Task] = {}

        self._tick_pending = False
        self._tick_running = False

        # Stats for the health endpoint
        self.ticks_run = 0
        self.ticks_dropped = 0
        self.sweeps_requested = 0
        self.sweeps_dropped = 0
        self.settlements_failed = 0
        self.last_tick_at: datetime | None = None
        self.last_tick: TickResult | None = None
        self.last_error: str | None = None

        processor.request_sweep = self.request_sweep

    def attach_scanner(self, scanner: ChainScanner) -> None:
        """Attach the scanner driven by ScanTick events."""
        self.scanner = scanner

    @property
    def is_running(self) -> bool:
        """Consumer task alive."""
        return self._consumer is not None and not self._consumer.done()

    # ------------------------------------------------------------------
    # Producers (never block)
    # ------------------------------------------------------------------

    def request_tick(self) -> bool:
        """
        Ask for a scanner tick.

        Dropped if a tick is already queued or running.

        Returns:
            True if a tick was queued
        """
        if self._tick_pending or self._tick_running:
            self.ticks_dropped += 1
            return False
        try:
            self._queue.put_nowait(ScanTick())
        except asyncio.QueueFull:
            self.ticks_dropped += 1
            logger.warning("[Coordinator] Event queue full, dropping tick")
            return False
        self._tick_pending = True
        return True

    def request_sweep(self, idempotency_key: str) -> bool:
        """
        Queue a sweep.

        When the queue is full the request is dropped; the stalled sweep
        reconciliation job picks the deposit up later.

        Returns:
            True if queued
        """
        try:
            self._queue.put_nowait(SweepRequest(idempotency_key))
        except asyncio.QueueFull:
            self.sweeps_dropped += 1
            logger.warning(
                f"[Coordinator] Event queue full, dropping sweep {idempotency_key}"
            )
            return False
        self.sweeps_requested += 1
        return True

    def schedule_settlement(self, idempotency_key: str, tx_hash: str | None = None) -> bool:
        """
        Settle a registered deposit in the background.

        At most one settlement per key runs at a time.

        Returns:
            True if a new settlement task was started
        """
        existing = self._settlements.get(idempotency_key)
        if existing is not None and not existing.done():
            return False

        task = asyncio.create_task(
            self._settle(idempotency_key, tx_hash),
            name=f"settle-{idempotency_key}",
        )
        self._settlements[idempotency_key] = task
        task.add_done_callback(lambda t: self._forget_settlement(idempotency_key, t))
        return True

    def _forget_settlement(self, idempotency_key: str, task: asyncio.Task) -> None:
        """Drop a finished settlement unless a newer one replaced it."""
        if self._settlements.get(idempotency_key) is task:
            del self._settlements[idempotency_key]

    async def _settle(self, idempotency_key: str, tx_hash: str | None) -> None:
        """Bounded settlement of one deposit."""
        async with self._semaphore:
            try:
                result = await self.processor.settle(idempotency_key, tx_hash)
                logger.debug(f"[Coordinator] Settled {idempotency_key}: {result.status}")
            except Exception as e:
                # Record stays PENDING/VERIFIED, reconciliation resumes it
                self.settlements_failed += 1
                if is_transient(e):
                    logger.warning(
                        f"[Coordinator] Settlement of {idempotency_key} deferred: {e}"
                    )
                else:
                    self.last_error = f"settle {idempotency_key}: {e}"
                    logger.exception(
                        f"[Coordinator] Settlement of {idempotency_key} failed: {e}"
                    )

    # ------------------------------------------------------------------
    # Scanner dispatch
    # ------------------------------------------------------------------

    async def dispatch_transaction(self, tx: ChainTransaction) -> None:
        """
        Classify a scanned transaction and start its settlement.

        Raises on classification or registration errors so the scanner
        parks the transaction.
        """
        candidate = await self.classifier.classify(tx)
        if candidate is None:
            return

        record = await self.processor.register_candidate(candidate)
        if record is None:
            return

        if record.deposit_status.is_credited():
            return

        self.schedule_settlement(candidate.idempotency_key, candidate.tx_hash)

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    async def _handle(self, event: ScanTick | SweepRequest) -> None:
        """Handle one event."""
        if isinstance(event, ScanTick):
            self._tick_pending = False
            if self.scanner is None:
                return
            self._tick_running = True
            try:
                self.last_tick = await self.scanner.tick()
                self.ticks_run += 1
                self.last_tick_at = utc_now()
            finally:
                self._tick_running = False
            return

        try:
            await self.processor.sweep_for_key(event.idempotency_key)
        except Exception as e:
            if not is_fatal(e):
                raise
            logger.error(
                f"[Coordinator] Sweep {event.idempotency_key} needs attention: {e}"
            )
            self.last_error = f"sweep {event.idempotency_key}: {e}"

    async def _run(self) -> None:
        """Consume events until cancelled."""
        logger.info("[Coordinator] Started")
        while True:
            event = await self._queue.get()
            try:
                await self._handle(event)
            except Exception as e:
                self.last_error = f"{type(e).__name__}: {e}"
                logger.exception(f"[Coordinator] Event {event} failed: {e}")
            finally:
                self._queue.task_done()

    def start(self) -> None:
        """Start the consumer task."""
        if self.is_running:
            return
        self._consumer = asyncio.create_task(self._run(), name="deposit-coordinator")

    async def stop(self) -> None:
        """Stop the consumer and cancel settlements in flight."""
        tasks = list(self._settlements.values())
        if self._consumer is not None:
            tasks.append(self._consumer)

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._consumer = None
        self._settlements.clear()
        logger.info("[Coordinator] Stopped")

    async def drain(self) -> None:
        """Wait until queued events and running settlements are done."""
        await self._queue.join()
        while self._settlements:
            await asyncio.gather(*list(self._settlements.values()), return_exceptions=True)
            await self._queue.join()

    def snapshot(self) -> dict[str, Any]:
        """State for the health endpoint."""
        return {
            "running": self.is_running,
            "queue_size": self._queue.qsize(),
            "tick_pending": self._tick_pending,
            "tick_running": self._tick_running,
            "ticks_run": self.ticks_run,
            "ticks_dropped": self.ticks_dropped,
            "sweeps_requested": self.sweeps_requested,
            "sweeps_dropped": self.sweeps_dropped,
            "settlements_failed": self.settlements_failed,
            "active_settlements": len(self._settlements),
            "cursor": self.scanner.cursor if self.scanner else None,
            "lag": self.scanner.lag if self.scanner else None,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "last_error": self.last_error,
        }
