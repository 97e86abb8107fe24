"""Unit tests for DepositCoordinator."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from custody.models import DepositStatus
from custody.services.chain_scanner import TickResult
from custody.services.deposit_classifier import DepositCandidate
from custody.services.deposit_coordinator import DepositCoordinator
from custody.services.ledger.client import ChainTransaction
from custody.utils.exceptions import LedgerUnavailableError, SigningError


@pytest.fixture
def classifier():
    classifier = MagicMock()
    classifier.classify = AsyncMock(return_value=None)
    return classifier


@pytest.fixture
def processor():
    processor = MagicMock()
    processor.settle = AsyncMock()
    processor.sweep_for_key = AsyncMock()
    processor.register_candidate = AsyncMock()
    return processor


@pytest.fixture
def scanner():
    scanner = MagicMock()
    scanner.tick = AsyncMock(return_value=TickResult(block_number=1, advanced=True))
    scanner.cursor = 1
    scanner.lag = 0
    return scanner


@pytest.fixture
def coordinator(classifier, processor, scanner):
    coordinator = DepositCoordinator(classifier, processor, queue_size=4)
    coordinator.attach_scanner(scanner)
    return coordinator


def make_tx() -> ChainTransaction:
    return ChainTransaction(
        tx_hash="0x" + "01" * 32,
        block_number=1,
        from_address="0x" + "11" * 20,
        to_address="0x" + "ab" * 20,
        value_wei=10**16,
        memo="buy:1:k1",
    )


class TestTicks:
    """Single in-flight tick."""

    @pytest.mark.asyncio
    async def test_pending_tick_drops_new_requests(self, coordinator, scanner):
        assert coordinator.request_tick()
        assert not coordinator.request_tick()
        assert coordinator.ticks_dropped == 1

        coordinator.start()
        await coordinator.drain()
        await coordinator.stop()

        assert scanner.tick.await_count == 1
        assert coordinator.ticks_run == 1

    @pytest.mark.asyncio
    async def test_running_tick_drops_new_requests(self, coordinator, scanner):
        release = asyncio.Event()
        started = asyncio.Event()

        async def slow_tick():
            started.set()
            await release.wait()
            return TickResult()

        scanner.tick = AsyncMock(side_effect=slow_tick)
        coordinator.start()
        coordinator.request_tick()
        await started.wait()

        assert not coordinator.request_tick()
        assert coordinator.snapshot()["tick_running"] is True

        release.set()
        await coordinator.drain()

        assert coordinator.request_tick()
        await coordinator.drain()
        await coordinator.stop()

        assert scanner.tick.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_tick_keeps_consumer_alive(self, coordinator, scanner):
        scanner.tick = AsyncMock(side_effect=RuntimeError("cursor write failed"))
        coordinator.start()

        coordinator.request_tick()
        await coordinator.drain()

        assert coordinator.is_running
        assert "cursor write failed" in coordinator.last_error
        assert coordinator.request_tick()
        await coordinator.stop()


class TestSweeps:
    """Sweep requests."""

    @pytest.mark.asyncio
    async def test_sweep_requests_are_handled_in_order(self, coordinator, processor):
        coordinator.start()

        coordinator.request_sweep("k1")
        coordinator.request_sweep("k2")
        await coordinator.drain()
        await coordinator.stop()

        keys = [call.args[0] for call in processor.sweep_for_key.await_args_list]
        assert keys == ["k1", "k2"]
        assert coordinator.sweeps_requested == 2

    @pytest.mark.asyncio
    async def test_full_queue_drops_sweep(self, coordinator):
        for key in ("k1", "k2", "k3", "k4"):
            assert coordinator.request_sweep(key)

        assert not coordinator.request_sweep("k5")
        assert coordinator.sweeps_dropped == 1
        assert not coordinator.request_tick()

    @pytest.mark.asyncio
    async def test_signing_error_is_contained(self, coordinator, processor):
        processor.sweep_for_key = AsyncMock(side_effect=SigningError("bad key"))
        coordinator.start()

        coordinator.request_sweep("k1")
        await coordinator.drain()

        assert coordinator.is_running
        assert "bad key" in coordinator.last_error
        await coordinator.stop()

    @pytest.mark.asyncio
    async def test_other_sweep_errors_reach_the_consumer(self, coordinator, processor):
        processor.sweep_for_key = AsyncMock(side_effect=RuntimeError("db down"))
        coordinator.start()

        coordinator.request_sweep("k1")
        await coordinator.drain()

        assert coordinator.is_running
        assert coordinator.last_error == "RuntimeError: db down"
        await coordinator.stop()

    def test_processor_is_wired_to_sweep_queue(self, coordinator, processor):
        assert processor.request_sweep == coordinator.request_sweep


class TestDispatch:
    """Scanner dispatch and background settlement."""

    @pytest.mark.asyncio
    async def test_non_deposit_is_ignored(self, coordinator, processor):
        await coordinator.dispatch_transaction(make_tx())

        processor.register_candidate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_candidate_is_registered_and_settled(self, coordinator, classifier, processor):
        tx = make_tx()
        classifier.classify = AsyncMock(
            return_value=DepositCandidate(
                recipient_address=tx.to_address,
                amount=1,
                idempotency_key="k1",
                tx_hash=tx.tx_hash,
                value_wei=tx.value_wei,
            )
        )
        processor.register_candidate = AsyncMock(
            return_value=MagicMock(deposit_status=DepositStatus.PENDING)
        )

        await coordinator.dispatch_transaction(tx)
        await coordinator.drain()

        processor.settle.assert_awaited_once_with("k1", tx.tx_hash)

    @pytest.mark.asyncio
    async def test_credited_candidate_is_not_settled_again(
        self, coordinator, classifier, processor
    ):
        classifier.classify = AsyncMock(
            return_value=DepositCandidate("0x" + "ab" * 20, 1, "k1", "0x01", 1)
        )
        processor.register_candidate = AsyncMock(
            return_value=MagicMock(deposit_status=DepositStatus.SWEEP_CONFIRMED)
        )

        await coordinator.dispatch_transaction(make_tx())

        assert coordinator.snapshot()["active_settlements"] == 0

    @pytest.mark.asyncio
    async def test_registration_error_propagates(self, coordinator, classifier, processor):
        classifier.classify = AsyncMock(
            return_value=DepositCandidate("0x" + "ab" * 20, 1, "k1", "0x01", 1)
        )
        processor.register_candidate = AsyncMock(side_effect=RuntimeError("db down"))

        with pytest.raises(RuntimeError):
            await coordinator.dispatch_transaction(make_tx())

    @pytest.mark.asyncio
    async def test_one_settlement_per_key(self, coordinator, processor):
        release = asyncio.Event()

        async def slow_settle(key, tx_hash):
            await release.wait()

        processor.settle = AsyncMock(side_effect=slow_settle)

        assert coordinator.schedule_settlement("k1")
        assert not coordinator.schedule_settlement("k1")
        assert coordinator.schedule_settlement("k2")

        release.set()
        await coordinator.drain()

        assert processor.settle.await_count == 2
        assert coordinator.snapshot()["active_settlements"] == 0

    @pytest.mark.asyncio
    async def test_transient_settlement_error_is_deferred(self, coordinator, processor):
        processor.settle = AsyncMock(side_effect=LedgerUnavailableError("rpc timeout"))

        coordinator.schedule_settlement("k1")
        await coordinator.drain()

        snapshot = coordinator.snapshot()
        assert snapshot["settlements_failed"] == 1
        assert snapshot["active_settlements"] == 0
        assert coordinator.last_error is None

    @pytest.mark.asyncio
    async def test_settlement_bug_is_reported(self, coordinator, processor):
        processor.settle = AsyncMock(side_effect=ValueError("bad row"))

        coordinator.schedule_settlement("k1")
        await coordinator.drain()

        assert coordinator.snapshot()["settlements_failed"] == 1
        assert coordinator.last_error == "settle k1: bad row"
