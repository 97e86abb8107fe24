"""Unit tests for the sweep engine."""

import asyncio

import pytest
from sqlalchemy import update

from custody.config.constants import (
    SWEEP_DUST_THRESHOLD_WEI,
    SWEEP_FEE_RESERVE_WEI,
    SWEEP_MIN_TRANSFER_WEI,
)
from custody.config.settings import settings
from custody.models import CustodialAccount, SweepStatus
from custody.repositories.sweep_repository import SweepRepository
from custody.services.ledger.client import TransactionOutcome
from custody.services.sweep_engine import (
    SweepEngine,
    SweepOutcome,
    compute_sweep_amount,
)
from custody.utils.exceptions import LedgerUnavailableError, SigningError

RESERVE = SWEEP_FEE_RESERVE_WEI
OPERATING_ADDRESS = settings.operating_wallet_address


@pytest.fixture
def sweep_engine(ledger, wallet, session_factory):
    return SweepEngine(
        ledger,
        wallet,
        session_factory,
        operating_address=OPERATING_ADDRESS,
        confirm_attempts=2,
        confirm_delay=0,
    )


@pytest.fixture
def account(create_user, wallet):
    async def _account() -> CustodialAccount:
        user_id = await create_user()
        account, _ = await wallet.ensure_account(user_id)
        return account

    return _account


class TestComputeSweepAmount:
    """Tests for the sweep amount rule."""

    def test_regular_sweep_keeps_reserve(self):
        assert compute_sweep_amount(10**16, RESERVE, SWEEP_DUST_THRESHOLD_WEI) == 10**16 - RESERVE

    def test_dust_sweeps_whole_balance(self):
        balance = RESERVE + SWEEP_DUST_THRESHOLD_WEI - 1

        assert compute_sweep_amount(balance, RESERVE, SWEEP_DUST_THRESHOLD_WEI) == balance

    def test_threshold_boundary(self):
        balance = RESERVE + SWEEP_DUST_THRESHOLD_WEI

        assert (
            compute_sweep_amount(balance, RESERVE, SWEEP_DUST_THRESHOLD_WEI)
            == SWEEP_DUST_THRESHOLD_WEI
        )


class TestSweep:
    """Tests for SweepEngine.sweep()."""

    @pytest.mark.asyncio
    async def test_successful_sweep_is_confirmed(self, sweep_engine, ledger, account):
        acc = await account()
        ledger.balances[acc.address] = 10**16

        result = await sweep_engine.sweep(acc, "key-1")
        await sweep_engine.wait_for_pollers()

        assert result.outcome == SweepOutcome.SUCCESS
        assert result.amount_wei == 10**16 - RESERVE
        assert len(ledger.submitted) == 1

        signed = ledger.submitted[0]
        assert signed.to_address == OPERATING_ADDRESS
        assert signed.value_wei == 10**16 - RESERVE
        assert signed.nonce == 0
        assert result.tx_hash == signed.tx_hash
        assert await sweep_engine.get_status("key-1") == SweepStatus.CONFIRMED
        assert sweep_engine.in_flight == 0

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, sweep_engine, ledger, account):
        acc = await account()
        ledger.balances[acc.address] = SWEEP_MIN_TRANSFER_WEI + RESERVE - 1

        result = await sweep_engine.sweep(acc, "key-2")

        assert result.outcome == SweepOutcome.INSUFFICIENT_BALANCE
        assert ledger.submitted == []
        assert await sweep_engine.get_status("key-2") == SweepStatus.INSUFFICIENT_BALANCE

    @pytest.mark.asyncio
    async def test_dust_sweep_pays_fee_from_value(
        self, sweep_engine, ledger, wallet, account, session_factory
    ):
        acc = await account()
        balance = RESERVE + SWEEP_MIN_TRANSFER_WEI * 2
        ledger.balances[acc.address] = balance

        result = await sweep_engine.sweep(acc, "key-3")

        assert result.outcome == SweepOutcome.SUCCESS
        sent = balance - wallet.max_fee_wei
        assert ledger.submitted[0].value_wei == sent
        # Recorded amount is what was transferred, not the pre-fee balance
        assert result.amount_wei == sent
        async with session_factory() as session:
            record = await SweepRepository(session).get_by_key("key-3")
        assert int(record.amount_wei) == sent
        assert ledger.balances[acc.address] == 0

    @pytest.mark.asyncio
    async def test_concurrent_sweeps_submit_once(self, sweep_engine, ledger, account):
        acc = await account()
        ledger.balances[acc.address] = 10**16

        first, second = await asyncio.gather(
            sweep_engine.sweep(acc, "key-4"),
            sweep_engine.sweep(acc, "key-4"),
        )
        await sweep_engine.wait_for_pollers()

        outcomes = {first.outcome, second.outcome}
        assert SweepOutcome.SUCCESS in outcomes
        # The loser hits the guard, the durable status or the drained balance
        assert outcomes & {
            SweepOutcome.ALREADY_ATTEMPTED,
            SweepOutcome.PENDING,
            SweepOutcome.INSUFFICIENT_BALANCE,
        }
        assert len(ledger.submitted) == 1

    @pytest.mark.asyncio
    async def test_durable_status_blocks_resweep(
        self, sweep_engine, ledger, wallet, session_factory, account
    ):
        """A fresh engine (guard lost on restart) should not sweep a confirmed key again."""
        acc = await account()
        ledger.balances[acc.address] = 10**16
        await sweep_engine.sweep(acc, "key-5")
        await sweep_engine.wait_for_pollers()

        restarted = SweepEngine(
            ledger, wallet, session_factory, OPERATING_ADDRESS, confirm_delay=0
        )
        ledger.balances[acc.address] = 10**16
        result = await restarted.sweep(acc, "key-5")

        assert result.outcome == SweepOutcome.SUCCESS
        assert len(ledger.submitted) == 1

    @pytest.mark.asyncio
    async def test_signing_error_is_raised_and_recorded(
        self, sweep_engine, ledger, session_factory, account
    ):
        acc = await account()
        ledger.balances[acc.address] = 10**16
        async with session_factory() as session:
            await session.execute(
                update(CustodialAccount)
                .where(CustodialAccount.id == acc.id)
                .values(encrypted_private_key="not-a-fernet-token")
            )
            await session.commit()
        acc.encrypted_private_key = "not-a-fernet-token"

        with pytest.raises(SigningError):
            await sweep_engine.sweep(acc, "key-6")

        assert sweep_engine.in_flight == 0
        assert ledger.submitted == []
        assert await sweep_engine.get_status("key-6") == SweepStatus.ERROR

    @pytest.mark.asyncio
    async def test_submit_error_is_retryable(self, sweep_engine, ledger, account, monkeypatch):
        acc = await account()
        ledger.balances[acc.address] = 10**16
        original_submit = ledger.submit_transfer

        async def failing_submit(signed):
            raise LedgerUnavailableError("send_raw_transaction failed: timeout")

        monkeypatch.setattr(ledger, "submit_transfer", failing_submit)
        result = await sweep_engine.sweep(acc, "key-7")

        assert result.outcome == SweepOutcome.ERROR
        assert sweep_engine.in_flight == 0
        assert await sweep_engine.get_status("key-7") == SweepStatus.ERROR

        monkeypatch.setattr(ledger, "submit_transfer", original_submit)
        retry = await sweep_engine.sweep(acc, "key-7")
        await sweep_engine.wait_for_pollers()

        assert retry.outcome == SweepOutcome.SUCCESS
        assert await sweep_engine.get_status("key-7") == SweepStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_balance_query_error(self, sweep_engine, ledger, account, monkeypatch):
        acc = await account()

        async def failing_balance(address):
            raise LedgerUnavailableError("get_balance failed")

        monkeypatch.setattr(ledger, "get_balance", failing_balance)
        result = await sweep_engine.sweep(acc, "key-8")

        assert result.outcome == SweepOutcome.ERROR
        assert ledger.submitted == []


class TestCheckConfirmation:
    """Tests for check_confirmation()."""

    @pytest.mark.asyncio
    async def test_reverted_sweep_fails(self, sweep_engine, ledger, session_factory, account):
        acc = await account()
        ledger.outcomes["0xdead"] = TransactionOutcome(found=True, success=False)

        status = await sweep_engine.check_confirmation("key-9", acc.id, "0xdead")

        assert status == SweepStatus.FAILED
        async with session_factory() as session:
            events = await SweepRepository(session).get_events("key-9")
        assert [e.status for e in events] == [SweepStatus.FAILED]

    @pytest.mark.asyncio
    async def test_unmined_sweep_undecided_until_final(self, sweep_engine, account):
        acc = await account()

        assert await sweep_engine.check_confirmation("key-10", acc.id, "0xbeef") is None
        assert (
            await sweep_engine.check_confirmation("key-10", acc.id, "0xbeef", final=True)
            == SweepStatus.FAILED
        )

    @pytest.mark.asyncio
    async def test_poller_gives_up_when_never_mined(self, sweep_engine, ledger, account):
        acc = await account()
        ledger.balances[acc.address] = 10**16
        ledger.auto_mine = False

        result = await sweep_engine.sweep(acc, "key-11")
        await sweep_engine.wait_for_pollers()

        assert result.outcome == SweepOutcome.SUCCESS
        assert await sweep_engine.get_status("key-11") == SweepStatus.FAILED
