"""Unit tests for TransactionVerifier."""

import time

import pytest

from custody.models import DepositSource, DepositStatus
from custody.repositories.deposit_record_repository import DepositRecordRepository
from custody.services.ledger.client import ChainTransaction, TransactionOutcome
from custody.services.transaction_verifier import (
    TransactionVerifier,
    VerificationStatus,
)
from custody.utils.exceptions import LedgerUnavailableError

DEPOSIT_ADDRESS = "0x" + "ab" * 20


@pytest.fixture
def verifier(ledger, session_factory):
    return TransactionVerifier(
        ledger,
        session_factory,
        memo_tags=("buy",),
        initial_delay=0,
        retry_delay=0,
        max_attempts=3,
        staleness_seconds=30 * 60,
        min_confirmations=3,
    )


class TestTransactionVerifier:
    """Tests for verify()."""

    @pytest.mark.asyncio
    async def test_confirmed_deposit(self, verifier, ledger):
        tx = ledger.deliver(DEPOSIT_ADDRESS, 10**16, "buy:5:k1")

        result = await verifier.verify("k1", DEPOSIT_ADDRESS)

        assert result.status == VerificationStatus.CONFIRMED
        assert result.is_confirmed
        assert result.tx_hash == tx.tx_hash
        assert result.amount == 5
        assert result.value_wei == 10**16
        assert result.attempts == 1

    @pytest.mark.asyncio
    async def test_no_match_is_pending_not_failed(self, verifier, ledger, monkeypatch):
        calls = []
        original = ledger.get_account_transactions

        async def counting(address, limit):
            calls.append(address)
            return await original(address, limit)

        monkeypatch.setattr(ledger, "get_account_transactions", counting)
        ledger.deliver(DEPOSIT_ADDRESS, 10**16, "buy:5:other-key")

        result = await verifier.verify("k1", DEPOSIT_ADDRESS)

        assert result.status == VerificationStatus.PENDING
        assert not result.is_confirmed
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_known_hash_must_match(self, verifier, ledger):
        ledger.deliver(DEPOSIT_ADDRESS, 10**16, "buy:5:k1")

        result = await verifier.verify("k1", DEPOSIT_ADDRESS, tx_hash="0x" + "ee" * 32)

        assert result.status == VerificationStatus.PENDING

    @pytest.mark.asyncio
    async def test_stale_match_is_ignored(self, verifier, ledger):
        stale = ChainTransaction(
            tx_hash="0x" + "aa" * 32,
            block_number=5,
            from_address="0x" + "11" * 20,
            to_address=DEPOSIT_ADDRESS,
            value_wei=10**16,
            memo="buy:5:k1",
            timestamp=int(time.time()) - 2 * 60 * 60,
            success=True,
        )
        ledger.history[DEPOSIT_ADDRESS] = [stale]
        ledger.outcomes[stale.tx_hash] = TransactionOutcome(
            found=True, success=True, confirmations=100
        )

        result = await verifier.verify("k1", DEPOSIT_ADDRESS)

        assert result.status == VerificationStatus.PENDING

    @pytest.mark.asyncio
    async def test_old_transfer_with_known_hash_is_accepted(self, verifier, ledger):
        """A scanner catching up on old blocks still gets its deposits verified."""
        tx = ledger.deliver(
            DEPOSIT_ADDRESS, 10**16, "buy:5:k1", timestamp=int(time.time()) - 2 * 60 * 60
        )

        result = await verifier.verify("k1", DEPOSIT_ADDRESS, tx_hash=tx.tx_hash)

        assert result.status == VerificationStatus.CONFIRMED
        assert result.tx_hash == tx.tx_hash

    @pytest.mark.asyncio
    async def test_underpaid_transfer_is_not_credited(self, ledger, session_factory):
        verifier = TransactionVerifier(
            ledger,
            session_factory,
            memo_tags=("buy",),
            initial_delay=0,
            retry_delay=0,
            max_attempts=1,
            ticket_price_wei=10**15,
        )
        ledger.deliver(DEPOSIT_ADDRESS, 10**15 * 5 - 1, "buy:5:k1")

        result = await verifier.verify("k1", DEPOSIT_ADDRESS)

        assert result.status == VerificationStatus.PENDING

    @pytest.mark.asyncio
    async def test_exact_price_is_credited(self, ledger, session_factory):
        verifier = TransactionVerifier(
            ledger,
            session_factory,
            memo_tags=("buy",),
            initial_delay=0,
            retry_delay=0,
            max_attempts=1,
            min_confirmations=1,
            ticket_price_wei=10**15,
        )
        ledger.deliver(DEPOSIT_ADDRESS, 10**15 * 5, "buy:5:k1")

        result = await verifier.verify("k1", DEPOSIT_ADDRESS)

        assert result.status == VerificationStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_reverted_transaction_is_not_credited(self, verifier, ledger):
        tx = ledger.deliver(DEPOSIT_ADDRESS, 10**16, "buy:5:k1")
        ledger.outcomes[tx.tx_hash] = TransactionOutcome(
            found=True, success=False, confirmations=10
        )

        result = await verifier.verify("k1", DEPOSIT_ADDRESS)

        assert result.status == VerificationStatus.PENDING

    @pytest.mark.asyncio
    async def test_not_enough_confirmations(self, verifier, ledger):
        tx = ledger.deliver(DEPOSIT_ADDRESS, 10**16, "buy:5:k1")
        ledger.outcomes[tx.tx_hash] = TransactionOutcome(
            found=True, success=True, confirmations=2
        )

        result = await verifier.verify("k1", DEPOSIT_ADDRESS)

        assert result.status == VerificationStatus.PENDING

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, verifier, ledger, monkeypatch):
        ledger.deliver(DEPOSIT_ADDRESS, 10**16, "buy:5:k1")
        original = ledger.get_account_transactions
        failures = [LedgerUnavailableError("explorer timeout")]

        async def flaky(address, limit):
            if failures:
                raise failures.pop()
            return await original(address, limit)

        monkeypatch.setattr(ledger, "get_account_transactions", flaky)

        result = await verifier.verify("k1", DEPOSIT_ADDRESS)

        assert result.status == VerificationStatus.CONFIRMED
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_credited_key_short_circuits(
        self, verifier, ledger, session_factory, create_user, wallet, monkeypatch
    ):
        user_id = await create_user()
        account, _ = await wallet.ensure_account(user_id)
        async with session_factory() as session:
            repo = DepositRecordRepository(session)
            await repo.create_if_absent(
                idempotency_key="k1",
                user_id=user_id,
                custodial_account_id=account.id,
                amount_requested=5,
                source=DepositSource.CHAIN,
            )
            await repo.advance_status("k1", DepositStatus.CREDITED)
            await session.commit()

        async def unexpected(address, limit):
            raise AssertionError("ledger should not be queried")

        monkeypatch.setattr(ledger, "get_account_transactions", unexpected)

        result = await verifier.verify("k1", account.address)

        assert result.status == VerificationStatus.ALREADY_FINAL
        assert result.amount == 5
