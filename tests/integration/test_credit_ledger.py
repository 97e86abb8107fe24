"""Integration tests for the idempotent credit ledger."""

import asyncio

import pytest

from custody.models import DepositSource, DepositStatus
from custody.repositories.deposit_record_repository import DepositRecordRepository
from custody.services.credit_ledger import CreditLedger
from custody.utils.exceptions import UserNotFoundError


@pytest.fixture
def credit_ledger(session_factory):
    return CreditLedger(session_factory)


class TestCreditLedger:
    """Tests for CreditLedger.credit()."""

    @pytest.mark.asyncio
    async def test_credit(self, credit_ledger, create_user):
        user_id = await create_user(ticket_balance=5)

        result = await credit_ledger.credit(user_id, "abc123", 10)

        assert result.balance == 15
        assert not result.already_processed
        assert await credit_ledger.get_balance(user_id) == 15
        assert await credit_ledger.is_processed("abc123")

        history = await credit_ledger.get_history(user_id)
        assert len(history) == 1
        assert history[0].amount == 10
        assert history[0].balance_after == 15
        assert history[0].idempotency_key == "abc123"

    @pytest.mark.asyncio
    async def test_duplicate_key_is_a_noop(self, credit_ledger, create_user):
        user_id = await create_user()

        first = await credit_ledger.credit(user_id, "abc123", 10)
        second = await credit_ledger.credit(user_id, "abc123", 10)

        assert first.balance == 10
        assert second.already_processed
        assert second.balance == 10
        assert await credit_ledger.get_balance(user_id) == 10
        assert len(await credit_ledger.get_history(user_id)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_credit_once(self, credit_ledger, create_user):
        user_id = await create_user()

        results = await asyncio.gather(
            *(credit_ledger.credit(user_id, "abc123", 10) for _ in range(5))
        )

        assert sum(not r.already_processed for r in results) == 1
        assert await credit_ledger.get_balance(user_id) == 10
        assert len(await credit_ledger.get_history(user_id)) == 1

    @pytest.mark.asyncio
    async def test_distinct_keys_accumulate(self, credit_ledger, create_user):
        user_id = await create_user()

        await asyncio.gather(
            *(credit_ledger.credit(user_id, f"key-{i}", 2) for i in range(4))
        )

        assert await credit_ledger.get_balance(user_id) == 8

    @pytest.mark.asyncio
    async def test_unknown_user(self, credit_ledger):
        with pytest.raises(UserNotFoundError):
            await credit_ledger.credit(999, "abc123", 1)

        assert not await credit_ledger.is_processed("abc123")

    @pytest.mark.asyncio
    async def test_amount_must_be_positive(self, credit_ledger, create_user):
        user_id = await create_user()

        with pytest.raises(ValueError):
            await credit_ledger.credit(user_id, "abc123", 0)

    @pytest.mark.asyncio
    async def test_credit_advances_deposit_record(
        self, credit_ledger, session_factory, wallet, create_user
    ):
        user_id = await create_user()
        account, _ = await wallet.ensure_account(user_id)
        async with session_factory() as session:
            await DepositRecordRepository(session).create_if_absent(
                idempotency_key="abc123",
                user_id=user_id,
                custodial_account_id=account.id,
                amount_requested=3,
                source=DepositSource.CHAIN,
            )
            await session.commit()

        await credit_ledger.credit(user_id, "abc123", 3)

        async with session_factory() as session:
            record = await DepositRecordRepository(session).get_by_key("abc123")
        assert record.deposit_status == DepositStatus.CREDITED
