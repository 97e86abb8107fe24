"""Unit tests for DepositClassifier."""

import dataclasses
from unittest.mock import AsyncMock

import pytest

from custody.services.deposit_classifier import DepositCandidate, DepositClassifier
from custody.services.ledger.client import ChainTransaction

DEPOSIT_ADDRESS = "0x" + "ab" * 20
OTHER_ADDRESS = "0x" + "cd" * 20


@pytest.fixture
def address_index():
    """Address index knowing a single deposit address."""
    index = AsyncMock()
    index.is_deposit_address = AsyncMock(
        side_effect=lambda address: (address or "").lower() == DEPOSIT_ADDRESS
    )
    return index


def make_tx(
    to_address: str | None = DEPOSIT_ADDRESS,
    value_wei: int = 10**16,
    memo: str | None = "buy:10:abc123",
) -> ChainTransaction:
    return ChainTransaction(
        tx_hash="0x" + "01" * 32,
        block_number=7,
        from_address="0x" + "11" * 20,
        to_address=to_address,
        value_wei=value_wei,
        memo=memo,
    )


class TestDepositClassifier:
    """Tests for classify()."""

    @pytest.mark.asyncio
    async def test_deposit_is_recognized(self, address_index):
        classifier = DepositClassifier(address_index, ("buy",))

        candidate = await classifier.classify(make_tx(to_address="0x" + "AB" * 20))

        assert candidate == DepositCandidate(
            recipient_address=DEPOSIT_ADDRESS,
            amount=10,
            idempotency_key="abc123",
            tx_hash="0x" + "01" * 32,
            value_wei=10**16,
            block_number=7,
        )

    @pytest.mark.asyncio
    async def test_contract_creation_is_discarded(self, address_index):
        classifier = DepositClassifier(address_index, ("buy",))

        assert await classifier.classify(make_tx(to_address=None)) is None

    @pytest.mark.asyncio
    async def test_zero_value_is_discarded(self, address_index):
        classifier = DepositClassifier(address_index, ("buy",))

        assert await classifier.classify(make_tx(value_wei=0)) is None

    @pytest.mark.asyncio
    async def test_reverted_transfer_is_discarded(self, address_index):
        classifier = DepositClassifier(address_index, ("buy",))
        tx = dataclasses.replace(make_tx(), success=False)

        assert await classifier.classify(tx) is None

    @pytest.mark.asyncio
    async def test_unknown_recipient_is_discarded(self, address_index):
        classifier = DepositClassifier(address_index, ("buy",))

        assert await classifier.classify(make_tx(to_address=OTHER_ADDRESS)) is None

    @pytest.mark.asyncio
    async def test_malformed_memo_is_discarded(self, address_index):
        classifier = DepositClassifier(address_index, ("buy",))

        assert await classifier.classify(make_tx(memo="buy:lots:abc123")) is None
        assert await classifier.classify(make_tx(memo=None)) is None

    @pytest.mark.asyncio
    async def test_memo_checked_before_address_lookup(self, address_index):
        """Transfers without a memo to unrelated addresses should not hit the index."""
        classifier = DepositClassifier(address_index, ("buy",))

        await classifier.classify(make_tx(to_address=OTHER_ADDRESS, memo=None))

        address_index.is_deposit_address.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_underpaid_deposit_is_discarded(self, address_index):
        classifier = DepositClassifier(address_index, ("buy",), ticket_price_wei=10**15)

        assert await classifier.classify(make_tx(value_wei=10**15 * 9)) is None
        assert await classifier.classify(make_tx(value_wei=10**15 * 10)) is not None
