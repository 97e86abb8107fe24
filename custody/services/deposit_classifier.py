"""
Deposit classifier.

Turns a raw chain transaction into a DepositCandidate or discards it.
Discarding is normal: most transactions in a block have nothing to do with
us.
"""

from dataclasses import dataclass

from loguru import logger

from custody.services.deposit_address_index import DepositAddressIndex
from custody.services.ledger.client import ChainTransaction
from custody.services.memo_parser import (
    UnrecognizedMemo,
    covers_ticket_price,
    parse_memo,
    required_value_wei,
)
from custody.utils.security import mask_address, mask_tx_hash


@dataclass(frozen=True)
class DepositCandidate:
    """Incoming transfer to a deposit address carrying a purchase memo."""

    recipient_address: str
    amount: int
    idempotency_key: str
    tx_hash: str
    value_wei: int
    block_number: int | None = None


class DepositClassifier:
    """Filter for incoming deposits."""

    def __init__(
        self,
        address_index: DepositAddressIndex,
        memo_tags: tuple[str, ...],
        ticket_price_wei: int = 0,
    ) -> None:
        """
        Initialize classifier.

        Args:
            address_index: Deposit address index
            memo_tags: Recognized memo tags
            ticket_price_wei: Minimum value per ticket (0 disables the check)
        """
        self.address_index = address_index
        self.memo_tags = memo_tags
        self.ticket_price_wei = ticket_price_wei

    async def classify(self, tx: ChainTransaction) -> DepositCandidate | None:
        """
        Classify a transaction.

        Args:
            tx: Chain transaction

        Returns:
            DepositCandidate or None if the transaction is not a deposit
        """
        if not tx.to_address:
            return None

        if tx.value_wei <= 0:
            return None

        # Reverted on chain
        if tx.success is False:
            return None

        # Cheap memo check before the address lookup hits the database
        memo = parse_memo(tx.memo, self.memo_tags)
        if isinstance(memo, UnrecognizedMemo):
            if await self.address_index.is_deposit_address(tx.to_address):
                logger.info(
                    f"[Classifier] Ignoring transfer {mask_tx_hash(tx.tx_hash)} to "
                    f"{mask_address(tx.to_address)}: {memo.reason}"
                )
            return None

        if not await self.address_index.is_deposit_address(tx.to_address):
            return None

        if not covers_ticket_price(memo, tx.value_wei, self.ticket_price_wei):
            required = required_value_wei(memo.amount, self.ticket_price_wei)
            logger.warning(
                f"[Classifier] Underpaid deposit {mask_tx_hash(tx.tx_hash)}: "
                f"{tx.value_wei} wei < {required} wei for {memo.amount} tickets"
            )
            return None

        return DepositCandidate(
            recipient_address=tx.to_address.lower(),
            amount=memo.amount,
            idempotency_key=memo.key,
            tx_hash=tx.tx_hash,
            value_wei=tx.value_wei,
            block_number=tx.block_number,
        )
