"""
Ledger client protocol and transfer types.
"""

from dataclasses import asdict, dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class ChainTransaction:
    """
    Native value transfer as seen on the ledger.

    Addresses are lower-case hex; memo is the UTF-8 text of the input data
    or None when the input is empty or not text.
    """

    tx_hash: str
    block_number: int
    from_address: str | None
    to_address: str | None
    value_wei: int
    memo: str | None = None
    timestamp: int | None = None
    success: bool | None = None

    def to_payload(self) -> dict[str, Any]:
        """Serialize for JSON storage (wei as string)."""
        payload = asdict(self)
        payload["value_wei"] = str(self.value_wei)
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ChainTransaction":
        """Restore from to_payload() output."""
        data = dict(payload)
        data["value_wei"] = int(data.get("value_wei") or 0)
        return cls(**data)


@dataclass(frozen=True)
class TransactionOutcome:
    """Receipt-level view of a transaction."""

    found: bool
    success: bool = False
    confirmations: int = 0
    block_number: int | None = None


@dataclass(frozen=True)
class SignedTransfer:
    """Signed native transfer ready for submission."""

    tx_hash: str
    raw_transaction: bytes
    from_address: str
    to_address: str
    value_wei: int
    nonce: int


@runtime_checkable
class LedgerClient(Protocol):
    """
    Read/submit access to the ledger.

    Every method raises LedgerUnavailableError on transport or node errors.
    """

    async def get_chain_height(self) -> int:
        """Latest block number."""
        ...

    async def get_block_transactions(self, height: int) -> list[ChainTransaction]:
        """Transactions of one block in block order."""
        ...

    async def get_account_transactions(
        self, address: str, limit: int
    ) -> list[ChainTransaction]:
        """Recent transactions touching address, newest first."""
        ...

    async def get_balance(self, address: str) -> int:
        """Confirmed balance in wei."""
        ...

    async def get_sequence_number(self, address: str) -> int | None:
        """Confirmed nonce (number of mined outgoing transactions)."""
        ...

    async def submit_transfer(self, signed: SignedTransfer) -> str:
        """Broadcast a signed transfer, returns its hash."""
        ...

    async def get_transaction_outcome(self, tx_hash: str) -> TransactionOutcome:
        """Receipt status and confirmations."""
        ...

    async def close(self) -> None:
        """Release connections and threads."""
        ...


def decode_memo(data: bytes | str | None) -> str | None:
    """
    Decode transaction input data as a text memo.

    Args:
        data: Raw input (bytes or 0x-hex string)

    Returns:
        Memo text, or None for empty or non-text input (contract calls)
    """
    if data is None:
        return None

    if isinstance(data, str):
        hex_part = data[2:] if data.startswith(("0x", "0X")) else data
        try:
            raw = bytes.fromhex(hex_part)
        except ValueError:
            return None
    else:
        raw = bytes(data)

    if not raw:
        return None

    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        return None

    text = text.strip("\x00").strip()
    if not text or not text.isprintable():
        return None
    return text
