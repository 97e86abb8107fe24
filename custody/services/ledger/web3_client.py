"""
Web3 ledger client.

JSON-RPC (web3, run in a thread pool) for blocks, balances, nonces,
receipts and raw submission; an Etherscan-compatible explorer API (aiohttp)
for account history, which plain JSON-RPC cannot list.
"""

import asyncio
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

import aiohttp
from eth_utils import to_checksum_address, to_hex
from loguru import logger
from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception
from web3.middleware import geth_poa_middleware

from custody.config.constants import (
    LEDGER_EXECUTOR_TIMEOUT,
    LEDGER_EXECUTOR_WORKERS,
    LEDGER_HTTP_TIMEOUT,
)
from custody.utils.exceptions import LedgerUnavailableError
from custody.utils.security import mask_address, mask_tx_hash

from .client import ChainTransaction, SignedTransfer, TransactionOutcome, decode_memo


T = TypeVar("T")

# Node errors meaning the exact same transaction is already in the mempool
ALREADY_KNOWN_ERRORS = ("already known", "known transaction")

# Explorer "empty result" message (status "0" but not an error)
EXPLORER_NO_RESULTS = "No transactions found"

RPC_ERRORS = (
    TimeoutError,
    ConnectionError,
    RequestException,
    Web3Exception,
    ValueError,
)


def _normalize_address(address: Any) -> str | None:
    """Lower-case hex address or None (contract creation)."""
    if not address:
        return None
    return str(address).lower()


class Web3LedgerClient:
    """
    LedgerClient over web3.py and an explorer API.

    All blocking web3 calls go through _call(), which bounds them with
    LEDGER_EXECUTOR_TIMEOUT and converts failures to LedgerUnavailableError.
    """

    def __init__(
        self,
        rpc_url: str,
        explorer_api_url: str | None = None,
        explorer_api_key: str | None = None,
        executor_timeout: float = LEDGER_EXECUTOR_TIMEOUT,
        http_timeout: int = LEDGER_HTTP_TIMEOUT,
        max_workers: int = LEDGER_EXECUTOR_WORKERS,
        w3: Web3 | None = None,
    ) -> None:
        """
        Initialize ledger client.

        Args:
            rpc_url: JSON-RPC endpoint
            explorer_api_url: Etherscan-compatible API base URL
            explorer_api_key: Explorer API key
            executor_timeout: Timeout per web3 call (seconds)
            http_timeout: HTTP timeout (seconds)
            max_workers: Thread pool size
            w3: Preconfigured Web3 instance (tests)
        """
        if w3 is None:
            w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": http_timeout}))
            # BSC and other PoA chains carry long extraData
            w3.middleware_onion.inject(geth_poa_middleware, layer=0)
        self.w3 = w3

        self.explorer_api_url = explorer_api_url
        self.explorer_api_key = explorer_api_key
        self.executor_timeout = executor_timeout
        self.http_timeout = http_timeout

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="web3",
        )
        self._session: aiohttp.ClientSession | None = None

    async def _call(self, operation: str, func: Callable[[], T]) -> T:
        """
        Run a synchronous web3 call in the thread pool.

        Args:
            operation: Name for logs and errors
            func: Zero-argument callable doing the RPC

        Returns:
            Result of func

        Raises:
            LedgerUnavailableError: On timeout or node/transport error
        """
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._executor, func),
                timeout=self.executor_timeout,
            )
        except TransactionNotFound:
            raise
        except RPC_ERRORS as e:
            logger.warning(f"[Ledger] {operation} failed: {type(e).__name__}: {e}")
            raise LedgerUnavailableError(f"{operation} failed: {e}") from e

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.http_timeout)
            )
        return self._session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_chain_height(self) -> int:
        """Get current block number."""
        return await self._call("get_chain_height", lambda: self.w3.eth.block_number)

    async def get_block_transactions(self, height: int) -> list[ChainTransaction]:
        """
        Get all transactions of a block.

        Args:
            height: Block number

        Returns:
            Transactions in block order
        """
        block = await self._call(
            f"get_block({height})",
            lambda: self.w3.eth.get_block(height, full_transactions=True),
        )

        timestamp = int(block.get("timestamp", 0)) or None
        transactions = []
        for tx in block.get("transactions", []):
            transactions.append(
                ChainTransaction(
                    tx_hash=to_hex(tx["hash"]).lower(),
                    block_number=height,
                    from_address=_normalize_address(tx.get("from")),
                    to_address=_normalize_address(tx.get("to")),
                    value_wei=int(tx.get("value", 0)),
                    memo=decode_memo(tx.get("input")),
                    timestamp=timestamp,
                )
            )
        return transactions

    async def get_account_transactions(
        self, address: str, limit: int
    ) -> list[ChainTransaction]:
        """
        Get recent transactions of an address from the explorer.

        Args:
            address: Account address
            limit: Max transactions

        Returns:
            Transactions, newest first

        Raises:
            LedgerUnavailableError: If the explorer is unreachable or errors
        """
        if not self.explorer_api_url:
            raise LedgerUnavailableError("Explorer API URL not configured")

        params = {
            "module": "account",
            "action": "txlist",
            "address": address.lower(),
            "startblock": "0",
            "endblock": "99999999",
            "page": "1",
            "offset": str(limit),
            "sort": "desc",
        }
        if self.explorer_api_key:
            params["apikey"] = self.explorer_api_key

        try:
            session = await self._get_session()
            async with session.get(self.explorer_api_url, params=params) as response:
                if response.status != 200:
                    raise LedgerUnavailableError(
                        f"Explorer HTTP {response.status} for {mask_address(address)}"
                    )
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.warning(f"[Ledger] Explorer request failed: {type(e).__name__}: {e}")
            raise LedgerUnavailableError(f"Explorer request failed: {e}") from e

        result = data.get("result")
        if data.get("status") != "1":
            if data.get("message", "").startswith(EXPLORER_NO_RESULTS) or result == []:
                return []
            raise LedgerUnavailableError(
                f"Explorer error: {data.get('message')} ({result})"
            )
        if not isinstance(result, list):
            raise LedgerUnavailableError(f"Unexpected explorer result: {result!r}")

        return [self._parse_explorer_tx(item) for item in result[:limit]]

    @staticmethod
    def _parse_explorer_tx(item: dict[str, Any]) -> ChainTransaction:
        """Convert an explorer txlist row."""
        is_error = item.get("isError") == "1"
        receipt_status = item.get("txreceipt_status")
        success = not is_error and receipt_status in (None, "", "1")

        return ChainTransaction(
            tx_hash=str(item["hash"]).lower(),
            block_number=int(item.get("blockNumber") or 0),
            from_address=_normalize_address(item.get("from")),
            to_address=_normalize_address(item.get("to")),
            value_wei=int(item.get("value") or 0),
            memo=decode_memo(item.get("input")),
            timestamp=int(item["timeStamp"]) if item.get("timeStamp") else None,
            success=success,
        )

    async def get_balance(self, address: str) -> int:
        """Get confirmed native balance in wei."""
        checksum = to_checksum_address(address)
        return int(
            await self._call(
                f"get_balance({mask_address(address)})",
                lambda: self.w3.eth.get_balance(checksum, "latest"),
            )
        )

    async def get_sequence_number(self, address: str) -> int | None:
        """
        Get confirmed nonce.

        Pending transactions are deliberately ignored: two sweeps racing for
        the same account collide on this nonce and at most one is mined.
        """
        checksum = to_checksum_address(address)
        return await self._call(
            f"get_transaction_count({mask_address(address)})",
            lambda: self.w3.eth.get_transaction_count(checksum, "latest"),
        )

    async def get_transaction_outcome(self, tx_hash: str) -> TransactionOutcome:
        """
        Corroborate a transaction with its receipt.

        Args:
            tx_hash: Transaction hash

        Returns:
            TransactionOutcome (found=False while not mined)
        """
        try:
            receipt = await self._call(
                f"get_transaction_receipt({mask_tx_hash(tx_hash)})",
                lambda: self.w3.eth.get_transaction_receipt(tx_hash),
            )
        except TransactionNotFound:
            return TransactionOutcome(found=False)

        if receipt is None:
            return TransactionOutcome(found=False)

        block_number = int(receipt["blockNumber"])
        height = await self.get_chain_height()

        return TransactionOutcome(
            found=True,
            success=int(receipt.get("status", 0)) == 1,
            confirmations=max(0, height - block_number + 1),
            block_number=block_number,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def submit_transfer(self, signed: SignedTransfer) -> str:
        """
        Broadcast a signed transfer.

        Resubmitting a transaction already in the mempool is not an error.

        Returns:
            Transaction hash
        """
        try:
            tx_hash = await self._call(
                f"send_raw_transaction({mask_tx_hash(signed.tx_hash)})",
                lambda: self.w3.eth.send_raw_transaction(signed.raw_transaction),
            )
        except LedgerUnavailableError as e:
            if any(marker in str(e).lower() for marker in ALREADY_KNOWN_ERRORS):
                logger.info(
                    f"[Ledger] Transaction {mask_tx_hash(signed.tx_hash)} already known"
                )
                return signed.tx_hash
            raise

        return to_hex(tx_hash).lower()

    async def close(self) -> None:
        """Close HTTP session and thread pool."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._executor.shutdown(wait=False)
