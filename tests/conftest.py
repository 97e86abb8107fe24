"""Pytest configuration and shared fixtures for all tests."""

import os
import sys
from pathlib import Path

from cryptography.fernet import Fernet

# Minimal environment for Settings() at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./custody_test.db")
os.environ.setdefault("RPC_URL", "http://localhost:8545")
os.environ.setdefault("EXPLORER_API_URL", "http://localhost:8080/api")
os.environ.setdefault("OPERATING_WALLET_ADDRESS", "0x742d35cc6634c0532925a3b844bc9e7595f0beb0")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("LOG_LEVEL", "DEBUG")

# Add project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import time
from itertools import count

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from custody.config.constants import SWEEP_GAS_LIMIT, SWEEP_GAS_PRICE_WEI
from custody.config.settings import settings
from custody.models import Base, User
from custody.services.custodial_wallet_service import CustodialWalletService
from custody.services.ledger.client import (
    ChainTransaction,
    SignedTransfer,
    TransactionOutcome,
)
from custody.utils.encryption import EncryptionService
from custody.utils.exceptions import LedgerUnavailableError

_tx_counter = count(1)


def make_tx_hash() -> str:
    """Unique fake transaction hash."""
    return "0x" + f"{next(_tx_counter):064x}"


class FakeLedger:
    """
    In-memory ledger.

    Deposits land in the next block and in the recipient's history with
    enough confirmations; submitted sweeps are mined immediately.
    """

    def __init__(self, fee_wei: int = SWEEP_GAS_LIMIT * SWEEP_GAS_PRICE_WEI) -> None:
        self.height = 100
        self.fee_wei = fee_wei
        self.blocks: dict[int, list[ChainTransaction]] = {}
        self.history: dict[str, list[ChainTransaction]] = {}
        self.balances: dict[str, int] = {}
        self.nonces: dict[str, int] = {}
        self.outcomes: dict[str, TransactionOutcome] = {}
        self.submitted: list[SignedTransfer] = []
        self.auto_mine = True
        self.closed = False

    def deliver(
        self,
        to_address: str,
        value_wei: int,
        memo: str | None,
        from_address: str = "0x" + "11" * 20,
        tx_hash: str | None = None,
        timestamp: int | None = None,
    ) -> ChainTransaction:
        """Mine an incoming transfer in a new block."""
        self.height += 1
        tx = ChainTransaction(
            tx_hash=tx_hash or make_tx_hash(),
            block_number=self.height,
            from_address=from_address,
            to_address=to_address.lower(),
            value_wei=value_wei,
            memo=memo,
            timestamp=timestamp if timestamp is not None else int(time.time()),
            success=True,
        )
        self.blocks.setdefault(self.height, []).append(tx)
        self.history.setdefault(tx.to_address, []).insert(0, tx)
        self.balances[tx.to_address] = self.balances.get(tx.to_address, 0) + value_wei
        self.outcomes[tx.tx_hash] = TransactionOutcome(
            found=True, success=True, confirmations=10, block_number=self.height
        )
        return tx

    async def get_chain_height(self) -> int:
        return self.height

    async def get_block_transactions(self, height: int) -> list[ChainTransaction]:
        return list(self.blocks.get(height, []))

    async def get_account_transactions(
        self, address: str, limit: int
    ) -> list[ChainTransaction]:
        return list(self.history.get(address.lower(), []))[:limit]

    async def get_balance(self, address: str) -> int:
        return self.balances.get(address.lower(), 0)

    async def get_sequence_number(self, address: str) -> int | None:
        return self.nonces.get(address.lower())

    async def submit_transfer(self, signed: SignedTransfer) -> str:
        self.submitted.append(signed)
        if self.auto_mine:
            source = signed.from_address.lower()
            self.balances[source] = self.balances.get(source, 0) - signed.value_wei - self.fee_wei
            self.balances[signed.to_address] = (
                self.balances.get(signed.to_address, 0) + signed.value_wei
            )
            self.nonces[source] = self.nonces.get(source, 0) + 1
            self.height += 1
            self.outcomes[signed.tx_hash] = TransactionOutcome(
                found=True, success=True, confirmations=1, block_number=self.height
            )
        return signed.tx_hash

    async def get_transaction_outcome(self, tx_hash: str) -> TransactionOutcome:
        return self.outcomes.get(tx_hash, TransactionOutcome(found=False))

    async def close(self) -> None:
        self.closed = True


class FlakyLedger(FakeLedger):
    """FakeLedger whose block fetches fail for the listed heights."""

    def __init__(self) -> None:
        super().__init__()
        self.failing_blocks: set[int] = set()

    async def get_block_transactions(self, height: int) -> list[ChainTransaction]:
        if height in self.failing_blocks:
            raise LedgerUnavailableError(f"get_block({height}) failed: timeout")
        return await super().get_block_transactions(height)


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite engine with all tables created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'custody.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Session factory bound to the test engine."""
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def create_user(session_factory):
    """Factory creating a user with an optional starting balance."""
    telegram_ids = count(1_000_000)

    async def _create(ticket_balance: int = 0) -> int:
        async with session_factory() as session:
            user = User(telegram_id=next(telegram_ids), ticket_balance=ticket_balance)
            session.add(user)
            await session.commit()
            return user.id

    return _create


@pytest.fixture
def encryption():
    """Encryption service with a fresh key."""
    return EncryptionService(Fernet.generate_key().decode(), environment="development")


@pytest.fixture
def wallet(session_factory, encryption):
    """Custodial wallet service signing for chain 56."""
    return CustodialWalletService(session_factory, encryption, chain_id=56)


@pytest.fixture
def ledger():
    """In-memory ledger."""
    return FakeLedger()


@pytest.fixture
def flaky_ledger():
    """In-memory ledger with failing block fetches."""
    return FlakyLedger()


@pytest.fixture
def test_settings():
    """Settings with zero delays and small budgets."""
    return settings.model_copy(
        update={
            "verifier_initial_delay": 0,
            "verifier_retry_delay": 0,
            "verifier_max_attempts": 2,
            "sweep_confirm_delay": 0,
            "sweep_confirm_attempts": 2,
            "reconcile_min_age_seconds": 0,
            "ticket_price_wei": 0,
        }
    )
