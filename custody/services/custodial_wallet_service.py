"""
Custodial wallet service.

Generates per-user deposit accounts and signs sweep transfers with their
keys. Keys are Fernet-encrypted at rest and only decrypted for the duration
of a signature.
"""

from typing import Any

from eth_account import Account
from eth_utils import to_checksum_address, to_hex
from loguru import logger

from custody.config.constants import SWEEP_GAS_LIMIT, SWEEP_GAS_PRICE_WEI
from custody.models.custodial_account import CustodialAccount
from custody.repositories.custodial_account_repository import (
    CustodialAccountRepository,
)
from custody.repositories.user_repository import UserRepository
from custody.services.ledger.client import SignedTransfer
from custody.utils.encryption import EncryptionService
from custody.utils.exceptions import SecurityError, SigningError, UserNotFoundError
from custody.utils.security import mask_address


class CustodialWalletService:
    """Custodial key management and signing."""

    def __init__(
        self,
        session_factory: Any,
        encryption: EncryptionService,
        chain_id: int,
        gas_limit: int = SWEEP_GAS_LIMIT,
        gas_price_wei: int = SWEEP_GAS_PRICE_WEI,
    ) -> None:
        """
        Initialize wallet service.

        Args:
            session_factory: Async session factory
            encryption: Encryption service for keys at rest
            chain_id: EIP-155 chain id used when signing
            gas_limit: Gas limit of a sweep transfer
            gas_price_wei: Gas price of a sweep transfer
        """
        self.session_factory = session_factory
        self.encryption = encryption
        self.chain_id = chain_id
        self.gas_limit = gas_limit
        self.gas_price_wei = gas_price_wei

    @property
    def max_fee_wei(self) -> int:
        """Fee of a sweep at the configured gas."""
        return self.gas_limit * self.gas_price_wei

    def generate_keypair(self) -> tuple[str, str]:
        """
        Generate a new account.

        Returns:
            Tuple of (lower-case address, encrypted private key)
        """
        account = Account.create()
        encrypted = self.encryption.encrypt(account.key.hex())
        return account.address.lower(), encrypted

    async def ensure_account(self, user_id: int) -> tuple[CustodialAccount, bool]:
        """
        Get the user's custodial account, creating it on first use.

        Concurrent first calls for the same user all return the same
        account; losing racers discard their generated key.

        Args:
            user_id: User ID

        Returns:
            Tuple of (account, created)

        Raises:
            UserNotFoundError: If user does not exist
        """
        async with self.session_factory() as session:
            repo = CustodialAccountRepository(session)
            existing = await repo.get_by_user_id(user_id)
            if existing is not None:
                return existing, False

            if await UserRepository(session).get_by_id(user_id) is None:
                raise UserNotFoundError(f"User {user_id} not found")

            address, encrypted_key = self.generate_keypair()
            account = await repo.create_if_absent(user_id, address, encrypted_key)
            await session.commit()

        created = account.address == address
        if created:
            logger.success(
                f"[Wallet] Created custodial account {mask_address(address)} "
                f"for user {user_id}"
            )
        return account, created

    def sign_transfer(
        self,
        account: CustodialAccount,
        to_address: str,
        value_wei: int,
        nonce: int,
        memo: str | None = None,
    ) -> SignedTransfer:
        """
        Sign a native transfer from a custodial account.

        Args:
            account: Source custodial account
            to_address: Recipient
            value_wei: Value to send
            nonce: Account nonce
            memo: Text written into the input data

        Returns:
            SignedTransfer

        Raises:
            SigningError: If the key cannot be decrypted or does not match
        """
        try:
            private_key = self.encryption.decrypt(account.encrypted_private_key)
            signer = Account.from_key(private_key)
        except (SecurityError, ValueError) as e:
            raise SigningError(
                f"Cannot load key for {mask_address(account.address)}: "
                f"{type(e).__name__}"
            ) from e
        finally:
            private_key = None

        if signer.address.lower() != account.address.lower():
            raise SigningError(
                f"Decrypted key does not match {mask_address(account.address)}"
            )

        tx = {
            "to": to_checksum_address(to_address),
            "value": value_wei,
            "gas": self.gas_limit,
            "gasPrice": self.gas_price_wei,
            "nonce": nonce,
            "chainId": self.chain_id,
        }
        if memo:
            tx["data"] = "0x" + memo.encode("utf-8").hex()

        try:
            signed = signer.sign_transaction(tx)
        except (TypeError, ValueError) as e:
            raise SigningError(f"Signing failed: {e}") from e

        return SignedTransfer(
            tx_hash=to_hex(signed.hash).lower(),
            raw_transaction=bytes(signed.rawTransaction),
            from_address=account.address.lower(),
            to_address=to_address.lower(),
            value_wei=value_wei,
            nonce=nonce,
        )
