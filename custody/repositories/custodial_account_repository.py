"""
Custodial account repository.

Data access layer for CustodialAccount model.
"""

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from custody.models.custodial_account import CustodialAccount
from custody.repositories.base import BaseRepository
from custody.utils.datetime_utils import utc_now


class CustodialAccountRepository(BaseRepository[CustodialAccount]):
    """Custodial account repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(CustodialAccount, session)

    async def get_by_user_id(self, user_id: int) -> CustodialAccount | None:
        """Get the custodial account of a user."""
        return await self.get_by(user_id=user_id)

    async def get_by_address(self, address: str) -> CustodialAccount | None:
        """
        Get account by deposit address.

        Args:
            address: Address (any case)

        Returns:
            CustodialAccount or None
        """
        if not address:
            return None
        return await self.get_by(address=address.lower())

    async def create_if_absent(
        self,
        user_id: int,
        address: str,
        encrypted_private_key: str,
    ) -> CustodialAccount:
        """
        Create the user's account unless one already exists.

        Concurrent callers for the same user race on the unique user_id;
        every caller gets the single surviving row.

        Args:
            user_id: Owner
            address: Freshly generated address
            encrypted_private_key: Fernet token of the key

        Returns:
            The user's custodial account
        """
        await self.insert_if_absent(
            user_id=user_id,
            address=address.lower(),
            encrypted_private_key=encrypted_private_key,
            created_at=utc_now(),
        )
        account = await self.get_by_user_id(user_id)
        if account is None:  # pragma: no cover - row was just written
            raise RuntimeError(f"Custodial account for user {user_id} vanished")
        return account

    async def set_last_sweep(
        self,
        account_id: int,
        status: str,
        idempotency_key: str,
        reason: str | None = None,
    ) -> None:
        """
        Update the account's last sweep record.

        Args:
            account_id: Custodial account ID
            status: Sweep status
            idempotency_key: Deposit key the sweep belongs to
            reason: Failure reason, if any
        """
        stmt = (
            update(CustodialAccount)
            .where(CustodialAccount.id == account_id)
            .values(
                last_sweep_status=status,
                last_sweep_key=idempotency_key,
                last_sweep_reason=reason,
                last_sweep_at=utc_now(),
            )
        )
        await self.session.execute(stmt)
