"""
Deposit record model.

One row per purchase intent, keyed by the idempotency key from the memo
(not the chain transaction hash, a user may retry the same purchase).
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from custody.models.base import Base
from custody.models.enums import DepositSource, DepositStatus
from custody.models.types import WeiType


class DepositRecord(Base):
    """Deposit record - status moves forward only, never re-created."""

    __tablename__ = "deposit_records"
    __table_args__ = (
        CheckConstraint(
            'amount_requested > 0', name='check_deposit_record_amount_positive'
        ),
        Index('idx_deposit_record_status_created', 'status', 'created_at'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    idempotency_key: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    custodial_account_id: Mapped[int] = mapped_column(
        ForeignKey("custodial_accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Tickets requested by the memo
    amount_requested: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=DepositStatus.PENDING, index=True
    )
    source: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DepositSource.CHAIN
    )

    # Blockchain data (unknown until discovered)
    chain_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    value_wei: Mapped[Decimal | None] = mapped_column(WeiType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    @property
    def deposit_status(self) -> DepositStatus:
        """Status as enum."""
        return DepositStatus(self.status)

    def __repr__(self) -> str:
        return (
            f"<DepositRecord(id={self.id}, key={self.idempotency_key}, "
            f"status={self.status}, amount={self.amount_requested})>"
        )
