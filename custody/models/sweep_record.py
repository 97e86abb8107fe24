"""
Sweep record models.

SweepRecord holds the durable sweep state per idempotency key.
SweepStatusEvent is the append-only audit trail of every transition.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from custody.models.base import Base
from custody.models.enums import SweepStatus
from custody.models.types import WeiType


class SweepRecord(Base):
    """Current sweep state for one idempotency key."""

    __tablename__ = "sweep_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    idempotency_key: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True
    )
    custodial_account_id: Mapped[int] = mapped_column(
        ForeignKey("custodial_accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=SweepStatus.INITIATED, index=True
    )
    amount_wei: Mapped[Decimal | None] = mapped_column(WeiType, nullable=True)
    tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

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
    def sweep_status(self) -> SweepStatus:
        """Status as enum."""
        return SweepStatus(self.status)


class SweepStatusEvent(Base):
    """Immutable audit row for a sweep transition."""

    __tablename__ = "sweep_status_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    idempotency_key: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    custodial_account_id: Mapped[int] = mapped_column(
        ForeignKey("custodial_accounts.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount_wei: Mapped[Decimal | None] = mapped_column(WeiType, nullable=True)
    tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
