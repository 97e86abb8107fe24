"""
User model.

Registered users are created by the bot layer; this package only reads them
and increments their ticket balance through the credit ledger.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from custody.models.base import Base

if TYPE_CHECKING:
    from custody.models.custodial_account import CustodialAccount


class User(Base):
    """User model - ticket balance holder."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            'ticket_balance >= 0', name='check_user_ticket_balance_non_negative'
        ),
    )

    # Primary key
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )

    # Telegram data
    telegram_id: Mapped[int] = mapped_column(
        BigInteger, unique=True, index=True, nullable=False
    )
    username: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )

    # Balance (mutated only by the credit ledger)
    ticket_balance: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    custodial_account: Mapped[Optional["CustodialAccount"]] = relationship(
        "CustodialAccount", back_populates="user", uselist=False, lazy="raise"
    )

    def __repr__(self) -> str:
        return (
            f"<User(id={self.id}, telegram_id={self.telegram_id}, "
            f"ticket_balance={self.ticket_balance})>"
        )
