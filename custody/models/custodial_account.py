"""
Custodial account model.

Per-user holding address whose private key is held by the system.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from custody.models.base import Base

if TYPE_CHECKING:
    from custody.models.user import User


class CustodialAccount(Base):
    """
    Custodial deposit account.

    Exactly one per user, created lazily on the first deposit address
    request. Immutable after creation except for the last sweep fields.
    """

    __tablename__ = "custodial_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    # Lower-case hex address
    address: Mapped[str] = mapped_column(
        String(42), nullable=False, unique=True, index=True
    )

    # Fernet-encrypted private key
    encrypted_private_key: Mapped[str] = mapped_column(Text, nullable=False)

    # Last sweep status record
    last_sweep_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    last_sweep_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_sweep_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_sweep_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    user: Mapped["User"] = relationship(
        "User", back_populates="custodial_account", lazy="raise"
    )

    def __repr__(self) -> str:
        return f"<CustodialAccount(id={self.id}, user_id={self.user_id}, address={self.address})>"
