"""
Unprocessed transaction model.

Transactions whose dispatch failed while their block was scanned. The
cursor moves past the block; these rows are drained independently.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from custody.models.base import Base


class UnprocessedTransaction(Base):
    """Parked transaction awaiting another dispatch attempt."""

    __tablename__ = "unprocessed_transactions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    tx_hash: Mapped[str] = mapped_column(
        String(66), nullable=False, unique=True, index=True
    )

    # Serialized ChainTransaction
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    abandoned: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, index=True
    )

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
