"""
Chain cursor model.

Tracks the last fully processed block so a restart resumes the scan
instead of starting over.
"""

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from custody.models.base import Base


class ChainCursor(Base):
    """
    Persisted block pointer.

    Used to:
    - Resume scanning after restart
    - Track scan errors for monitoring
    """

    __tablename__ = "chain_cursors"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Cursor identification
    name: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True, index=True
    )

    last_processed_block: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )

    # Error tracking
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

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
