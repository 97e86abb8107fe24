"""
Deposit memo parser.

A purchase memo has the form "<tag>:<amount>:<idempotency_key>", for
example "buy:5:a1b2c3". Parsing never raises: anything else is reported as
an UnrecognizedMemo with the reason.
"""

import re
from dataclasses import dataclass

from custody.config.constants import DEPOSIT_MEMO_TAGS, IDEMPOTENCY_KEY_MAX_LENGTH


MEMO_SEPARATOR = ":"

IDEMPOTENCY_KEY_PATTERN = re.compile(
    rf"^[A-Za-z0-9_-]{{1,{IDEMPOTENCY_KEY_MAX_LENGTH}}}$"
)


@dataclass(frozen=True)
class RecognizedMemo:
    """Well-formed purchase memo."""

    tag: str
    amount: int
    key: str


@dataclass(frozen=True)
class UnrecognizedMemo:
    """Anything that is not a purchase memo."""

    reason: str


ParsedMemo = RecognizedMemo | UnrecognizedMemo


def required_value_wei(amount: int, ticket_price_wei: int) -> int:
    """Minimum transfer value for `amount` tickets (0 when pricing is off)."""
    return amount * ticket_price_wei if ticket_price_wei > 0 else 0


def covers_ticket_price(memo: RecognizedMemo, value_wei: int, ticket_price_wei: int) -> bool:
    """True if the transfer value pays for the tickets in the memo."""
    return value_wei >= required_value_wei(memo.amount, ticket_price_wei)


def is_valid_idempotency_key(key: str | None) -> bool:
    """Check key charset and length."""
    return bool(key) and IDEMPOTENCY_KEY_PATTERN.match(key) is not None


def parse_memo(
    text: str | None,
    tags: tuple[str, ...] = DEPOSIT_MEMO_TAGS,
) -> ParsedMemo:
    """
    Parse a deposit memo.

    Args:
        text: Memo text (may be None or arbitrary bytes decoded as text)
        tags: Recognized tags, lower-case

    Returns:
        RecognizedMemo or UnrecognizedMemo
    """
    if not text or not text.strip():
        return UnrecognizedMemo("empty memo")

    parts = text.strip().split(MEMO_SEPARATOR)
    if len(parts) != 3:
        return UnrecognizedMemo(f"expected 3 fields, got {len(parts)}")

    tag, raw_amount, key = (part.strip() for part in parts)

    if tag.lower() not in tags:
        return UnrecognizedMemo(f"unknown tag {tag[:16]!r}")

    # isdecimal() rejects signs, spaces and unicode digits int() would accept
    if not raw_amount.isascii() or not raw_amount.isdecimal():
        return UnrecognizedMemo(f"non-numeric amount {raw_amount[:16]!r}")

    amount = int(raw_amount)
    if amount <= 0:
        return UnrecognizedMemo("amount must be positive")

    if not is_valid_idempotency_key(key):
        return UnrecognizedMemo("invalid idempotency key")

    return RecognizedMemo(tag=tag.lower(), amount=amount, key=key)


def build_sweep_memo(idempotency_key: str, tag: str) -> str:
    """Memo written on a sweep transfer."""
    return f"{tag}{MEMO_SEPARATOR}{idempotency_key}"
