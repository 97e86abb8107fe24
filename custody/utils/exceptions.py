"""
Exception types.

Categorized by handling strategy:
- Transient: retry later, never reported as a final failure
- Fatal: surfaced to the caller, never retried
- Lookup: the referenced entity does not exist
"""

from sqlalchemy.exc import OperationalError


class CustodyError(Exception):
    """Base class for custody errors."""
    pass


class SecurityError(CustodyError):
    """Raised when a security-critical operation fails."""
    pass


class LedgerUnavailableError(CustodyError):
    """Ledger RPC or explorer call failed (transient)."""
    pass


class SigningError(CustodyError):
    """Custodial key could not be decrypted or used for signing (fatal)."""
    pass


class UserNotFoundError(CustodyError):
    """User does not exist."""
    pass


class CustodialAccountNotFoundError(CustodyError):
    """No custodial account for the user or address."""
    pass


# Retry with delay, never surface as final failure
TRANSIENT = (
    LedgerUnavailableError,
    OperationalError,  # Database connectivity
    TimeoutError,
    ConnectionError,
)

# Surface to the caller, no retry
FATAL = (
    SigningError,
    SecurityError,
)


def is_transient(exc: BaseException) -> bool:
    """
    Check if exception is transient and the operation may be retried.

    Args:
        exc: Exception to check

    Returns:
        True if exception is transient
    """
    return isinstance(exc, TRANSIENT)


def is_fatal(exc: BaseException) -> bool:
    """
    Check if exception is fatal.

    Args:
        exc: Exception to check

    Returns:
        True if exception must be surfaced without retry
    """
    return isinstance(exc, FATAL)
