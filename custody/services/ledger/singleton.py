"""
Singleton access to the ledger client.
"""

from custody.config.settings import Settings

from .web3_client import Web3LedgerClient


_ledger_client: Web3LedgerClient | None = None


def get_ledger_client() -> Web3LedgerClient:
    """
    Get the singleton ledger client.

    Raises:
        RuntimeError: If client not initialized
    """
    if _ledger_client is None:
        raise RuntimeError("LedgerClient not initialized")
    return _ledger_client


def init_ledger_client(settings: Settings) -> Web3LedgerClient:
    """
    Initialize the singleton ledger client.

    Args:
        settings: Application settings
    """
    global _ledger_client
    _ledger_client = Web3LedgerClient(
        rpc_url=settings.rpc_url,
        explorer_api_url=settings.explorer_api_url,
        explorer_api_key=settings.explorer_api_key,
        executor_timeout=settings.ledger_executor_timeout,
        http_timeout=settings.ledger_http_timeout,
    )
    return _ledger_client
