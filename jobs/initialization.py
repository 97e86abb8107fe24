"""
Worker initialization.

Logging, environment checks and service wiring for the worker process and
the dramatiq jobs.
"""

import sys
from typing import Any

from loguru import logger
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from custody.config.settings import Settings, settings
from custody.services.container import DepositServices, build_deposit_services
from custody.services.ledger import init_ledger_client
from custody.utils.encryption import init_encryption_service


def setup_logging(log_file: str = "logs/custody.log") -> None:
    """Configure logger with file rotation."""
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)
    logger.add(
        log_file,
        rotation="1 day",
        retention="7 days",
        level=settings.log_level,
        encoding="utf-8",
    )


def validate_environment(config: Settings = settings) -> None:
    """Warn about settings that make the worker useless or unsafe."""
    if "your_" in config.rpc_url.lower():
        logger.error("RPC_URL is not properly configured")
    if not config.explorer_api_key:
        logger.warning(
            "EXPLORER_API_KEY is not set, explorer lookups will be rate limited"
        )
    if config.ticket_price_wei == 0:
        logger.warning("TICKET_PRICE_WEI is 0, deposit value is not checked")
    if config.environment != "production" and not config.encryption_key:
        logger.warning("ENCRYPTION_KEY not set, custodial keys stored in plaintext (DEV ONLY)")


def create_task_engine() -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Create an engine and session maker for one dramatiq task run.

    NullPool keeps connections from leaking across the per-thread event
    loops of the dramatiq workers.
    """
    engine = create_async_engine(settings.database_url, echo=False, poolclass=NullPool)
    session_maker = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return engine, session_maker


def initialize_services(
    session_factory: Any,
    config: Settings = settings,
    with_coordinator: bool = True,
) -> DepositServices:
    """
    Initialize encryption, ledger client and the deposit service graph.

    Args:
        session_factory: Async session factory
        config: Application settings
        with_coordinator: Build the worker graph (scanner + coordinator)

    Returns:
        DepositServices
    """
    encryption = init_encryption_service(
        config.encryption_key, environment=config.environment
    )
    ledger = init_ledger_client(config)
    services = build_deposit_services(
        config,
        session_factory,
        ledger,
        encryption,
        with_coordinator=with_coordinator,
    )
    logger.info(
        f"Deposit services initialized (chain_id={config.chain_id}, "
        f"coordinator={'on' if with_coordinator else 'off'})"
    )
    return services
