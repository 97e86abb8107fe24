"""
Application settings.

Loads configuration from environment variables using pydantic-settings.
"""

from loguru import logger
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from custody.config.constants import (
    ACCOUNT_HISTORY_LIMIT,
    COORDINATOR_MAX_CONCURRENT_DEPOSITS,
    COORDINATOR_QUEUE_SIZE,
    DEPOSIT_MEMO_TAGS,
    LEDGER_EXECUTOR_TIMEOUT,
    LEDGER_HTTP_TIMEOUT,
    RECONCILE_BATCH_SIZE,
    RECONCILE_INTERVAL_SECONDS,
    RECONCILE_MAX_AGE_SECONDS,
    RECONCILE_MIN_AGE_SECONDS,
    RECONCILE_SWEEP_RETRY_SECONDS,
    SCANNER_TICK_SECONDS,
    SWEEP_CONFIRM_ATTEMPTS,
    SWEEP_CONFIRM_DELAY_SECONDS,
    SWEEP_DUST_THRESHOLD_WEI,
    SWEEP_FEE_RESERVE_WEI,
    SWEEP_GAS_LIMIT,
    SWEEP_GAS_PRICE_WEI,
    SWEEP_MIN_TRANSFER_WEI,
    UNPROCESSED_DRAIN_BATCH,
    UNPROCESSED_MAX_ATTEMPTS,
    VERIFIER_INITIAL_DELAY_SECONDS,
    VERIFIER_MAX_ATTEMPTS,
    VERIFIER_MIN_CONFIRMATIONS,
    VERIFIER_RETRY_DELAY_SECONDS,
    VERIFIER_STALENESS_SECONDS,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str
    database_echo: bool = False

    # Ledger (EVM JSON-RPC + Etherscan-compatible explorer)
    rpc_url: str
    chain_id: int = Field(default=56, gt=0, description="EIP-155 chain id")
    explorer_api_url: str = "https://api.bscscan.com/api"
    explorer_api_key: str | None = None
    ledger_http_timeout: int = Field(default=LEDGER_HTTP_TIMEOUT, gt=0)
    ledger_executor_timeout: float = Field(default=LEDGER_EXECUTOR_TIMEOUT, gt=0)
    account_history_limit: int = Field(default=ACCOUNT_HISTORY_LIMIT, ge=1, le=10_000)

    # Operating account receiving all sweeps
    operating_wallet_address: str

    # Deposit memo "<tag>:<amount>:<key>"
    deposit_memo_tags: str = ",".join(DEPOSIT_MEMO_TAGS)  # Comma-separated list
    ticket_price_wei: int = Field(
        default=0,
        ge=0,
        description="Minimum value per ticket; 0 disables the value check"
    )

    # Chain scanner
    scanner_tick_seconds: float = Field(default=SCANNER_TICK_SECONDS, gt=0)
    scanner_start_block: int | None = Field(
        default=None,
        ge=0,
        description="First block to scan when no cursor is persisted"
    )
    unprocessed_drain_batch: int = Field(default=UNPROCESSED_DRAIN_BATCH, ge=1)
    unprocessed_max_attempts: int = Field(default=UNPROCESSED_MAX_ATTEMPTS, ge=1)

    # Transaction verifier
    verifier_initial_delay: float = Field(default=VERIFIER_INITIAL_DELAY_SECONDS, ge=0)
    verifier_retry_delay: float = Field(default=VERIFIER_RETRY_DELAY_SECONDS, ge=0)
    verifier_max_attempts: int = Field(default=VERIFIER_MAX_ATTEMPTS, ge=1)
    verifier_staleness_seconds: int = Field(default=VERIFIER_STALENESS_SECONDS, gt=0)
    verifier_min_confirmations: int = Field(default=VERIFIER_MIN_CONFIRMATIONS, ge=1)

    # Sweep engine
    sweep_gas_limit: int = Field(default=SWEEP_GAS_LIMIT, ge=21_000)
    sweep_gas_price_wei: int = Field(default=SWEEP_GAS_PRICE_WEI, gt=0)
    sweep_fee_reserve_wei: int = Field(default=SWEEP_FEE_RESERVE_WEI, ge=0)
    sweep_min_transfer_wei: int = Field(default=SWEEP_MIN_TRANSFER_WEI, ge=0)
    sweep_dust_threshold_wei: int = Field(default=SWEEP_DUST_THRESHOLD_WEI, ge=0)
    sweep_confirm_attempts: int = Field(default=SWEEP_CONFIRM_ATTEMPTS, ge=1)
    sweep_confirm_delay: float = Field(default=SWEEP_CONFIRM_DELAY_SECONDS, ge=0)

    # Coordinator
    coordinator_queue_size: int = Field(default=COORDINATOR_QUEUE_SIZE, ge=2)
    coordinator_max_concurrent_deposits: int = Field(
        default=COORDINATOR_MAX_CONCURRENT_DEPOSITS, ge=1
    )

    # Reconciliation jobs
    reconcile_interval_seconds: int = Field(default=RECONCILE_INTERVAL_SECONDS, gt=0)
    reconcile_batch_size: int = Field(default=RECONCILE_BATCH_SIZE, ge=1)
    reconcile_min_age_seconds: int = Field(default=RECONCILE_MIN_AGE_SECONDS, ge=0)
    reconcile_max_age_seconds: int = Field(default=RECONCILE_MAX_AGE_SECONDS, gt=0)
    reconcile_sweep_retry_seconds: int = Field(default=RECONCILE_SWEEP_RETRY_SECONDS, ge=0)

    # Redis (Dramatiq broker)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str | None = None
    redis_db: int = 0

    # Security
    encryption_key: str | None = None

    # Application
    environment: str = "production"
    debug: bool = False
    log_level: str = "INFO"
    health_check_port: int = Field(
        default=8081, ge=1, le=65535, description="Health check HTTP server port"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode='after')
    def validate_encryption(self) -> 'Settings':
        """Custodial keys are never stored unencrypted in production."""
        if self.environment == 'production':
            if not self.encryption_key:
                raise ValueError(
                    "ENCRYPTION_KEY is required in production environment. "
                    "Generate a key with: python -c 'from cryptography.fernet import Fernet; "
                    "print(Fernet.generate_key().decode())'"
                )
            if self.debug:
                raise ValueError(
                    'DEBUG must be False in production environment. '
                    'Set DEBUG=false in your .env file.'
                )
        return self

    @model_validator(mode='after')
    def validate_fee_reserve(self) -> 'Settings':
        """Warn when the fee reserve cannot pay for a sweep at the configured gas."""
        max_fee = self.sweep_gas_limit * self.sweep_gas_price_wei
        if self.sweep_fee_reserve_wei < max_fee:
            logger.warning(
                f"SWEEP_FEE_RESERVE_WEI ({self.sweep_fee_reserve_wei}) is below "
                f"gas_limit * gas_price ({max_fee}). Sweeps may fail for "
                f"insufficient funds."
            )
        return self

    @field_validator('operating_wallet_address')
    @classmethod
    def validate_eth_address(cls, v: str) -> str:
        """Validate Ethereum address format."""
        if not v.startswith('0x') or len(v) != 42:
            raise ValueError(
                f'Invalid Ethereum address: {v}. '
                'Must start with 0x and be 42 characters long.'
            )
        try:
            int(v[2:], 16)
        except ValueError as exc:
            raise ValueError(f'Invalid Ethereum address format: {v}') from exc
        return v.lower()

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL."""
        if not v.startswith(('postgresql+asyncpg://', 'sqlite+aiosqlite://')):
            raise ValueError(
                'DATABASE_URL must start with postgresql+asyncpg:// '
                'or sqlite+aiosqlite://'
            )
        return v

    def get_memo_tags(self) -> tuple[str, ...]:
        """Parse recognized memo tags from comma-separated string."""
        return tuple(
            tag.strip().lower()
            for tag in self.deposit_memo_tags.split(",")
            if tag.strip()
        )


# Global settings instance
settings = Settings()
