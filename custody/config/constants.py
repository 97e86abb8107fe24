"""
Operational constants for custody.

Defaults for timeouts, retry budgets and sweep economics.
Every value here can be overridden through Settings.
"""

# =============================================================================
# LEDGER RPC
# =============================================================================

# Timeout for run_in_executor web3 calls (seconds)
LEDGER_EXECUTOR_TIMEOUT = 20.0

# HTTP timeout for JSON-RPC provider and explorer API (seconds)
LEDGER_HTTP_TIMEOUT = 30

# Thread pool size for blocking web3 calls
LEDGER_EXECUTOR_WORKERS = 8

# Number of recent account transactions fetched from the explorer
ACCOUNT_HISTORY_LIMIT = 50


# =============================================================================
# CHAIN SCANNER
# =============================================================================

# Cursor name used for the deposit scanner
DEPOSIT_CURSOR_NAME = "deposits"

# Tick interval (seconds)
SCANNER_TICK_SECONDS = 1.0

# Unprocessed transactions retried per tick
UNPROCESSED_DRAIN_BATCH = 20

# Attempts before an unprocessed transaction is abandoned
UNPROCESSED_MAX_ATTEMPTS = 10


# =============================================================================
# DEPOSIT MEMO
# =============================================================================

# Recognized purchase tags: "<tag>:<amount>:<idempotency_key>"
DEPOSIT_MEMO_TAGS = ("buy",)

# Memo tag written on sweep transfers: "sweep:<idempotency_key>"
SWEEP_MEMO_TAG = "sweep"

# Idempotency key limits
IDEMPOTENCY_KEY_MAX_LENGTH = 64


# =============================================================================
# TRANSACTION VERIFIER
# =============================================================================

# Indexer replication lag allowance before the first lookup (seconds)
VERIFIER_INITIAL_DELAY_SECONDS = 10.0

# Delay between lookups (seconds)
VERIFIER_RETRY_DELAY_SECONDS = 5.0

# Lookups before reporting "pending"
VERIFIER_MAX_ATTEMPTS = 6

# Matches older than this (relative to the deposit record) are stale (seconds)
VERIFIER_STALENESS_SECONDS = 30 * 60

# Receipt confirmations required for finality
VERIFIER_MIN_CONFIRMATIONS = 3


# =============================================================================
# SWEEP ENGINE
# =============================================================================

# Native transfer with a short memo in input data
SWEEP_GAS_LIMIT = 30_000

# 1 Gwei
SWEEP_GAS_PRICE_WEI = 1_000_000_000

# Fee buffer kept back on a regular sweep (gas_limit * gas_price)
SWEEP_FEE_RESERVE_WEI = SWEEP_GAS_LIMIT * SWEEP_GAS_PRICE_WEI

# Minimum amount worth sweeping on top of the fee reserve
SWEEP_MIN_TRANSFER_WEI = 100_000_000_000_000  # 0.0001

# Below this the whole balance is swept and the fee comes out of it
SWEEP_DUST_THRESHOLD_WEI = 1_000_000_000_000_000  # 0.001

# Confirmation polling
SWEEP_CONFIRM_ATTEMPTS = 20
SWEEP_CONFIRM_DELAY_SECONDS = 15.0


# =============================================================================
# COORDINATOR
# =============================================================================

# Bounded event channel between timer and coordinator
COORDINATOR_QUEUE_SIZE = 100

# Concurrent candidate pipelines (verification waits included)
COORDINATOR_MAX_CONCURRENT_DEPOSITS = 10

# Scanner lag (blocks) above which the worker reports degraded
HEALTH_MAX_SCAN_LAG_BLOCKS = 50


# =============================================================================
# RECONCILIATION (dramatiq)
# =============================================================================

# Reconciliation run interval (seconds)
RECONCILE_INTERVAL_SECONDS = 300

# Records handled per run
RECONCILE_BATCH_SIZE = 50

# Records younger than this are left to the live pipeline (seconds)
RECONCILE_MIN_AGE_SECONDS = 120

# Records older than this are no longer re-verified (seconds)
RECONCILE_MAX_AGE_SECONDS = 24 * 60 * 60

# Wait before re-sweeping a deposit whose last sweep attempt did not go through (seconds)
RECONCILE_SWEEP_RETRY_SECONDS = 30 * 60

# Redis lock TTL guarding a reconciliation run (seconds)
RECONCILE_LOCK_TIMEOUT_SECONDS = 600

# Dramatiq time limit for reconciliation actors (milliseconds)
DRAMATIQ_TIME_LIMIT_RECONCILE = 300_000

# Dramatiq queue namespace in Redis
DRAMATIQ_NAMESPACE = "custody-tasks"
