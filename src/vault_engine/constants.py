"""Constants and defaults for the vault engine."""

from enum import Enum

DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_NETWORK_DELAY = 0.1
DEFAULT_STRATEGY_DELAY = 0.5
DEFAULT_RATE_LIMIT_BACKOFF = 2.0
DEFAULT_RATE_CACHE_TTL = 30
DEFAULT_LEDGER_BASE_URL = "https://api.lucidly.finance/services"
DEFAULT_LEDGER_TIMEOUT = 15.0
DEFAULT_CANCEL_REFETCH_DELAY = 2.0
DEFAULT_RECEIPT_POLL_INTERVAL = 2.0

# Solver parameters for requestOnChainWithdraw
DEFAULT_DISCOUNT = 0
DEFAULT_WITHDRAW_DEADLINE_SECONDS = 432_000  # 5 days

FALLBACK_EXCHANGE_RATE = "1.0"

UINT16_MAX = 2**16 - 1
UINT24_MAX = 2**24 - 1
UINT40_MAX = 2**40 - 1
UINT64_MAX = 2**64 - 1
UINT128_MAX = 2**128 - 1

# EIP-1193 error code for a wallet-side signature rejection
USER_REJECTED_CODE = 4001

RATE_LIMIT_MARKERS = ("rate limit", "too many requests")


class LedgerStatus(str, Enum):
    """Status values reported by the off-chain request ledger."""

    PENDING = "PENDING"
    FULFILLED = "FULFILLED"


class WithdrawalPhase(str, Enum):
    """Phases of the withdrawal state machine."""

    IDLE = "idle"
    APPROVING = "approving"
    APPROVED = "approved"
    WITHDRAWING = "withdrawing"
    CONFIRMING = "confirming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WithdrawalPhase.SUCCEEDED, WithdrawalPhase.FAILED)


class FailureReason(str, Enum):
    """Why a withdrawal flow ended in the failed phase."""

    TRANSACTION_FAILED = "transaction_failed"
    USER_REJECTED = "user_rejected"
    ENDPOINT_UNAVAILABLE = "endpoint_unavailable"
    RATE_LIMITED = "rate_limited"
    SOLVER_PAUSED = "solver_paused"
    INSUFFICIENT_ALLOWANCE = "insufficient_allowance"
