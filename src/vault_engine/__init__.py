"""Vault Engine - cross-chain vault balances and solver withdrawals.

This library aggregates a wallet's vault share balances across EVM networks,
values them through an on-chain rate provider and drives the approve and
request-withdraw flow against the vault's solver contract.
"""

from .balances import BalanceAggregator
from .base import WalletSigner
from .cancellation import CancellationFlow
from .config import AssetConfig, EngineSettings, NetworkConfig, StrategyConfig, load_strategies
from .constants import FailureReason, LedgerStatus, WithdrawalPhase
from .contracts import ContractReader
from .engine import VaultEngine
from .exceptions import (
    AggregationFailed,
    AllEndpointsExhausted,
    ConfigurationError,
    DegradedRate,
    EndpointUnavailable,
    InvalidAmount,
    InvalidTransition,
    LedgerUnavailable,
    NetworkError,
    RateLimited,
    RequestNotFound,
    TransactionError,
    TransactionFailed,
    UserRejected,
    ValidationError,
    VaultEngineError,
    WithdrawalInProgress,
    WithdrawalStateError,
    WrongNetwork,
)
from .ledger import RequestLedgerClient
from .rates import ExchangeRateService
from .rpc import EndpointPool, Pacer, TTLCache
from .transactions import ContractCall, TransactionDispatcher
from .types import (
    AggregatedBalance,
    CancelResult,
    ExchangeRate,
    LedgerEntry,
    LedgerSnapshot,
    NetworkBalance,
    PortfolioBalance,
    TxResult,
    WithdrawalRequest,
    WithdrawalSnapshot,
)
from .utils import explorer_tx_url, from_base_units, to_base_units
from .wallet import LocalWallet
from .withdrawals import WithdrawalStateMachine

__version__ = "0.1.0"

__all__ = [
    # Engine and components
    "VaultEngine",
    "EndpointPool",
    "Pacer",
    "TTLCache",
    "ContractReader",
    "BalanceAggregator",
    "ExchangeRateService",
    "ContractCall",
    "TransactionDispatcher",
    "WithdrawalStateMachine",
    "RequestLedgerClient",
    "CancellationFlow",
    "WalletSigner",
    "LocalWallet",
    # Configuration
    "AssetConfig",
    "NetworkConfig",
    "StrategyConfig",
    "EngineSettings",
    "load_strategies",
    # Types and enums
    "WithdrawalPhase",
    "FailureReason",
    "LedgerStatus",
    "NetworkBalance",
    "AggregatedBalance",
    "PortfolioBalance",
    "ExchangeRate",
    "WithdrawalRequest",
    "WithdrawalSnapshot",
    "LedgerEntry",
    "LedgerSnapshot",
    "CancelResult",
    "TxResult",
    # Exceptions
    "VaultEngineError",
    "NetworkError",
    "EndpointUnavailable",
    "AllEndpointsExhausted",
    "RateLimited",
    "AggregationFailed",
    "LedgerUnavailable",
    "ValidationError",
    "InvalidAmount",
    "ConfigurationError",
    "WrongNetwork",
    "TransactionError",
    "UserRejected",
    "TransactionFailed",
    "RequestNotFound",
    "DegradedRate",
    "WithdrawalStateError",
    "WithdrawalInProgress",
    "InvalidTransition",
    # Utility functions
    "to_base_units",
    "from_base_units",
    "explorer_tx_url",
]
