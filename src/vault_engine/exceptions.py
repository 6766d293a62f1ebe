"""Exception hierarchy for the vault engine."""

from typing import Any


class VaultEngineError(Exception):
    """Base exception for all vault engine errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NetworkError(VaultEngineError):
    """Raised when network/connection issues occur."""

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code


class EndpointUnavailable(NetworkError):
    """Raised when every configured endpoint failed for one logical call."""

    def __init__(
        self,
        message: str,
        network: str | None = None,
        attempts: list[dict[str, Any]] | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details=details)
        self.network = network
        self.attempts = attempts or []


AllEndpointsExhausted = EndpointUnavailable


class RateLimited(EndpointUnavailable):
    """Raised when endpoints were exhausted and at least one reported rate limiting."""

    pass


class AggregationFailed(EndpointUnavailable):
    """Raised when no configured network produced a balance."""

    pass


class LedgerUnavailable(NetworkError):
    """Raised when the off-chain request ledger cannot be reached."""

    pass


class ValidationError(VaultEngineError):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.field = field
        self.value = value


class InvalidAmount(ValidationError):
    """Raised when a withdrawal amount violates amount/balance constraints."""

    pass


class ConfigurationError(ValidationError):
    """Raised when strategy or engine configuration is incomplete or malformed."""

    pass


class WrongNetwork(VaultEngineError):
    """Raised when the wallet's active network differs from the target network."""

    def __init__(
        self,
        message: str,
        expected_chain_id: int | None = None,
        actual_chain_id: int | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.expected_chain_id = expected_chain_id
        self.actual_chain_id = actual_chain_id


class TransactionError(VaultEngineError):
    """Base class for transaction submission and settlement failures."""

    def __init__(
        self,
        message: str,
        tx_hash: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.tx_hash = tx_hash


class UserRejected(TransactionError):
    """Raised when the wallet refused to sign a transaction."""

    pass


class TransactionFailed(TransactionError):
    """Raised when a transaction reverted or failed on-chain."""

    pass


class RequestNotFound(VaultEngineError):
    """Raised when a cancel references a request missing from the last pending list."""

    def __init__(self, request_id: str, details: dict | None = None):
        super().__init__(f"Request '{request_id}' not found in pending requests", details)
        self.request_id = request_id


class DegradedRate(VaultEngineError):
    """Raised when a caller requires an authoritative rate but only the fallback is available."""

    def __init__(self, message: str, strategy_id: str | None = None, details: dict | None = None):
        super().__init__(message, details)
        self.strategy_id = strategy_id


class WithdrawalStateError(VaultEngineError):
    """Raised when a withdrawal operation is not allowed in the current phase."""

    def __init__(self, message: str, phase: str | None = None, details: dict | None = None):
        super().__init__(message, details)
        self.phase = phase


class WithdrawalInProgress(WithdrawalStateError):
    """Raised when a second withdrawal is started while one is still in flight."""

    pass


class InvalidTransition(WithdrawalStateError):
    """Raised when an operation is invoked from a phase that does not allow it."""

    pass
