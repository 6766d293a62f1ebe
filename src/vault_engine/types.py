"""Type definitions and data models for the vault engine."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from eth_typing import HexStr

from .constants import (
    UINT24_MAX,
    UINT40_MAX,
    UINT64_MAX,
    UINT128_MAX,
    FailureReason,
    LedgerStatus,
    WithdrawalPhase,
)
from .exceptions import DegradedRate, ValidationError
from .utils import to_checksum


@dataclass(frozen=True)
class NetworkBalance:
    """Share balance of one wallet on one network."""

    network: str
    amount: Decimal
    raw_amount: int
    decimals: int


@dataclass(frozen=True)
class ExchangeRate:
    """Share to quote-asset rate, flagged when it is the fallback value."""

    strategy_id: str
    value: Decimal
    degraded: bool = False
    error: str | None = None
    quote_asset: str | None = None

    def require(self) -> Decimal:
        """Return the rate, refusing the fallback value."""
        if self.degraded:
            raise DegradedRate(
                f"Exchange rate for '{self.strategy_id}' is a fallback value",
                strategy_id=self.strategy_id,
                details={"error": self.error},
            )
        return self.value


@dataclass(frozen=True)
class AggregatedBalance:
    """Balances of one strategy summed across its networks."""

    strategy_id: str
    wallet: str
    total: Decimal
    withdrawable: Decimal
    rate: ExchangeRate
    networks: tuple[NetworkBalance, ...] = ()
    failed_networks: tuple[str, ...] = ()

    @property
    def usd_value(self) -> Decimal:
        return self.total * self.rate.value

    @property
    def withdrawable_usd_value(self) -> Decimal:
        return self.withdrawable * self.rate.value

    @property
    def degraded_rate(self) -> bool:
        return self.rate.degraded

    @property
    def is_partial(self) -> bool:
        return bool(self.failed_networks)

    def network(self, name: str) -> NetworkBalance | None:
        for entry in self.networks:
            if entry.network == name:
                return entry
        return None


@dataclass(frozen=True)
class PortfolioBalance:
    """Balances for several strategies; zero balances are left out."""

    wallet: str
    balances: tuple[AggregatedBalance, ...] = ()
    failures: Mapping[str, str] = field(default_factory=dict)

    @property
    def usd_value(self) -> Decimal:
        return sum((balance.usd_value for balance in self.balances), Decimal(0))

    @property
    def degraded_rate(self) -> bool:
        return any(balance.degraded_rate for balance in self.balances)


@dataclass(frozen=True)
class WithdrawalRequest:
    """An in-flight withdrawal owned by the state machine."""

    strategy_id: str
    wallet: str
    network: str
    asset: str
    asset_symbol: str
    amount: Decimal
    shares: int
    discount: int
    deadline_seconds: int


@dataclass(frozen=True)
class WithdrawalSnapshot:
    """Immutable view of a withdrawal state machine."""

    phase: WithdrawalPhase
    request: WithdrawalRequest | None = None
    approval_tx_hash: str | None = None
    withdraw_tx_hash: str | None = None
    failure_reason: FailureReason | None = None
    error: str | None = None
    preview_assets_out: Decimal | None = None
    approval_tx_url: str | None = None
    withdraw_tx_url: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.phase.is_terminal


@dataclass(frozen=True)
class TxResult:
    """Outcome of a mined transaction."""

    tx_hash: HexStr
    status: int
    block_number: int | None = None
    receipt: dict[str, Any] | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


_LEDGER_ALIASES: dict[str, tuple[str, ...]] = {
    "request_id": ("request_id", "requestId", "id"),
    "nonce": ("nonce",),
    "user": ("user", "user_address", "userAddress"),
    "asset_out": ("withdraw_asset_address", "asset_out", "assetOut"),
    "amount_of_shares": ("amount_of_shares", "amountOfShares"),
    "amount_of_assets": ("amount_of_assets", "amountOfAssets"),
    "creation_time": ("creation_time", "creationTime"),
    "seconds_to_maturity": ("seconds_to_maturity", "secondsToMaturity"),
    "seconds_to_deadline": ("seconds_to_deadline", "secondsToDeadline"),
    "tx_hash": ("transaction_hash", "tx_hash", "transactionHash"),
}

# Solidity widths of the on-chain request struct, in field order.
_STRUCT_FIELDS: tuple[tuple[str, int | None], ...] = (
    ("nonce", UINT64_MAX),
    ("user", None),
    ("asset_out", None),
    ("amount_of_shares", UINT128_MAX),
    ("amount_of_assets", UINT128_MAX),
    ("creation_time", UINT40_MAX),
    ("seconds_to_maturity", UINT24_MAX),
    ("seconds_to_deadline", UINT24_MAX),
)


@dataclass(frozen=True)
class LedgerEntry:
    """One withdrawal request as reported by the off-chain ledger."""

    request_id: str
    status: LedgerStatus
    nonce: int | None = None
    user: str | None = None
    asset_out: str | None = None
    amount_of_shares: int | None = None
    amount_of_assets: int | None = None
    creation_time: int | None = None
    seconds_to_maturity: int | None = None
    seconds_to_deadline: int | None = None
    tx_hash: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], status: LedgerStatus) -> LedgerEntry:
        """Parse a ledger record, keeping absent fields as ``None``."""

        values = {name: _first(data, keys) for name, keys in _LEDGER_ALIASES.items()}
        request_id = values.pop("request_id")
        if request_id is None or str(request_id) == "":
            raise ValidationError("Ledger entry is missing a request id", field="request_id")

        return cls(
            request_id=str(request_id),
            status=status,
            nonce=_to_int(values["nonce"], "nonce"),
            user=values["user"],
            asset_out=values["asset_out"],
            amount_of_shares=_to_int(values["amount_of_shares"], "amount_of_shares"),
            amount_of_assets=_to_int(values["amount_of_assets"], "amount_of_assets"),
            creation_time=_to_int(values["creation_time"], "creation_time"),
            seconds_to_maturity=_to_int(values["seconds_to_maturity"], "seconds_to_maturity"),
            seconds_to_deadline=_to_int(values["seconds_to_deadline"], "seconds_to_deadline"),
            tx_hash=values["tx_hash"],
            raw=dict(data),
        )

    def as_request_tuple(self) -> tuple[Any, ...]:
        """Return the on-chain request struct exactly as stored in the ledger.

        Raises ValidationError when any field is missing or out of range; a
        cancel payload is never completed with guessed values.
        """

        items: list[Any] = []
        for name, upper in _STRUCT_FIELDS:
            value = getattr(self, name)
            if value is None:
                raise ValidationError(
                    f"Ledger entry {self.request_id} has no '{name}'",
                    field=name,
                    details={"request_id": self.request_id},
                )
            if upper is not None and not 0 <= value <= upper:
                raise ValidationError(
                    f"Ledger entry {self.request_id} has an out of range '{name}'",
                    field=name,
                    value=value,
                )
            items.append(to_checksum(value, field=name) if upper is None else value)
        return tuple(items)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Pending and fulfilled requests for one wallet and vault."""

    vault: str
    wallet: str
    pending: tuple[LedgerEntry, ...] = ()
    fulfilled: tuple[LedgerEntry, ...] = ()
    error: str | None = None
    fetched_at: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def find_pending(self, request_id: str) -> LedgerEntry | None:
        for entry in self.pending:
            if entry.request_id == request_id:
                return entry
        return None

    def pending_ids(self) -> list[str]:
        return [entry.request_id for entry in self.pending]


@dataclass(frozen=True)
class CancelResult:
    """Outcome of a cancellation, confirmed only after the ledger re-fetch."""

    request_id: str
    tx_hash: HexStr
    confirmed: bool
    ledger: LedgerSnapshot
    tx_url: str | None = None


def _first(data: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def _to_int(value: Any, field_name: str) -> int | None:
    if value is None:
        return None
    # Floats have already lost precision by the time they reach us.
    if isinstance(value, (bool, float)):
        raise ValidationError("Expected an integer", field=field_name, value=value)
    if isinstance(value, int):
        return value
    try:
        if isinstance(value, str):
            text = value.strip()
            if text.lower().startswith("0x"):
                return int(text, 16)
            number = Decimal(text)
        else:
            number = Decimal(value)
        if number.is_finite() and number == number.to_integral_value():
            return int(number)
    except (ArithmeticError, TypeError, ValueError):
        raise ValidationError("Expected an integer", field=field_name, value=value) from None
    raise ValidationError("Expected a whole number", field=field_name, value=value)
