"""Configuration containers for the vault engine."""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from web3.types import ChecksumAddress

from .constants import (
    DEFAULT_CANCEL_REFETCH_DELAY,
    DEFAULT_DISCOUNT,
    DEFAULT_LEDGER_BASE_URL,
    DEFAULT_LEDGER_TIMEOUT,
    DEFAULT_NETWORK_DELAY,
    DEFAULT_RATE_CACHE_TTL,
    DEFAULT_RATE_LIMIT_BACKOFF,
    DEFAULT_RECEIPT_POLL_INTERVAL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_STRATEGY_DELAY,
    DEFAULT_WITHDRAW_DEADLINE_SECONDS,
    UINT16_MAX,
    UINT24_MAX,
)
from .exceptions import ConfigurationError, ValidationError
from .utils import same_address, to_checksum


@dataclass(frozen=True)
class AssetConfig:
    """A token accepted as the asset-out of a withdrawal on one network."""

    symbol: str
    address: ChecksumAddress
    decimals: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, where: str) -> AssetConfig:
        symbol = data.get("symbol") or data.get("name")
        if not symbol:
            raise ConfigurationError("Withdraw asset is missing a symbol", field=f"{where}.symbol")
        decimals = data.get("decimals", data.get("decimal"))
        return cls(
            symbol=str(symbol),
            address=_required_address(data, "address", where=where, aliases=("contract",)),
            decimals=_optional_int(decimals, field=f"{where}.decimals"),
        )


@dataclass(frozen=True)
class NetworkConfig:
    """Per-network deployment of a vault share token."""

    name: str
    chain_id: int
    rpc_endpoints: tuple[str, ...]
    vault_share_address: ChecksumAddress
    share_decimals: int
    explorer_url: str | None = None
    withdraw_assets: tuple[AssetConfig, ...] = ()

    def __post_init__(self) -> None:
        if not self.rpc_endpoints:
            raise ConfigurationError(
                f"Network '{self.name}' has no RPC endpoints",
                field=f"networks.{self.name}.rpc_endpoints",
            )
        if self.chain_id <= 0:
            raise ConfigurationError(
                f"Network '{self.name}' has an invalid chain id",
                field=f"networks.{self.name}.chain_id",
                value=self.chain_id,
            )
        if self.share_decimals < 0:
            raise ConfigurationError(
                f"Network '{self.name}' has negative share decimals",
                field=f"networks.{self.name}.share_decimals",
                value=self.share_decimals,
            )

    def find_asset(self, asset: str) -> AssetConfig | None:
        """Resolve a withdraw asset by symbol or address."""
        for entry in self.withdraw_assets:
            if same_address(entry.address, asset) or entry.symbol.upper() == asset.upper():
                return entry
        return None

    @classmethod
    def from_dict(
        cls, name: str, data: Mapping[str, Any], *, default_decimals: int | None = None
    ) -> NetworkConfig:
        where = f"networks.{name}"
        endpoints = data.get("rpc_endpoints") or data.get("rpcEndpoints") or data.get("rpc")
        if isinstance(endpoints, str):
            endpoints = [endpoints]
        if not isinstance(endpoints, Sequence) or not endpoints:
            raise ConfigurationError(
                f"Network '{name}' has no RPC endpoints", field=f"{where}.rpc_endpoints"
            )

        decimals = _optional_int(
            data.get("share_decimals", data.get("shareDecimals")), field=f"{where}.share_decimals"
        )
        if decimals is None:
            decimals = default_decimals
        if decimals is None:
            raise ConfigurationError(
                f"Network '{name}' is missing share decimals", field=f"{where}.share_decimals"
            )

        chain_id = _optional_int(data.get("chain_id", data.get("chainId")), field=f"{where}.chain_id")
        if chain_id is None:
            raise ConfigurationError(f"Network '{name}' is missing a chain id", field=f"{where}.chain_id")

        assets_raw = data.get("withdraw_assets") or []
        if not isinstance(assets_raw, Sequence):
            raise ConfigurationError(
                "withdraw_assets must be a list", field=f"{where}.withdraw_assets", value=assets_raw
            )

        return cls(
            name=name,
            chain_id=chain_id,
            rpc_endpoints=tuple(str(url) for url in endpoints),
            vault_share_address=_required_address(
                data, "vault_share_address", where=where, aliases=("vaultShareAddress",)
            ),
            share_decimals=decimals,
            explorer_url=data.get("explorer_url"),
            withdraw_assets=tuple(
                AssetConfig.from_dict(item, where=f"{where}.withdraw_assets[{index}]")
                for index, item in enumerate(assets_raw)
            ),
        )


@dataclass(frozen=True)
class StrategyConfig:
    """Immutable description of one vault strategy across its networks."""

    strategy_id: str
    vault_address: ChecksumAddress
    solver_address: ChecksumAddress
    rate_provider_address: ChecksumAddress | None
    networks: Mapping[str, NetworkConfig]
    withdrawable_networks: frozenset[str]
    share_decimals: int
    rate_network: str | None = None
    quote_asset: AssetConfig | None = None

    def __post_init__(self) -> None:
        if not self.networks:
            raise ConfigurationError(
                f"Strategy '{self.strategy_id}' defines no networks", field="networks"
            )
        unknown = set(self.withdrawable_networks) - set(self.networks)
        if unknown:
            raise ConfigurationError(
                "Withdrawable networks must be a subset of deposit networks",
                field="withdrawable_networks",
                value=sorted(unknown),
            )
        if self.rate_network is not None and self.rate_network not in self.networks:
            raise ConfigurationError(
                f"Rate network '{self.rate_network}' is not configured",
                field="rate_network",
                value=self.rate_network,
            )

    @property
    def network_names(self) -> list[str]:
        """Networks in configuration order."""
        return list(self.networks)

    @property
    def ordered_withdrawable_networks(self) -> list[str]:
        return [name for name in self.networks if name in self.withdrawable_networks]

    @property
    def resolved_rate_network(self) -> str:
        return self.rate_network or next(iter(self.networks))

    def network(self, name: str) -> NetworkConfig:
        try:
            return self.networks[name]
        except KeyError:
            raise ValidationError(
                f"Network '{name}' is not configured for strategy '{self.strategy_id}'",
                field="network",
                value=name,
            ) from None

    def is_withdrawable(self, name: str) -> bool:
        return name in self.withdrawable_networks

    @classmethod
    def from_dict(cls, strategy_id: str, data: Mapping[str, Any]) -> StrategyConfig:
        """Build a validated strategy config, failing fast on missing required data."""

        share_decimals = _optional_int(
            data.get("share_decimals", data.get("shareAddress_token_decimal")),
            field="share_decimals",
        )
        networks_raw = data.get("networks")
        if not isinstance(networks_raw, Mapping) or not networks_raw:
            raise ConfigurationError(
                f"Strategy '{strategy_id}' defines no networks", field="networks"
            )

        networks = {
            str(name): NetworkConfig.from_dict(str(name), cfg, default_decimals=share_decimals)
            for name, cfg in networks_raw.items()
        }
        if share_decimals is None:
            share_decimals = next(iter(networks.values())).share_decimals

        withdrawable = data.get("withdrawable_networks")
        if withdrawable is None:
            withdrawable = list(networks)
        if isinstance(withdrawable, str) or not isinstance(withdrawable, Sequence):
            raise ConfigurationError(
                "withdrawable_networks must be a list", field="withdrawable_networks"
            )

        rate_provider = data.get("rate_provider_address", data.get("rateProvider"))
        quote_raw = data.get("quote_asset")

        return cls(
            strategy_id=strategy_id,
            vault_address=_required_address(
                data, "vault_address", where=strategy_id, aliases=("boringVaultAddress",)
            ),
            solver_address=_required_address(
                data, "solver_address", where=strategy_id, aliases=("solverAddress",)
            ),
            rate_provider_address=(
                to_checksum(rate_provider, field="rate_provider_address") if rate_provider else None
            ),
            networks=networks,
            withdrawable_networks=frozenset(str(name) for name in withdrawable),
            share_decimals=share_decimals,
            rate_network=data.get("rate_network"),
            quote_asset=(
                AssetConfig.from_dict(quote_raw, where=f"{strategy_id}.quote_asset")
                if isinstance(quote_raw, Mapping)
                else None
            ),
        )


@dataclass(frozen=True)
class EngineSettings:
    """Tunables shared by every component of the engine."""

    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    network_delay: float = DEFAULT_NETWORK_DELAY
    strategy_delay: float = DEFAULT_STRATEGY_DELAY
    rate_limit_backoff: float = DEFAULT_RATE_LIMIT_BACKOFF
    rate_cache_ttl: int = DEFAULT_RATE_CACHE_TTL
    ledger_base_url: str = DEFAULT_LEDGER_BASE_URL
    ledger_timeout: float = DEFAULT_LEDGER_TIMEOUT
    cancel_refetch_delay: float = DEFAULT_CANCEL_REFETCH_DELAY
    receipt_poll_interval: float = DEFAULT_RECEIPT_POLL_INTERVAL
    discount: int = DEFAULT_DISCOUNT
    withdraw_deadline_seconds: int = DEFAULT_WITHDRAW_DEADLINE_SECONDS

    def __post_init__(self) -> None:
        if not 0 <= self.discount <= UINT16_MAX:
            raise ConfigurationError("discount must fit in uint16", field="discount", value=self.discount)
        if not 0 < self.withdraw_deadline_seconds <= UINT24_MAX:
            raise ConfigurationError(
                "withdraw_deadline_seconds must fit in uint24",
                field="withdraw_deadline_seconds",
                value=self.withdraw_deadline_seconds,
            )
        for name in ("network_delay", "strategy_delay", "rate_limit_backoff", "cancel_refetch_delay"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} cannot be negative", field=name)

    @classmethod
    def from_env(cls, prefix: str = "VAULT_ENGINE_", *, dotenv: bool = True) -> EngineSettings:
        """Read overrides from the environment (and a .env file when present)."""

        if dotenv:
            load_dotenv()

        overrides: dict[str, Any] = {}
        casts: dict[str, type] = {
            "request_timeout": float,
            "network_delay": float,
            "strategy_delay": float,
            "rate_limit_backoff": float,
            "rate_cache_ttl": int,
            "ledger_base_url": str,
            "ledger_timeout": float,
            "cancel_refetch_delay": float,
            "receipt_poll_interval": float,
            "discount": int,
            "withdraw_deadline_seconds": int,
        }
        for name, cast in casts.items():
            raw = os.getenv(f"{prefix}{name.upper()}")
            if raw is None or raw == "":
                continue
            try:
                overrides[name] = cast(raw)
            except ValueError as exc:
                raise ConfigurationError(
                    f"Invalid value for {prefix}{name.upper()}", field=name, value=raw
                ) from exc
        return cls(**overrides)


def load_strategies(path: str | Path) -> dict[str, StrategyConfig]:
    """Load and validate every strategy from a YAML file."""

    with open(path, encoding="utf-8") as handle:
        document = yaml.safe_load(handle) or {}

    if not isinstance(document, Mapping):
        raise ConfigurationError("Strategy file must contain a mapping", field="strategies")

    strategies = document.get("strategies", document)
    if not isinstance(strategies, Mapping):
        raise ConfigurationError("'strategies' must be a mapping", field="strategies")

    return {
        str(strategy_id): StrategyConfig.from_dict(str(strategy_id), data)
        for strategy_id, data in strategies.items()
    }


def _required_address(
    data: Mapping[str, Any], key: str, *, where: str, aliases: tuple[str, ...] = ()
) -> ChecksumAddress:
    value = data.get(key)
    for alias in aliases:
        if value:
            break
        value = data.get(alias)
    if not value:
        raise ConfigurationError(f"{where}: missing required address '{key}'", field=key)
    return to_checksum(str(value), field=key)


def _optional_int(value: Any, *, field: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigurationError("Expected an integer", field=field, value=value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError("Expected an integer", field=field, value=value) from None
