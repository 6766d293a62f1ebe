"""Cross-network share balance aggregation."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from decimal import Decimal

from .config import EngineSettings, StrategyConfig
from .contracts.reader import ContractReader
from .exceptions import AggregationFailed, EndpointUnavailable, RateLimited
from .rates import ExchangeRateService
from .rpc.pacing import Pacer
from .types import AggregatedBalance, NetworkBalance, PortfolioBalance
from .utils import from_base_units, to_checksum

logger = logging.getLogger(__name__)


class BalanceAggregator:
    """Sum a wallet's vault share balance over every configured network.

    Networks are read one after another in configuration order, paced to stay
    under public endpoint rate limits. A network whose endpoints all fail adds
    nothing to the totals and is reported in ``failed_networks``; only a pass
    where every network failed is an error.
    """

    def __init__(
        self,
        reader: ContractReader,
        rates: ExchangeRateService,
        *,
        settings: EngineSettings | None = None,
        network_pacer: Pacer | None = None,
        strategy_pacer: Pacer | None = None,
    ):
        settings = settings or EngineSettings()
        self._reader = reader
        self._rates = rates
        self._network_pacer = network_pacer or Pacer(
            settings.network_delay, backoff=settings.rate_limit_backoff
        )
        self._strategy_pacer = strategy_pacer or Pacer(settings.strategy_delay)
        self._decimals: dict[tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def aggregate(self, strategy: StrategyConfig, wallet: str) -> AggregatedBalance:
        owner = to_checksum(wallet, field="wallet")
        balances: list[NetworkBalance] = []
        failed: list[str] = []

        for network in strategy.networks.values():
            self._network_pacer.wait()
            try:
                raw_amount = self._reader.balance_of(network.name, network.vault_share_address, owner)
                decimals = self._share_decimals(network.name, network.vault_share_address)
            except RateLimited as exc:
                logger.warning("Rate limited reading %s on %s: %s", strategy.strategy_id, network.name, exc)
                failed.append(network.name)
                self._network_pacer.backoff()
                continue
            except EndpointUnavailable as exc:
                logger.warning("Skipping %s on %s: %s", strategy.strategy_id, network.name, exc)
                failed.append(network.name)
                continue

            if decimals != network.share_decimals:
                logger.warning(
                    "Share decimals for %s on %s differ from config (%d on-chain, %d configured)",
                    strategy.strategy_id,
                    network.name,
                    decimals,
                    network.share_decimals,
                )
            balances.append(
                NetworkBalance(
                    network=network.name,
                    amount=from_base_units(raw_amount, decimals),
                    raw_amount=raw_amount,
                    decimals=decimals,
                )
            )

        if not balances:
            raise AggregationFailed(
                f"No network returned a balance for strategy '{strategy.strategy_id}'",
                details={"strategy_id": strategy.strategy_id, "failed_networks": failed},
            )

        total = sum((entry.amount for entry in balances), Decimal(0))
        withdrawable = sum(
            (entry.amount for entry in balances if strategy.is_withdrawable(entry.network)),
            Decimal(0),
        )
        rate = self._rates.get_rate(strategy)

        logger.info(
            "Aggregated %s for %s: total=%s withdrawable=%s failed=%s",
            strategy.strategy_id,
            owner,
            total,
            withdrawable,
            failed or "none",
        )
        return AggregatedBalance(
            strategy_id=strategy.strategy_id,
            wallet=owner,
            total=total,
            withdrawable=withdrawable,
            rate=rate,
            networks=tuple(balances),
            failed_networks=tuple(failed),
        )

    def aggregate_portfolio(
        self, strategies: Iterable[StrategyConfig], wallet: str
    ) -> PortfolioBalance:
        """Aggregate several strategies, leaving out those with a zero total."""

        owner = to_checksum(wallet, field="wallet")
        results: list[AggregatedBalance] = []
        failures: dict[str, str] = {}

        for strategy in strategies:
            self._strategy_pacer.wait()
            try:
                balance = self.aggregate(strategy, owner)
            except EndpointUnavailable as exc:
                failures[strategy.strategy_id] = str(exc)
                continue
            if balance.total == 0:
                logger.debug("Dropping %s from portfolio: zero balance", strategy.strategy_id)
                continue
            results.append(balance)

        return PortfolioBalance(wallet=owner, balances=tuple(results), failures=failures)

    def _share_decimals(self, network: str, token: str) -> int:
        key = (network, token)
        with self._lock:
            cached = self._decimals.get(key)
        if cached is not None:
            return cached
        decimals = self._reader.decimals(network, token)
        with self._lock:
            self._decimals[key] = decimals
        return decimals
