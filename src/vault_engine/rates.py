"""Share to quote-asset exchange rate lookups."""

from __future__ import annotations

import logging
from decimal import Decimal

from .config import StrategyConfig
from .constants import DEFAULT_RATE_CACHE_TTL, FALLBACK_EXCHANGE_RATE
from .contracts.reader import ContractReader
from .exceptions import VaultEngineError
from .rpc.cache import TTLCache
from .types import ExchangeRate
from .utils import from_base_units

logger = logging.getLogger(__name__)


class ExchangeRateService:
    """Read ``getRateInQuoteSafe`` from a strategy's rate provider.

    Failures never raise: the service answers with the ``1.0`` fallback and
    marks the rate as degraded. Only authoritative rates are cached.
    """

    def __init__(self, reader: ContractReader, cache: TTLCache | None = None):
        self._reader = reader
        self._cache = cache if cache is not None else TTLCache(DEFAULT_RATE_CACHE_TTL)

    @property
    def cache(self) -> TTLCache:
        return self._cache

    def get_rate(self, strategy: StrategyConfig) -> ExchangeRate:
        cached = self._cache.get(strategy.strategy_id)
        if cached is not None:
            return cached

        quote = strategy.quote_asset
        if strategy.rate_provider_address is None or quote is None:
            return self._fallback(strategy, "rate provider or quote asset not configured")

        network = strategy.resolved_rate_network
        try:
            raw_rate = self._reader.get_rate(network, strategy.rate_provider_address, quote.address)
            quote_decimals = self._reader.decimals(network, quote.address)
        except VaultEngineError as exc:
            return self._fallback(strategy, str(exc))

        rate = ExchangeRate(
            strategy_id=strategy.strategy_id,
            value=from_base_units(raw_rate, quote_decimals),
            quote_asset=quote.symbol,
        )
        logger.debug("Rate for %s on %s: %s %s", strategy.strategy_id, network, rate.value, quote.symbol)
        self._cache.set(strategy.strategy_id, rate)
        return rate

    def invalidate(self, strategy_id: str | None = None) -> None:
        self._cache.invalidate(strategy_id)

    def _fallback(self, strategy: StrategyConfig, error: str) -> ExchangeRate:
        logger.warning(
            "Using fallback exchange rate %s for %s: %s",
            FALLBACK_EXCHANGE_RATE,
            strategy.strategy_id,
            error,
        )
        return ExchangeRate(
            strategy_id=strategy.strategy_id,
            value=Decimal(FALLBACK_EXCHANGE_RATE),
            degraded=True,
            error=error,
            quote_asset=strategy.quote_asset.symbol if strategy.quote_asset else None,
        )
