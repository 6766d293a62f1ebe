from __future__ import annotations

from decimal import Decimal

import pytest
from conftest import ADDRESSES, strategy_data

from vault_engine.balances import BalanceAggregator
from vault_engine.config import StrategyConfig
from vault_engine.exceptions import DegradedRate
from vault_engine.rates import ExchangeRateService
from vault_engine.rpc.cache import TTLCache


def test_rate_formatted_with_quote_decimals(reader, strategy) -> None:
    rate = ExchangeRateService(reader).get_rate(strategy)

    assert rate.value == Decimal("1.05")
    assert not rate.degraded
    assert rate.quote_asset == "USDC"
    assert rate.require() == Decimal("1.05")
    assert ("getRateInQuoteSafe", "ethereum") in reader.calls


def test_scenario_b_rate_failure_falls_back(reader, settings, strategy, unavailable) -> None:
    reader.rate = unavailable
    rates = ExchangeRateService(reader)

    balance = BalanceAggregator(reader, rates, settings=settings).aggregate(
        strategy, ADDRESSES.wallet
    )

    assert balance.rate.value == Decimal("1.0")
    assert balance.degraded_rate is True
    assert balance.usd_value == balance.total
    assert "all endpoints down" in balance.rate.error


def test_degraded_rate_refused_on_require(reader, strategy, unavailable) -> None:
    reader.rate = unavailable
    rate = ExchangeRateService(reader).get_rate(strategy)

    with pytest.raises(DegradedRate) as exc_info:
        rate.require()

    assert exc_info.value.strategy_id == "syUSD"


def test_missing_rate_provider_is_degraded(reader) -> None:
    data = strategy_data()
    del data["rate_provider_address"]
    strategy = StrategyConfig.from_dict("syUSD", data)

    rate = ExchangeRateService(reader).get_rate(strategy)

    assert rate.degraded
    assert rate.value == Decimal("1.0")
    assert reader.calls == []


def test_rate_cached_until_invalidated(reader, strategy) -> None:
    rates = ExchangeRateService(reader, TTLCache(default_ttl=30))

    rates.get_rate(strategy)
    rates.get_rate(strategy)
    assert reader.calls.count(("getRateInQuoteSafe", "ethereum")) == 1

    rates.invalidate("syUSD")
    rates.get_rate(strategy)
    assert reader.calls.count(("getRateInQuoteSafe", "ethereum")) == 2


def test_degraded_rate_not_cached(reader, strategy, unavailable) -> None:
    rates = ExchangeRateService(reader)
    reader.rate = unavailable
    assert rates.get_rate(strategy).degraded

    reader.rate = 1_000_000
    rate = rates.get_rate(strategy)

    assert not rate.degraded
    assert rate.value == Decimal(1)
