"""Example: Aggregate a wallet's vault balances across every configured network."""

from __future__ import annotations

import asyncio
import logging
import os

from dotenv import load_dotenv

from vault_engine import EngineSettings, VaultEngine, load_strategies

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOGLEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger("portfolio_balances")


async def main() -> None:
    wallet = os.getenv("WALLET_ADDRESS")
    if not wallet:
        raise ValueError("WALLET_ADDRESS not found in environment variables")

    strategies = load_strategies(os.getenv("STRATEGIES_FILE", "examples/strategies.yaml"))
    engine = VaultEngine(strategies, settings=EngineSettings.from_env())

    portfolio = await engine.aggregate_portfolio(wallet)
    for balance in portfolio.balances:
        logger.info(
            "%s: total=%s withdrawable=%s value=%s%s",
            balance.strategy_id,
            balance.total,
            balance.withdrawable,
            balance.usd_value,
            " (fallback rate)" if balance.degraded_rate else "",
        )
        for entry in balance.networks:
            logger.info("  %s: %s", entry.network, entry.amount)
        if balance.is_partial:
            logger.warning("  unavailable networks: %s", ", ".join(balance.failed_networks))

    for strategy_id, error in portfolio.failures.items():
        logger.error("%s could not be read: %s", strategy_id, error)

    logger.info("Portfolio value: %s", portfolio.usd_value)


if __name__ == "__main__":
    asyncio.run(main())
