"""Example: List pending withdrawal requests and cancel one of them."""

from __future__ import annotations

import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

from vault_engine import EngineSettings, LocalWallet, VaultEngine, load_strategies

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOGLEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger("cancel_request")


async def main() -> None:
    private_key = os.getenv("PRIVATE_KEY")
    if not private_key:
        raise ValueError("PRIVATE_KEY not found in environment variables")

    strategy_id = os.getenv("STRATEGY", "syUSD")
    strategies = load_strategies(os.getenv("STRATEGIES_FILE", "examples/strategies.yaml"))
    wallet = LocalWallet(private_key)
    engine = VaultEngine(strategies, wallet, settings=EngineSettings.from_env())

    snapshot = await engine.list_requests(strategy_id, wallet.address)
    if not snapshot.ok:
        logger.error("Ledger unavailable: %s", snapshot.error)
        return

    for entry in snapshot.pending:
        logger.info(
            "Pending %s: %s shares, deadline in %ss",
            entry.request_id,
            entry.amount_of_shares,
            entry.seconds_to_deadline,
        )
    for entry in snapshot.fulfilled:
        logger.info("Fulfilled %s (tx %s)", entry.request_id, entry.tx_hash)

    request_id = sys.argv[1] if len(sys.argv) > 1 else None
    if request_id is None:
        logger.info("Pass a request id to cancel it")
        return

    network = engine.strategy(strategy_id).ordered_withdrawable_networks[0]
    await engine.switch_wallet_network(strategy_id, network)
    result = await engine.cancel(strategy_id, request_id)
    logger.info("Cancel sent: %s", result.tx_url or result.tx_hash)
    if result.confirmed:
        logger.info("Request %s is no longer pending", request_id)
    else:
        logger.warning("Ledger still lists %s; check again shortly", request_id)


if __name__ == "__main__":
    asyncio.run(main())
