"""Example: Approve the solver and request an on-chain withdrawal."""

from __future__ import annotations

import asyncio
import logging
import os

from dotenv import load_dotenv

from vault_engine import (
    EngineSettings,
    LocalWallet,
    VaultEngine,
    VaultEngineError,
    WithdrawalPhase,
    load_strategies,
)

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOGLEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger("withdraw_shares")


async def main() -> None:
    private_key = os.getenv("PRIVATE_KEY")
    if not private_key:
        raise ValueError("PRIVATE_KEY not found in environment variables")

    strategy_id = os.getenv("STRATEGY", "syUSD")
    amount = os.getenv("WITHDRAW_AMOUNT", "1")
    asset = os.getenv("WITHDRAW_ASSET", "USDC")

    strategies = load_strategies(os.getenv("STRATEGIES_FILE", "examples/strategies.yaml"))
    wallet = LocalWallet(private_key)
    engine = VaultEngine(strategies, wallet, settings=EngineSettings.from_env())

    network = engine.strategy(strategy_id).ordered_withdrawable_networks[0]
    chain_id = await engine.switch_wallet_network(strategy_id, network)
    logger.info("Wallet %s on %s (chain %d)", wallet.address, network, chain_id)

    balance = await engine.aggregate(strategy_id, wallet.address)
    logger.info("Withdrawable %s of %s shares", balance.withdrawable, balance.total)

    await engine.on_asset_changed(strategy_id, wallet.address, asset)
    preview = await engine.on_amount_changed(strategy_id, wallet.address, amount)
    logger.info("Expected to receive about %s %s", preview, asset)

    try:
        snapshot = await engine.withdraw(strategy_id, wallet.address, amount, asset)
    except VaultEngineError as exc:
        logger.error("Withdrawal failed: %s", exc)
        snapshot = engine.snapshot(strategy_id, wallet.address)
        logger.error("Phase=%s reason=%s", snapshot.phase.value, snapshot.failure_reason)
        return
    finally:
        await engine.aclose()

    if snapshot.phase is WithdrawalPhase.SUCCEEDED:
        logger.info("Approval: %s", snapshot.approval_tx_url or snapshot.approval_tx_hash)
        logger.info("Request:  %s", snapshot.withdraw_tx_url or snapshot.withdraw_tx_hash)
    else:
        logger.warning("Withdrawal stopped in phase %s", snapshot.phase.value)


if __name__ == "__main__":
    asyncio.run(main())
