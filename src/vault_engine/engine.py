"""Asynchronous entry point wiring every component of the vault engine."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from decimal import Decimal
from typing import Any

import requests

from .balances import BalanceAggregator
from .base import WalletSigner
from .cancellation import CancellationFlow
from .config import EngineSettings, StrategyConfig
from .constants import WithdrawalPhase
from .contracts.reader import ContractReader
from .exceptions import ValidationError
from .ledger import RequestLedgerClient
from .rates import ExchangeRateService
from .rpc.cache import TTLCache
from .rpc.pool import EndpointPool, Web3Factory
from .transactions import TransactionDispatcher
from .types import (
    AggregatedBalance,
    CancelResult,
    ExchangeRate,
    LedgerSnapshot,
    PortfolioBalance,
    WithdrawalSnapshot,
)
from .utils import same_address, to_checksum
from .withdrawals import WithdrawalStateMachine

logger = logging.getLogger(__name__)

_PENDING_PHASES = (WithdrawalPhase.APPROVING, WithdrawalPhase.CONFIRMING)


class VaultEngine:
    """Caller-facing API for balances, withdrawals and request cancellation.

    Components are synchronous; every blocking call runs in a worker thread
    so each RPC read, submission and receipt check is a separate await the
    caller can cancel or time out. One withdrawal state machine exists per
    (wallet, strategy) and async operations on it are serialised.
    """

    def __init__(
        self,
        strategies: Mapping[str, StrategyConfig] | Iterable[StrategyConfig],
        signer: WalletSigner | None = None,
        *,
        settings: EngineSettings | None = None,
        pool: EndpointPool | None = None,
        web3_factory: Web3Factory | None = None,
        session: requests.Session | None = None,
        rate_cache: TTLCache | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if isinstance(strategies, Mapping):
            self._strategies = dict(strategies)
        else:
            self._strategies = {strategy.strategy_id: strategy for strategy in strategies}
        if not self._strategies:
            raise ValidationError("At least one strategy is required", field="strategies")

        self.settings = settings or EngineSettings()
        self.signer = signer
        self.pool = pool or EndpointPool.from_strategies(
            self._strategies.values(),
            request_timeout=self.settings.request_timeout,
            web3_factory=web3_factory,
        )
        self.reader = ContractReader(self.pool)
        self.rates = ExchangeRateService(
            self.reader, rate_cache or TTLCache(self.settings.rate_cache_ttl)
        )
        self.aggregator = BalanceAggregator(self.reader, self.rates, settings=self.settings)
        self.dispatcher = TransactionDispatcher(
            self.pool, poll_interval=self.settings.receipt_poll_interval, sleep=sleep
        )
        self.ledger = RequestLedgerClient(
            session,
            base_url=self.settings.ledger_base_url,
            request_timeout=self.settings.ledger_timeout,
        )
        self.cancellation = CancellationFlow(
            self.ledger, self.dispatcher, settings=self.settings, sleep=sleep
        )

        self._machines: dict[tuple[str, str], WithdrawalStateMachine] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._balances: dict[tuple[str, str], AggregatedBalance] = {}
        self._registry_lock = threading.Lock()
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    @property
    def strategies(self) -> list[str]:
        return list(self._strategies)

    def strategy(self, strategy_id: str) -> StrategyConfig:
        try:
            return self._strategies[strategy_id]
        except KeyError:
            raise ValidationError(
                f"Unknown strategy '{strategy_id}'", field="strategy_id", value=strategy_id
            ) from None

    def machine(self, strategy_id: str, wallet: str) -> WithdrawalStateMachine:
        """Return the state machine for a wallet and strategy, creating it once."""

        key = self._key(strategy_id, wallet)
        signer = self._require_signer(wallet)
        with self._registry_lock:
            machine = self._machines.get(key)
            if machine is None:
                machine = WithdrawalStateMachine(
                    self.strategy(strategy_id),
                    signer,
                    self.reader,
                    self.dispatcher,
                    settings=self.settings,
                )
                self._machines[key] = machine
            return machine

    def current_phase(self, strategy_id: str, wallet: str) -> WithdrawalPhase:
        return self.machine(strategy_id, wallet).phase

    def snapshot(self, strategy_id: str, wallet: str) -> WithdrawalSnapshot:
        return self.machine(strategy_id, wallet).snapshot()

    # ------------------------------------------------------------------
    # Balances and rates
    # ------------------------------------------------------------------
    async def aggregate(self, strategy_id: str, wallet: str) -> AggregatedBalance:
        strategy = self.strategy(strategy_id)
        balance = await asyncio.to_thread(self.aggregator.aggregate, strategy, wallet)
        with self._registry_lock:
            self._balances[self._key(strategy_id, wallet)] = balance
        return balance

    async def aggregate_portfolio(
        self, wallet: str, strategy_ids: Iterable[str] | None = None
    ) -> PortfolioBalance:
        selected = [self.strategy(sid) for sid in (strategy_ids or self._strategies)]
        portfolio = await asyncio.to_thread(self.aggregator.aggregate_portfolio, selected, wallet)
        with self._registry_lock:
            for balance in portfolio.balances:
                self._balances[self._key(balance.strategy_id, wallet)] = balance
        return portfolio

    async def get_rate(self, strategy_id: str) -> ExchangeRate:
        return await asyncio.to_thread(self.rates.get_rate, self.strategy(strategy_id))

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------
    async def start_withdrawal(
        self,
        strategy_id: str,
        wallet: str,
        amount: Any,
        target_asset: str,
        target_network: str | None = None,
    ) -> WithdrawalSnapshot:
        """Validate and submit the approval for a new withdrawal.

        The withdrawable balance comes from the latest aggregation for this
        wallet; one is run first when none is cached. Amount and network are
        checked before any balance is read.
        """

        machine = self.machine(strategy_id, wallet)
        machine.check_amount(amount)
        network_name = machine.target_network(target_network)
        async with self._lock_for(strategy_id, wallet):
            balance = self._cached_balance(strategy_id, wallet)
            if balance is None:
                balance = await self.aggregate(strategy_id, wallet)

            entry = balance.network(network_name)
            share_decimals = entry.decimals if entry is not None else None

            return await asyncio.to_thread(
                machine.start,
                amount,
                target_asset,
                balance.withdrawable,
                target_network,
                share_decimals=share_decimals,
            )

    async def confirm_withdrawal(self, strategy_id: str, wallet: str) -> WithdrawalSnapshot:
        machine = self.machine(strategy_id, wallet)
        async with self._lock_for(strategy_id, wallet):
            return await asyncio.to_thread(machine.confirm_withdraw)

    async def poll_withdrawal(
        self, strategy_id: str, wallet: str, timeout: float | None = None
    ) -> WithdrawalSnapshot:
        """Wait for the outstanding transaction of the current phase.

        Returns once the phase moves on, or when ``timeout`` elapses with the
        transaction still confirming. There is no timeout by default.
        """

        machine = self.machine(strategy_id, wallet)
        loop = asyncio.get_running_loop()
        started = loop.time()

        async with self._lock_for(strategy_id, wallet):
            snapshot = machine.snapshot()
            while snapshot.phase in _PENDING_PHASES:
                if snapshot.phase is WithdrawalPhase.APPROVING:
                    snapshot = await asyncio.to_thread(machine.check_approval)
                else:
                    snapshot = await asyncio.to_thread(machine.check_withdrawal)
                if snapshot.phase not in _PENDING_PHASES:
                    break
                if timeout is not None and loop.time() - started >= timeout:
                    logger.info("Withdrawal %s still %s", strategy_id, snapshot.phase.value)
                    break
                await asyncio.sleep(self.settings.receipt_poll_interval)

        if snapshot.phase is WithdrawalPhase.SUCCEEDED:
            self._after_withdrawal(strategy_id, wallet)
        return snapshot

    async def withdraw(
        self,
        strategy_id: str,
        wallet: str,
        amount: Any,
        target_asset: str,
        target_network: str | None = None,
    ) -> WithdrawalSnapshot:
        """Run approve, confirmation and the withdrawal request end to end."""

        await self.start_withdrawal(strategy_id, wallet, amount, target_asset, target_network)
        snapshot = await self.poll_withdrawal(strategy_id, wallet)
        if snapshot.phase is not WithdrawalPhase.APPROVED:
            return snapshot
        await self.confirm_withdrawal(strategy_id, wallet)
        return await self.poll_withdrawal(strategy_id, wallet)

    async def reset(self, strategy_id: str, wallet: str, *, force: bool = False) -> WithdrawalSnapshot:
        machine = self.machine(strategy_id, wallet)
        async with self._lock_for(strategy_id, wallet):
            return machine.reset(force=force)

    async def on_amount_changed(self, strategy_id: str, wallet: str, amount: Any) -> Decimal | None:
        machine = self.machine(strategy_id, wallet)
        async with self._lock_for(strategy_id, wallet):
            return await asyncio.to_thread(machine.on_amount_changed, amount)

    async def on_asset_changed(self, strategy_id: str, wallet: str, asset: str) -> Decimal | None:
        machine = self.machine(strategy_id, wallet)
        async with self._lock_for(strategy_id, wallet):
            return await asyncio.to_thread(machine.on_asset_changed, asset)

    async def on_network_changed(
        self, strategy_id: str, wallet: str, network: str
    ) -> Decimal | None:
        machine = self.machine(strategy_id, wallet)
        async with self._lock_for(strategy_id, wallet):
            return await asyncio.to_thread(machine.on_network_changed, network)

    async def switch_wallet_network(self, strategy_id: str, network: str) -> int:
        """Ask the wallet to switch to ``network`` and return its chain id."""

        signer = self._require_signer()
        chain_id = self.strategy(strategy_id).network(network).chain_id
        await asyncio.to_thread(signer.switch_network, chain_id)
        return chain_id

    # ------------------------------------------------------------------
    # Ledger and cancellation
    # ------------------------------------------------------------------
    async def list_requests(self, strategy_id: str, wallet: str) -> LedgerSnapshot:
        strategy = self.strategy(strategy_id)
        return await asyncio.to_thread(self.ledger.list_requests, strategy.vault_address, wallet)

    async def cancel(
        self,
        strategy_id: str,
        request_id: str,
        network: str | None = None,
        *,
        receipt_timeout: float | None = None,
    ) -> CancelResult:
        signer = self._require_signer()
        strategy = self.strategy(strategy_id)
        async with self._lock_for(strategy_id, signer.address):
            result = await asyncio.to_thread(
                self.cancellation.cancel,
                strategy,
                signer,
                request_id,
                network,
                receipt_timeout=receipt_timeout,
            )
        if result.confirmed:
            self._invalidate(strategy_id, signer.address)
        return result

    async def aclose(self) -> None:
        """Wait for background ledger refreshes to finish."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _after_withdrawal(self, strategy_id: str, wallet: str) -> None:
        self._invalidate(strategy_id, wallet)
        strategy = self.strategy(strategy_id)
        task = asyncio.get_running_loop().create_task(
            asyncio.to_thread(self.ledger.refresh_cache, strategy.vault_address, wallet)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _invalidate(self, strategy_id: str, wallet: str) -> None:
        with self._registry_lock:
            self._balances.pop(self._key(strategy_id, wallet), None)
        self.rates.invalidate(strategy_id)

    def _cached_balance(self, strategy_id: str, wallet: str) -> AggregatedBalance | None:
        with self._registry_lock:
            return self._balances.get(self._key(strategy_id, wallet))

    def _lock_for(self, strategy_id: str, wallet: str) -> asyncio.Lock:
        key = self._key(strategy_id, wallet)
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            return lock

    def _require_signer(self, wallet: str | None = None) -> WalletSigner:
        if self.signer is None:
            raise ValidationError("No wallet signer configured", field="signer")
        if wallet is not None and not same_address(wallet, self.signer.address):
            raise ValidationError(
                f"Wallet {wallet} is not the connected signer {self.signer.address}",
                field="wallet",
                value=wallet,
            )
        return self.signer

    def _key(self, strategy_id: str, wallet: str) -> tuple[str, str]:
        return (to_checksum(wallet, field="wallet"), strategy_id)
