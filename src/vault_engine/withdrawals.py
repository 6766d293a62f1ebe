"""Approve then request-withdraw state machine for one wallet and strategy."""

from __future__ import annotations

import logging
import threading
from decimal import Decimal
from typing import Any

from .abi import ERC20_ABI, SOLVER_ABI
from .base import WalletSigner
from .config import AssetConfig, EngineSettings, NetworkConfig, StrategyConfig
from .constants import FailureReason, WithdrawalPhase
from .contracts.reader import ContractReader
from .exceptions import (
    EndpointUnavailable,
    InvalidAmount,
    InvalidTransition,
    RateLimited,
    TransactionFailed,
    UserRejected,
    ValidationError,
    VaultEngineError,
    WithdrawalInProgress,
    WrongNetwork,
)
from .transactions import ContractCall, TransactionDispatcher
from .types import TxResult, WithdrawalRequest, WithdrawalSnapshot
from .utils import explorer_tx_url, from_base_units, parse_amount, to_base_units, to_checksum

logger = logging.getLogger(__name__)


def failure_reason_for(exc: BaseException) -> FailureReason:
    if isinstance(exc, UserRejected):
        return FailureReason.USER_REJECTED
    if isinstance(exc, RateLimited):
        return FailureReason.RATE_LIMITED
    if isinstance(exc, EndpointUnavailable):
        return FailureReason.ENDPOINT_UNAVAILABLE
    return FailureReason.TRANSACTION_FAILED


class WithdrawalStateMachine:
    """Drive one withdrawal through approve, request and confirmation.

    Phases only move forward: IDLE, APPROVING, APPROVED, WITHDRAWING,
    CONFIRMING, then SUCCEEDED. FAILED can be reached from any phase that has
    a transaction outstanding. Terminal phases stay put until ``reset()`` so
    the caller can keep showing the outcome.

    Phase changes happen under a lock; network calls happen outside it while
    the phase already marks the flow as busy, which makes a concurrent
    ``start`` fail with ``WithdrawalInProgress``.
    """

    def __init__(
        self,
        strategy: StrategyConfig,
        signer: WalletSigner,
        reader: ContractReader,
        dispatcher: TransactionDispatcher,
        *,
        settings: EngineSettings | None = None,
    ):
        self.strategy = strategy
        self.signer = signer
        self._reader = reader
        self._dispatcher = dispatcher
        self._settings = settings or EngineSettings()
        self._lock = threading.Lock()

        self._phase = WithdrawalPhase.IDLE
        self._request: WithdrawalRequest | None = None
        self._approval_tx: str | None = None
        self._withdraw_tx: str | None = None
        self._failure_reason: FailureReason | None = None
        self._error: str | None = None
        self._preview: Decimal | None = None

        # Draft inputs the preview is computed from while idle.
        self._draft_amount: Decimal | None = None
        self._draft_asset: str | None = None
        self._draft_network: str | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def phase(self) -> WithdrawalPhase:
        return self._phase

    @property
    def wallet(self) -> str:
        return self.signer.address

    def target_network(self, name: str | None = None) -> str:
        """Network a withdrawal would be submitted on for ``name`` (or the draft)."""
        with self._lock:
            return self._resolve_network(name or self._draft_network).name

    def snapshot(self) -> WithdrawalSnapshot:
        with self._lock:
            explorer = None
            if self._request is not None:
                explorer = self.strategy.network(self._request.network).explorer_url
            return WithdrawalSnapshot(
                phase=self._phase,
                request=self._request,
                approval_tx_hash=self._approval_tx,
                withdraw_tx_hash=self._withdraw_tx,
                failure_reason=self._failure_reason,
                error=self._error,
                preview_assets_out=self._preview,
                approval_tx_url=explorer_tx_url(explorer, self._approval_tx),
                withdraw_tx_url=explorer_tx_url(explorer, self._withdraw_tx),
            )

    # ------------------------------------------------------------------
    # Approve
    # ------------------------------------------------------------------
    def start(
        self,
        amount: Any,
        target_asset: str,
        withdrawable: Decimal,
        target_network: str | None = None,
        *,
        share_decimals: int | None = None,
    ) -> WithdrawalSnapshot:
        """Validate the request and submit the share approval for the solver.

        Validation failures (amount, asset, network, wallet chain) raise
        without touching the state. ``share_decimals`` should be the on-chain
        value read by the balance aggregator; the configured value is used
        when it is not supplied.
        """

        with self._lock:
            self._require_idle()
            network = self._resolve_network(target_network or self._draft_network)
            asset = self._resolve_asset(network, target_asset)
            decimals = network.share_decimals if share_decimals is None else share_decimals
            value, shares = self._validate_amount(amount, withdrawable, decimals)
            self._require_chain(network)

            request = WithdrawalRequest(
                strategy_id=self.strategy.strategy_id,
                wallet=self.signer.address,
                network=network.name,
                asset=asset.address,
                asset_symbol=asset.symbol,
                amount=value,
                shares=shares,
                discount=self._settings.discount,
                deadline_seconds=self._settings.withdraw_deadline_seconds,
            )
            self._clear_outcome()
            self._request = request
            self._draft_amount, self._draft_asset, self._draft_network = value, asset.address, network.name
            self._phase = WithdrawalPhase.APPROVING

        logger.info(
            "Withdrawal %s: approving %s shares (%d units) for solver on %s",
            self.strategy.strategy_id,
            value,
            shares,
            network.name,
        )
        call = ContractCall(
            address=network.vault_share_address,
            abi=ERC20_ABI,
            function="approve",
            args=(self.strategy.solver_address, shares),
        )
        try:
            tx_hash = self._dispatcher.submit(
                network.name, network.chain_id, self.signer, call, action="approve"
            )
        except VaultEngineError as exc:
            self._fail(exc)
            raise

        with self._lock:
            self._approval_tx = tx_hash
        return self.snapshot()

    def check_approval(self) -> WithdrawalSnapshot:
        """Look for the approval receipt once; no receipt leaves the phase as is."""

        request, tx_hash = self._outstanding(WithdrawalPhase.APPROVING, self._approval_tx)
        try:
            result = self._dispatcher.get_receipt(request.network, tx_hash)
        except EndpointUnavailable as exc:
            logger.warning("Approval %s still confirming, receipt lookup failed: %s", tx_hash, exc)
            return self.snapshot()
        return self._settle_approval(result)

    def wait_for_approval(self, timeout: float | None = None) -> WithdrawalSnapshot:
        request, tx_hash = self._outstanding(WithdrawalPhase.APPROVING, self._approval_tx)
        return self._settle_approval(self._dispatcher.wait(request.network, tx_hash, timeout))

    # ------------------------------------------------------------------
    # Withdraw request
    # ------------------------------------------------------------------
    def confirm_withdraw(self) -> WithdrawalSnapshot:
        """Run pre-flight checks and submit ``requestOnChainWithdraw``."""

        with self._lock:
            if self._phase is not WithdrawalPhase.APPROVED or self._request is None:
                raise InvalidTransition(
                    f"Cannot request a withdrawal while {self._phase.value}",
                    phase=self._phase.value,
                )
            request = self._request
            network = self.strategy.network(request.network)
            self._require_chain(network)
            self._phase = WithdrawalPhase.WITHDRAWING

        self._refresh_preview(network.name, request.asset, request.shares)

        call = ContractCall(
            address=self.strategy.solver_address,
            abi=SOLVER_ABI,
            function="requestOnChainWithdraw",
            args=(request.asset, request.shares, request.discount, request.deadline_seconds),
        )
        try:
            self._preflight(network, request, call)
            tx_hash = self._dispatcher.submit(
                network.name, network.chain_id, self.signer, call, action="requestOnChainWithdraw"
            )
        except VaultEngineError as exc:
            if self._phase is WithdrawalPhase.WITHDRAWING:
                self._fail(exc)
            raise

        with self._lock:
            self._withdraw_tx = tx_hash
            self._phase = WithdrawalPhase.CONFIRMING
        logger.info("Withdrawal %s: request submitted %s", self.strategy.strategy_id, tx_hash)
        return self.snapshot()

    def check_withdrawal(self) -> WithdrawalSnapshot:
        request, tx_hash = self._outstanding(WithdrawalPhase.CONFIRMING, self._withdraw_tx)
        try:
            result = self._dispatcher.get_receipt(request.network, tx_hash)
        except EndpointUnavailable as exc:
            logger.warning("Withdrawal %s still confirming, receipt lookup failed: %s", tx_hash, exc)
            return self.snapshot()
        return self._settle_withdrawal(result)

    def wait_for_withdrawal(self, timeout: float | None = None) -> WithdrawalSnapshot:
        request, tx_hash = self._outstanding(WithdrawalPhase.CONFIRMING, self._withdraw_tx)
        return self._settle_withdrawal(self._dispatcher.wait(request.network, tx_hash, timeout))

    # ------------------------------------------------------------------
    # Reset and preview
    # ------------------------------------------------------------------
    def reset(self, *, force: bool = False) -> WithdrawalSnapshot:
        """Return to IDLE from a terminal phase.

        An in-flight flow is only abandoned with ``force=True``; its
        transaction may still be mined.
        """

        with self._lock:
            in_flight = self._phase is not WithdrawalPhase.IDLE and not self._phase.is_terminal
            if in_flight and not force:
                raise WithdrawalInProgress(
                    f"Withdrawal is {self._phase.value}; pass force=True to abandon it",
                    phase=self._phase.value,
                )
            if in_flight:
                logger.warning(
                    "Abandoning %s withdrawal for %s", self._phase.value, self.strategy.strategy_id
                )
            self._phase = WithdrawalPhase.IDLE
            self._request = None
            self._clear_outcome()
        return self.snapshot()

    def on_amount_changed(self, amount: Any) -> Decimal | None:
        with self._lock:
            self._require_idle(action="change the amount")
            value = parse_amount(amount)
            if value < 0:
                raise InvalidAmount("Amount cannot be negative", field="amount", value=amount)
            self._draft_amount = value
        return self.preview()

    def on_asset_changed(self, asset: str) -> Decimal | None:
        with self._lock:
            self._require_idle(action="change the asset")
            network = self._resolve_network(self._draft_network)
            self._draft_asset = self._resolve_asset(network, asset).address
        return self.preview()

    def on_network_changed(self, network_name: str) -> Decimal | None:
        with self._lock:
            self._require_idle(action="change the network")
            network = self._resolve_network(network_name)
            self._draft_network = network.name
            if self._draft_asset is not None and network.withdraw_assets:
                if network.find_asset(self._draft_asset) is None:
                    self._draft_asset = None
        return self.preview()

    @staticmethod
    def check_amount(amount: Any) -> Decimal:
        """Parse a withdrawal amount, rejecting anything that is not positive."""

        value = parse_amount(amount)
        if value <= 0:
            raise InvalidAmount("Amount must be greater than zero", field="amount", value=amount)
        return value

    def preview(self) -> Decimal | None:
        """Compute ``previewAssetsOut`` for the current inputs; advisory only."""

        with self._lock:
            if self._request is not None:
                network_name, asset, shares = (
                    self._request.network,
                    self._request.asset,
                    self._request.shares,
                )
            else:
                if self._draft_amount is None or self._draft_asset is None:
                    self._preview = None
                    return None
                network = self._resolve_network(self._draft_network)
                network_name, asset = network.name, self._draft_asset
                try:
                    shares = to_base_units(self._draft_amount, network.share_decimals)
                except InvalidAmount:
                    self._preview = None
                    return None
        return self._refresh_preview(network_name, asset, shares)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _refresh_preview(self, network: str, asset: str, shares: int) -> Decimal | None:
        if shares <= 0:
            value = None
        else:
            try:
                raw = self._reader.preview_assets_out(
                    network, self.strategy.solver_address, asset, shares, self._settings.discount
                )
                value = from_base_units(raw, self._asset_decimals(network, asset))
            except VaultEngineError as exc:
                logger.warning("Preview for %s on %s unavailable: %s", asset, network, exc)
                value = None
        with self._lock:
            self._preview = value
        return value

    def _asset_decimals(self, network: str, asset: str) -> int:
        configured = self.strategy.network(network).find_asset(asset)
        if configured is not None and configured.decimals is not None:
            return configured.decimals
        return self._reader.decimals(network, asset)

    def _preflight(self, network: NetworkConfig, request: WithdrawalRequest, call: ContractCall) -> None:
        solver = self.strategy.solver_address
        try:
            paused = self._reader.is_paused(network.name, solver)
        except VaultEngineError as exc:
            # Not every solver exposes isPaused; simulation still catches a paused one.
            logger.warning("Pause check for solver %s on %s unavailable: %s", solver, network.name, exc)
            paused = False
        if paused:
            self._fail_with(FailureReason.SOLVER_PAUSED, "Solver is paused")
            raise TransactionFailed("Solver is paused", details={"solver": solver})

        allowance = self._reader.allowance(
            network.name, network.vault_share_address, request.wallet, solver
        )
        if allowance < request.shares:
            message = f"Approved allowance {allowance} is below the requested {request.shares} shares"
            self._fail_with(FailureReason.INSUFFICIENT_ALLOWANCE, message)
            raise TransactionFailed(
                message, details={"allowance": allowance, "required": request.shares}
            )

        self._dispatcher.simulate(network.name, request.wallet, call)

    def _settle_approval(self, result: TxResult | None) -> WithdrawalSnapshot:
        if result is None or not self._is_current(WithdrawalPhase.APPROVING, result.tx_hash):
            return self.snapshot()
        if not result.succeeded:
            exc = TransactionFailed("Approval transaction reverted", tx_hash=result.tx_hash)
            self._fail(exc)
            raise exc
        with self._lock:
            if self._phase is WithdrawalPhase.APPROVING:
                self._phase = WithdrawalPhase.APPROVED
        logger.info("Withdrawal %s: approval confirmed %s", self.strategy.strategy_id, result.tx_hash)
        return self.snapshot()

    def _settle_withdrawal(self, result: TxResult | None) -> WithdrawalSnapshot:
        if result is None or not self._is_current(WithdrawalPhase.CONFIRMING, result.tx_hash):
            return self.snapshot()
        if not result.succeeded:
            exc = TransactionFailed("Withdrawal request reverted", tx_hash=result.tx_hash)
            self._fail(exc)
            raise exc
        with self._lock:
            if self._phase is WithdrawalPhase.CONFIRMING:
                self._phase = WithdrawalPhase.SUCCEEDED
        logger.info("Withdrawal %s: request confirmed %s", self.strategy.strategy_id, result.tx_hash)
        return self.snapshot()

    def _is_current(self, phase: WithdrawalPhase, tx_hash: str) -> bool:
        """True when ``tx_hash`` is still the transaction this flow is waiting on."""

        with self._lock:
            current = self._approval_tx if phase is WithdrawalPhase.APPROVING else self._withdraw_tx
            if self._phase is phase and current is not None and current.lower() == str(tx_hash).lower():
                return True
        logger.info("Ignoring receipt for superseded transaction %s", tx_hash)
        return False

    def _outstanding(
        self, phase: WithdrawalPhase, tx_hash: str | None
    ) -> tuple[WithdrawalRequest, str]:
        with self._lock:
            if self._phase is not phase or self._request is None or tx_hash is None:
                raise InvalidTransition(
                    f"No {phase.value} transaction outstanding (phase is {self._phase.value})",
                    phase=self._phase.value,
                )
            return self._request, tx_hash

    def _fail(self, exc: VaultEngineError) -> None:
        self._fail_with(failure_reason_for(exc), str(exc))

    def _fail_with(self, reason: FailureReason, message: str) -> None:
        with self._lock:
            previous = self._phase
            self._phase = WithdrawalPhase.FAILED
            self._failure_reason = reason
            self._error = message
        logger.warning(
            "Withdrawal %s failed during %s (%s): %s",
            self.strategy.strategy_id,
            previous.value,
            reason.value,
            message,
        )

    def _clear_outcome(self) -> None:
        self._approval_tx = None
        self._withdraw_tx = None
        self._failure_reason = None
        self._error = None
        self._preview = None

    def _require_idle(self, action: str = "start a withdrawal") -> None:
        if self._phase is WithdrawalPhase.IDLE:
            return
        if self._phase.is_terminal:
            raise InvalidTransition(
                f"Cannot {action} while {self._phase.value}; reset first",
                phase=self._phase.value,
            )
        raise WithdrawalInProgress(
            f"Cannot {action}: a withdrawal is {self._phase.value}",
            phase=self._phase.value,
        )

    def _require_chain(self, network: NetworkConfig) -> None:
        active = self.signer.chain_id
        if active != network.chain_id:
            raise WrongNetwork(
                f"Wallet is on chain {active}, switch to {network.name} ({network.chain_id})",
                expected_chain_id=network.chain_id,
                actual_chain_id=active,
            )

    def _resolve_network(self, name: str | None) -> NetworkConfig:
        if name is None:
            candidates = self.strategy.ordered_withdrawable_networks
            if not candidates:
                raise ValidationError(
                    f"Strategy '{self.strategy.strategy_id}' has no withdrawable network",
                    field="target_network",
                )
            name = candidates[0]
        network = self.strategy.network(name)
        if not self.strategy.is_withdrawable(name):
            raise ValidationError(
                f"Withdrawals are not available on '{name}'", field="target_network", value=name
            )
        return network

    def _resolve_asset(self, network: NetworkConfig, asset: str) -> AssetConfig:
        if not asset:
            raise ValidationError("A target asset is required", field="target_asset")
        if network.withdraw_assets:
            match = network.find_asset(asset)
            if match is None:
                raise ValidationError(
                    f"Asset '{asset}' cannot be withdrawn on {network.name}",
                    field="target_asset",
                    value=asset,
                )
            return match
        address = to_checksum(asset, field="target_asset")
        return AssetConfig(symbol=address, address=address)

    def _validate_amount(
        self, amount: Any, withdrawable: Decimal, decimals: int
    ) -> tuple[Decimal, int]:
        value = self.check_amount(amount)
        if value > withdrawable:
            raise InvalidAmount(
                f"Amount {value} exceeds withdrawable balance {withdrawable}",
                field="amount",
                value=amount,
                details={"withdrawable": str(withdrawable)},
            )
        return value, to_base_units(value, decimals)
