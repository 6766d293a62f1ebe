"""Cancellation of pending withdrawal requests."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from .abi import SOLVER_ABI
from .base import WalletSigner
from .config import EngineSettings, StrategyConfig
from .exceptions import RequestNotFound, TransactionFailed, ValidationError, WrongNetwork
from .ledger import RequestLedgerClient
from .transactions import ContractCall, TransactionDispatcher
from .types import CancelResult
from .utils import explorer_tx_url, same_address

logger = logging.getLogger(__name__)


class CancellationFlow:
    """Cancel a pending request using the struct stored in the ledger.

    Only entries from the last fetched pending list can be cancelled. A
    cancellation counts as confirmed once a fresh ledger read no longer lists
    the request as pending.
    """

    def __init__(
        self,
        ledger: RequestLedgerClient,
        dispatcher: TransactionDispatcher,
        *,
        settings: EngineSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._settings = settings or EngineSettings()
        self._sleep = sleep

    def cancel(
        self,
        strategy: StrategyConfig,
        signer: WalletSigner,
        request_id: str,
        network: str | None = None,
        *,
        receipt_timeout: float | None = None,
    ) -> CancelResult:
        wallet = signer.address
        snapshot = self._ledger.last_snapshot(strategy.vault_address, wallet)
        entry = snapshot.find_pending(request_id) if snapshot is not None else None
        if entry is None:
            raise RequestNotFound(
                request_id,
                details={"vault": strategy.vault_address, "wallet": wallet},
            )

        target = self._target_network(strategy, network)
        if signer.chain_id != target.chain_id:
            raise WrongNetwork(
                f"Wallet is on chain {signer.chain_id}, switch to {target.name} ({target.chain_id})",
                expected_chain_id=target.chain_id,
                actual_chain_id=signer.chain_id,
            )

        payload = entry.as_request_tuple()
        if not same_address(entry.user, wallet):
            raise ValidationError(
                f"Request {request_id} belongs to {entry.user}, not {wallet}",
                field="user",
                value=entry.user,
            )

        call = ContractCall(
            address=strategy.solver_address,
            abi=SOLVER_ABI,
            function="cancelOnChainWithdraw",
            args=(payload,),
        )
        logger.info("Cancelling request %s on %s", request_id, target.name)
        tx_hash = self._dispatcher.submit(
            target.name, target.chain_id, signer, call, action="cancelOnChainWithdraw"
        )

        result = self._dispatcher.wait(target.name, tx_hash, timeout=receipt_timeout)
        if result is not None and not result.succeeded:
            raise TransactionFailed(
                f"Cancellation of request {request_id} reverted",
                tx_hash=tx_hash,
                details={"request_id": request_id},
            )

        if self._settings.cancel_refetch_delay > 0:
            self._sleep(self._settings.cancel_refetch_delay)
        refreshed = self._ledger.list_requests(strategy.vault_address, wallet)
        confirmed = refreshed.ok and refreshed.find_pending(request_id) is None
        if confirmed:
            logger.info("Request %s no longer pending after cancel %s", request_id, tx_hash)
        else:
            logger.warning(
                "Request %s not confirmed cancelled yet (tx %s, ledger error=%s)",
                request_id,
                tx_hash,
                refreshed.error,
            )

        return CancelResult(
            request_id=request_id,
            tx_hash=tx_hash,
            confirmed=confirmed,
            ledger=refreshed,
            tx_url=explorer_tx_url(target.explorer_url, tx_hash),
        )

    def _target_network(self, strategy: StrategyConfig, network: str | None):
        if network is None:
            candidates = strategy.ordered_withdrawable_networks
            if not candidates:
                raise ValidationError(
                    f"Strategy '{strategy.strategy_id}' has no withdrawable network",
                    field="network",
                )
            network = candidates[0]
        if not strategy.is_withdrawable(network):
            raise ValidationError(
                f"Requests cannot be cancelled on '{network}'", field="network", value=network
            )
        return strategy.network(network)
