"""Transaction build, submission and receipt handling."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from eth_typing import HexStr
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound

from .base import WalletSigner
from .constants import DEFAULT_RECEIPT_POLL_INTERVAL
from .exceptions import (
    EndpointUnavailable,
    TransactionError,
    TransactionFailed,
    UserRejected,
)
from .rpc.pool import EndpointPool
from .types import TxResult
from .utils import is_already_known, is_user_rejection, serialise_receipt, to_checksum

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContractCall:
    """A contract function invocation: target, ABI, function name and arguments."""

    address: str
    abi: Sequence[dict[str, Any]]
    function: str
    args: tuple[Any, ...] = ()

    def bind(self, web3: Web3) -> Any:
        contract = web3.eth.contract(address=to_checksum(self.address), abi=list(self.abi))
        return getattr(contract.functions, self.function)(*self.args)


class TransactionDispatcher:
    """Encapsulate contract transaction submission and receipt handling.

    Transactions are signed once by the wallet and the same raw bytes are
    broadcast through the endpoint pool, so retrying on a fallback endpoint
    can never produce a second transaction. A node answering "already known"
    counts as a successful broadcast.
    """

    def __init__(
        self,
        pool: EndpointPool,
        *,
        poll_interval: float = DEFAULT_RECEIPT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._pool = pool
        self._poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    def simulate(self, network: str, sender: str, call: ContractCall) -> Any:
        """Dry-run ``call`` with ``eth_call``; a revert raises TransactionFailed."""

        sender_address = to_checksum(sender, field="sender")
        try:
            return self._pool.call(
                network,
                lambda web3: call.bind(web3).call({"from": sender_address}),
                label=f"simulate {call.function}",
                passthrough=(ContractLogicError,),
            )
        except ContractLogicError as exc:
            raise TransactionFailed(
                f"Simulation of {call.function} reverted: {exc}",
                details={"function": call.function, "args": list(call.args)},
            ) from exc

    def submit(
        self,
        network: str,
        chain_id: int,
        signer: WalletSigner,
        call: ContractCall,
        *,
        action: str,
    ) -> HexStr:
        """Build, sign and broadcast ``call``; return the transaction hash."""

        sender = signer.address

        def _build(web3: Web3) -> dict[str, Any]:
            nonce = web3.eth.get_transaction_count(sender, "pending")
            return dict(
                call.bind(web3).build_transaction(
                    {"from": sender, "nonce": nonce, "chainId": chain_id}
                )
            )

        try:
            transaction = self._pool.call(
                network,
                _build,
                label=f"build {call.function}",
                passthrough=(ContractLogicError,),
            )
        except ContractLogicError as exc:
            raise TransactionFailed(
                f"Transaction for {action} would revert: {exc}",
                details={"function": call.function, "args": list(call.args)},
            ) from exc

        logger.info("Dispatching %s via %s on %s", action, call.function, network)
        try:
            raw = signer.sign_transaction(transaction)
        except UserRejected:
            raise
        except Exception as exc:
            if is_user_rejection(exc):
                raise UserRejected(f"Signature for {action} rejected by user") from exc
            raise TransactionError(
                f"Failed to sign transaction for {action}",
                details={"function": call.function, "error": str(exc)},
            ) from exc

        tx_hash = HexStr(Web3.keccak(raw).to_0x_hex())

        def _broadcast(web3: Web3) -> None:
            try:
                web3.eth.send_raw_transaction(raw)
            except Exception as exc:
                if not is_already_known(exc):
                    raise
                logger.debug("Transaction %s already known to %s", tx_hash, network)

        self._pool.call(network, _broadcast, label=f"broadcast {call.function}")
        logger.info("Transaction sent for action=%s hash=%s", action, tx_hash)
        return tx_hash

    # ------------------------------------------------------------------
    # Receipts
    # ------------------------------------------------------------------
    def get_receipt(self, network: str, tx_hash: HexStr) -> TxResult | None:
        """Return the mined result, or ``None`` while the transaction is pending."""

        def _read(web3: Web3) -> Any:
            try:
                return web3.eth.get_transaction_receipt(HexBytes(tx_hash))
            except TransactionNotFound:
                return None

        receipt = self._pool.call(network, _read, label="getTransactionReceipt")
        if not receipt:
            return None

        block_number = receipt.get("blockNumber")
        logger.info("Transaction mined hash=%s block=%s status=%s", tx_hash, block_number, receipt.get("status"))
        return TxResult(
            tx_hash=tx_hash,
            status=int(receipt.get("status", 0)),
            block_number=block_number,
            receipt=serialise_receipt(receipt),
        )

    def wait(self, network: str, tx_hash: HexStr, timeout: float | None = None) -> TxResult | None:
        """Poll for a receipt; ``None`` means still pending when ``timeout`` ran out.

        Without a timeout the wait lasts until the transaction is mined.
        Endpoint outages while polling do not fail the transaction.
        """

        started = self._clock()
        while True:
            try:
                result = self.get_receipt(network, tx_hash)
            except EndpointUnavailable as exc:
                logger.warning("Receipt lookup for %s failed, still waiting: %s", tx_hash, exc)
                result = None
            if result is not None:
                return result
            if timeout is not None and self._clock() - started >= timeout:
                logger.info("Transaction %s still confirming after %.1fs", tx_hash, timeout)
                return None
            self._sleep(self._poll_interval)
