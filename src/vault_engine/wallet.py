"""Private-key backed wallet signer."""

from __future__ import annotations

import logging
from typing import Any, cast

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3.types import ChecksumAddress

from .base import WalletSigner
from .exceptions import ValidationError

logger = logging.getLogger(__name__)


class LocalWallet(WalletSigner):
    """Sign transactions with a local key.

    The active network is tracked in memory: ``switch_network`` always
    succeeds and later signatures are checked against it.
    """

    def __init__(self, private_key: str, chain_id: int | None = None):
        try:
            self._account = cast(LocalAccount, Account.from_key(private_key))
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                "Failed to derive signer account from provided private key",
                field="private_key",
                details={"error": str(exc)},
            ) from exc
        self._chain_id = chain_id

    @property
    def address(self) -> ChecksumAddress:
        return self._account.address

    @property
    def chain_id(self) -> int | None:
        return self._chain_id

    def switch_network(self, chain_id: int) -> None:
        if chain_id != self._chain_id:
            logger.info("Wallet %s switching to chain %s", self.address, chain_id)
        self._chain_id = chain_id

    def sign_transaction(self, transaction: dict[str, Any]) -> bytes:
        tx_chain = transaction.get("chainId")
        if tx_chain is not None and self._chain_id is not None and tx_chain != self._chain_id:
            raise ValidationError(
                "Transaction chain does not match the wallet's active chain",
                field="chainId",
                value=tx_chain,
            )
        signed = self._account.sign_transaction(transaction)
        return bytes(signed.raw_transaction)
