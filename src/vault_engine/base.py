"""Wallet signer interface used by the transaction dispatcher."""

from abc import ABC, abstractmethod
from typing import Any

from web3.types import ChecksumAddress


class WalletSigner(ABC):
    """A wallet that signs transactions and exposes its active network.

    Implementations signal a user refusing to sign by raising an exception
    carrying EIP-1193 code 4001 (or ``UserRejected`` directly).
    """

    @property
    @abstractmethod
    def address(self) -> ChecksumAddress:
        pass

    @property
    @abstractmethod
    def chain_id(self) -> int | None:
        pass

    @abstractmethod
    def sign_transaction(self, transaction: dict[str, Any]) -> bytes:
        pass

    @abstractmethod
    def switch_network(self, chain_id: int) -> None:
        pass
