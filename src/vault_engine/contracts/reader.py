"""Typed read-only contract calls routed through the endpoint pool."""

from __future__ import annotations

import logging

from web3 import Web3

from ..abi import ERC20_ABI, RATE_PROVIDER_ABI, SOLVER_ABI
from ..rpc.pool import EndpointPool
from ..utils import to_checksum

logger = logging.getLogger(__name__)


class ContractReader:
    """Stateless reads against ERC20, solver and rate-provider contracts.

    Each method is one pool round trip and returns the raw integer the
    contract reports. Conversion to decimals is left to callers, which must
    use the token's own ``decimals()``.
    """

    def __init__(self, pool: EndpointPool):
        self._pool = pool

    @property
    def pool(self) -> EndpointPool:
        return self._pool

    def balance_of(self, network: str, token: str, owner: str) -> int:
        token_address = to_checksum(token, field="token")
        owner_address = to_checksum(owner, field="owner")

        def _read(web3: Web3) -> int:
            contract = web3.eth.contract(address=token_address, abi=ERC20_ABI)
            return int(contract.functions.balanceOf(owner_address).call())

        return self._pool.call(network, _read, label=f"balanceOf({token_address})")

    def decimals(self, network: str, token: str) -> int:
        token_address = to_checksum(token, field="token")

        def _read(web3: Web3) -> int:
            contract = web3.eth.contract(address=token_address, abi=ERC20_ABI)
            return int(contract.functions.decimals().call())

        return self._pool.call(network, _read, label=f"decimals({token_address})")

    def allowance(self, network: str, token: str, owner: str, spender: str) -> int:
        token_address = to_checksum(token, field="token")
        owner_address = to_checksum(owner, field="owner")
        spender_address = to_checksum(spender, field="spender")

        def _read(web3: Web3) -> int:
            contract = web3.eth.contract(address=token_address, abi=ERC20_ABI)
            return int(contract.functions.allowance(owner_address, spender_address).call())

        return self._pool.call(network, _read, label=f"allowance({token_address})")

    def get_rate(self, network: str, rate_provider: str, quote_token: str) -> int:
        provider_address = to_checksum(rate_provider, field="rate_provider")
        quote_address = to_checksum(quote_token, field="quote_token")

        def _read(web3: Web3) -> int:
            contract = web3.eth.contract(address=provider_address, abi=RATE_PROVIDER_ABI)
            return int(contract.functions.getRateInQuoteSafe(quote_address).call())

        return self._pool.call(network, _read, label="getRateInQuoteSafe")

    def preview_assets_out(
        self, network: str, solver: str, asset: str, shares: int, discount: int
    ) -> int:
        solver_address = to_checksum(solver, field="solver")
        asset_address = to_checksum(asset, field="asset")

        def _read(web3: Web3) -> int:
            contract = web3.eth.contract(address=solver_address, abi=SOLVER_ABI)
            return int(
                contract.functions.previewAssetsOut(asset_address, int(shares), int(discount)).call()
            )

        return self._pool.call(network, _read, label="previewAssetsOut")

    def is_paused(self, network: str, solver: str) -> bool:
        solver_address = to_checksum(solver, field="solver")

        def _read(web3: Web3) -> bool:
            contract = web3.eth.contract(address=solver_address, abi=SOLVER_ABI)
            return bool(contract.functions.isPaused().call())

        return self._pool.call(network, _read, label="isPaused")
