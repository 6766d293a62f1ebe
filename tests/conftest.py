from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest
import requests

from vault_engine.base import WalletSigner
from vault_engine.config import EngineSettings, StrategyConfig
from vault_engine.exceptions import EndpointUnavailable
from vault_engine.transactions import ContractCall
from vault_engine.types import TxResult

# Digit-only addresses are already in checksum form.
ADDRESSES = SimpleNamespace(
    wallet="0x1111111111111111111111111111111111111111",
    vault="0x2222222222222222222222222222222222222222",
    solver="0x3333333333333333333333333333333333333333",
    rate_provider="0x4444444444444444444444444444444444444444",
    share_base="0x5555555555555555555555555555555555555555",
    share_eth="0x6666666666666666666666666666666666666666",
    usdc_eth="0x7777777777777777777777777777777777777777",
    other="0x9999999999999999999999999999999999999999",
)


def strategy_data() -> dict[str, Any]:
    return {
        "vault_address": ADDRESSES.vault,
        "solver_address": ADDRESSES.solver,
        "rate_provider_address": ADDRESSES.rate_provider,
        "rate_network": "ethereum",
        "quote_asset": {"symbol": "USDC", "address": ADDRESSES.usdc_eth, "decimals": 6},
        "share_decimals": 18,
        "withdrawable_networks": ["ethereum"],
        "networks": {
            "base": {
                "chain_id": 8453,
                "rpc_endpoints": ["https://base-1", "https://base-2"],
                "vault_share_address": ADDRESSES.share_base,
            },
            "ethereum": {
                "chain_id": 1,
                "rpc_endpoints": ["https://eth-1", "https://eth-2"],
                "vault_share_address": ADDRESSES.share_eth,
                "explorer_url": "https://etherscan.io",
                "withdraw_assets": [
                    {"symbol": "USDC", "address": ADDRESSES.usdc_eth, "decimals": 6},
                ],
            },
        },
    }


class FakeReader:
    """ContractReader stand-in keyed by network name."""

    def __init__(self) -> None:
        self.balances: dict[str, Any] = {"base": 100 * 10**18, "ethereum": 40 * 10**18}
        self.decimals_by_token: dict[str, Any] = {
            ADDRESSES.share_base.lower(): 18,
            ADDRESSES.share_eth.lower(): 18,
            ADDRESSES.usdc_eth.lower(): 6,
        }
        self.rate: Any = 1_050_000
        self.paused: Any = False
        self.allowance_value: Any = None
        self.preview_value: Any = 49_500_000
        self.calls: list[tuple[str, str]] = []

    @staticmethod
    def _unwrap(value: Any) -> Any:
        if isinstance(value, BaseException):
            raise value
        return value

    def balance_of(self, network: str, token: str, owner: str) -> int:
        self.calls.append(("balanceOf", network))
        return self._unwrap(self.balances[network])

    def decimals(self, network: str, token: str) -> int:
        self.calls.append(("decimals", network))
        return self._unwrap(self.decimals_by_token[token.lower()])

    def get_rate(self, network: str, rate_provider: str, quote_token: str) -> int:
        self.calls.append(("getRateInQuoteSafe", network))
        return self._unwrap(self.rate)

    def allowance(self, network: str, token: str, owner: str, spender: str) -> int:
        self.calls.append(("allowance", network))
        if self.allowance_value is None:
            return 2**256 - 1
        return self._unwrap(self.allowance_value)

    def is_paused(self, network: str, solver: str) -> bool:
        self.calls.append(("isPaused", network))
        return self._unwrap(self.paused)

    def preview_assets_out(
        self, network: str, solver: str, asset: str, shares: int, discount: int
    ) -> int:
        self.calls.append(("previewAssetsOut", network))
        return self._unwrap(self.preview_value)


class FakeSigner(WalletSigner):
    def __init__(self, address: str = ADDRESSES.wallet, chain_id: int | None = 1) -> None:
        self._address = address
        self._chain_id = chain_id
        self.switches: list[int] = []

    @property
    def address(self) -> Any:
        return self._address

    @property
    def chain_id(self) -> int | None:
        return self._chain_id

    def sign_transaction(self, transaction: dict[str, Any]) -> bytes:
        return b"\x02signed"

    def switch_network(self, chain_id: int) -> None:
        self.switches.append(chain_id)
        self._chain_id = chain_id


class FakeDispatcher:
    """TransactionDispatcher stand-in recording submissions.

    Receipts default to a successful status; set ``statuses[tx_hash]`` to 0
    for a revert or ``None`` for a transaction that is still pending.
    """

    def __init__(self) -> None:
        self.submitted: list[SimpleNamespace] = []
        self.submit_errors: dict[str, BaseException] = {}
        self.simulate_error: BaseException | None = None
        self.simulated: list[str] = []
        self.statuses: dict[str, int | None] = {}
        self.receipt_error: BaseException | None = None

    def submit(
        self, network: str, chain_id: int, signer: WalletSigner, call: ContractCall, *, action: str
    ) -> str:
        error = self.submit_errors.get(call.function)
        if error is not None:
            raise error
        tx_hash = f"0x{len(self.submitted) + 1:064x}"
        self.submitted.append(
            SimpleNamespace(
                network=network,
                chain_id=chain_id,
                function=call.function,
                args=call.args,
                address=call.address,
                tx_hash=tx_hash,
            )
        )
        return tx_hash

    def simulate(self, network: str, sender: str, call: ContractCall) -> None:
        self.simulated.append(call.function)
        if self.simulate_error is not None:
            raise self.simulate_error

    def get_receipt(self, network: str, tx_hash: str) -> TxResult | None:
        if self.receipt_error is not None:
            raise self.receipt_error
        status = self.statuses.get(tx_hash, 1)
        if status is None:
            return None
        return TxResult(tx_hash=tx_hash, status=status, block_number=100)

    def wait(self, network: str, tx_hash: str, timeout: float | None = None) -> TxResult | None:
        return self.get_receipt(network, tx_hash)

    @property
    def functions(self) -> list[str]:
        return [entry.function for entry in self.submitted]


@pytest.fixture
def addresses() -> SimpleNamespace:
    return ADDRESSES


@pytest.fixture
def strategy() -> StrategyConfig:
    return StrategyConfig.from_dict("syUSD", strategy_data())


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(
        network_delay=0,
        strategy_delay=0,
        rate_limit_backoff=0,
        cancel_refetch_delay=0,
        receipt_poll_interval=0,
    )


@pytest.fixture
def reader() -> FakeReader:
    return FakeReader()


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def unavailable() -> EndpointUnavailable:
    return EndpointUnavailable("all endpoints down", network="base")


def ledger_entry(request_id: str = "req-1", **overrides: Any) -> dict[str, Any]:
    """A pending request record shaped like the ledger's ``queueData`` rows."""

    entry = {
        "request_id": request_id,
        "nonce": 46,
        "user": ADDRESSES.wallet,
        "withdraw_asset_address": ADDRESSES.usdc_eth,
        "amount_of_shares": str(10 * 10**18),
        "amount_of_assets": "10500000",
        "creation_time": 1_700_000_000,
        "seconds_to_maturity": 0,
        "seconds_to_deadline": 3600,
        "transaction_hash": "0x" + "ab" * 32,
    }
    entry.update(overrides)
    return entry


class DummyResponse:
    def __init__(self, payload: Any = None, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error", response=self)

    def json(self) -> Any:
        if isinstance(self._payload, BaseException):
            raise self._payload
        return self._payload


class DummySession:
    """requests.Session stand-in answering from a queue of responses per endpoint."""

    def __init__(self) -> None:
        self.responses: dict[str, list[Any]] = {}
        self.requests: list[tuple[str, dict[str, Any], float]] = []

    def queue(self, endpoint: str, *responses: Any) -> None:
        self.responses.setdefault(endpoint, []).extend(responses)

    def get(self, url: str, params: dict[str, Any] | None = None, timeout: float | None = None):
        self.requests.append((url, dict(params or {}), timeout))
        endpoint = url.rsplit("/", 1)[-1]
        queued = self.responses.get(endpoint) or [DummyResponse({"result": {}})]
        response = queued.pop(0) if len(queued) > 1 else queued[0]
        if isinstance(response, BaseException):
            raise response
        return response


@pytest.fixture
def session() -> DummySession:
    return DummySession()
