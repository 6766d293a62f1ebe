"""Ordered RPC endpoint fallback per network."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, TypeVar

from web3 import HTTPProvider, Web3

from ..config import StrategyConfig
from ..constants import DEFAULT_REQUEST_TIMEOUT
from ..exceptions import EndpointUnavailable, RateLimited, ValidationError
from ..utils import is_rate_limit_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

Web3Factory = Callable[[str, float], Web3]


def build_web3(rpc_url: str, timeout: float) -> Web3:
    provider = HTTPProvider(rpc_url, request_kwargs={"timeout": timeout})
    return Web3(provider)


class EndpointPool:
    """Try each endpoint of a network in order until one call succeeds.

    Every logical call starts from the first endpoint again; the pool never
    remembers which endpoint answered last. Web3 instances are created lazily,
    one per URL, and shared by all callers.
    """

    def __init__(
        self,
        networks: Mapping[str, Sequence[str]] | None = None,
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        web3_factory: Web3Factory | None = None,
    ) -> None:
        self.request_timeout = request_timeout
        self._web3_factory = web3_factory or build_web3
        self._endpoints: dict[str, list[str]] = {}
        self._web3: dict[str, Web3] = {}
        self._lock = threading.Lock()
        for name, urls in (networks or {}).items():
            self.add_network(name, urls)

    @classmethod
    def from_strategies(
        cls,
        strategies: Iterable[StrategyConfig],
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        web3_factory: Web3Factory | None = None,
    ) -> EndpointPool:
        pool = cls(request_timeout=request_timeout, web3_factory=web3_factory)
        for strategy in strategies:
            for network in strategy.networks.values():
                pool.add_network(network.name, network.rpc_endpoints)
        return pool

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------
    def add_network(self, network: str, urls: Sequence[str]) -> None:
        """Register endpoints for a network, appending unseen URLs in order."""

        with self._lock:
            known = self._endpoints.setdefault(network, [])
            for url in urls:
                if url not in known:
                    known.append(url)

    def endpoints(self, network: str) -> list[str]:
        try:
            return list(self._endpoints[network])
        except KeyError:
            raise ValidationError(
                f"No RPC endpoints registered for network '{network}'",
                field="network",
                value=network,
            ) from None

    @property
    def networks(self) -> list[str]:
        return list(self._endpoints)

    def web3_for(self, url: str) -> Web3:
        with self._lock:
            web3 = self._web3.get(url)
            if web3 is None:
                web3 = self._web3_factory(url, self.request_timeout)
                self._web3[url] = web3
            return web3

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------
    def call(
        self,
        network: str,
        operation: Callable[[Web3], T],
        *,
        label: str = "rpc call",
        passthrough: tuple[type[BaseException], ...] = (),
    ) -> T:
        """Run ``operation`` against each endpoint of ``network`` until one succeeds.

        Exceptions listed in ``passthrough`` are raised immediately instead of
        moving on to the next endpoint. When every endpoint fails the pool
        raises ``RateLimited`` if any endpoint reported rate limiting, otherwise
        ``EndpointUnavailable``.
        """

        urls = self.endpoints(network)
        attempts: list[dict[str, Any]] = []
        rate_limited = False

        for index, url in enumerate(urls):
            try:
                result = operation(self.web3_for(url))
            except passthrough:
                raise
            except Exception as exc:
                limited = is_rate_limit_error(exc)
                rate_limited = rate_limited or limited
                attempts.append({"endpoint": url, "error": str(exc), "rate_limited": limited})
                logger.warning(
                    "%s failed on %s endpoint %d/%d (%s): %s",
                    label,
                    network,
                    index + 1,
                    len(urls),
                    url,
                    exc,
                )
                continue

            if index:
                logger.info("%s on %s served by fallback endpoint %s", label, network, url)
            return result

        error_cls = RateLimited if rate_limited else EndpointUnavailable
        raise error_cls(
            f"All {len(urls)} endpoint(s) failed for {label} on {network}",
            network=network,
            attempts=attempts,
        )
