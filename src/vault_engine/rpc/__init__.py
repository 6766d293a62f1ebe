"""RPC access helpers: endpoint fallback, pacing and caching."""

from .cache import TTLCache
from .pacing import Pacer
from .pool import EndpointPool, build_web3

__all__ = ["EndpointPool", "Pacer", "TTLCache", "build_web3"]
