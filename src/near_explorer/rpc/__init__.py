"""RPC layer with transport, failover, retry, health tracking, and caching."""

from near_explorer.rpc.cache import BlockCache, TransactionCache
from near_explorer.rpc.failover import FailoverClient
from near_explorer.rpc.health import HealthMonitor
from near_explorer.rpc.retry import RetryConfig
from near_explorer.rpc.transport import HttpTransport, Transport, TransportResponse

__all__ = [
    "BlockCache",
    "FailoverClient",
    "HealthMonitor",
    "HttpTransport",
    "RetryConfig",
    "TransactionCache",
    "Transport",
    "TransportResponse",
]
