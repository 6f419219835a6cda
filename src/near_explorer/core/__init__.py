"""Core functionality including models, errors, registry, and sync."""

from near_explorer.core.exceptions import (
    AllProvidersFailedError,
    ApplicationError,
    ExplorerError,
    NoProvidersAvailableError,
    ProviderNotFoundError,
    TransactionNotFoundError,
    TransportError,
    ValidationError,
)
from near_explorer.core.models import (
    Block,
    Chunk,
    FailoverEvent,
    FailoverEventType,
    Network,
    NetworkStatus,
    Provider,
    ProviderHealth,
    ProviderInfo,
    Transaction,
)

__all__ = [
    "AllProvidersFailedError",
    "ApplicationError",
    "Block",
    "Chunk",
    "ExplorerError",
    "FailoverEvent",
    "FailoverEventType",
    "Network",
    "NetworkStatus",
    "NoProvidersAvailableError",
    "Provider",
    "ProviderHealth",
    "ProviderInfo",
    "ProviderNotFoundError",
    "Transaction",
    "TransactionNotFoundError",
    "TransportError",
    "ValidationError",
]
