"""Data models for providers, health records, and chain entities."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Network(StrEnum):
    """Network partition a provider belongs to."""

    MAINNET = "mainnet"
    TESTNET = "testnet"
    LOCALNET = "localnet"
    CUSTOM = "custom"


class FailoverEventType(StrEnum):
    """Kind of event emitted by the failover engine."""

    PROVIDER_SWITCH = "provider-switch"
    RETRY = "retry"
    ERROR = "error"
    SUCCESS = "success"


class Provider(BaseModel):
    """
    One RPC endpoint.

    Attributes
    ----------
    id : str
        Stable key, unique within a network
    name : str
        Display label
    url : str
        Endpoint address
    network : Network
        Network partition
    enabled : bool
        Whether the endpoint takes part in rotation
    priority : int
        Lower values are tried first
    is_custom : bool
        True for user-added endpoints

    """

    id: str
    name: str
    url: str
    network: Network
    enabled: bool = True
    priority: int = 0
    is_custom: bool = False


class ProviderHealth(BaseModel):
    """
    Advisory health record for a provider.

    Attributes
    ----------
    provider_id : str
        Provider the record belongs to
    is_healthy : bool
        Outcome of the last request or probe
    last_checked : int
        Epoch milliseconds of the last update
    response_time : int | None
        Observed latency in milliseconds
    error : str | None
        Error text of the last failure

    """

    provider_id: str
    is_healthy: bool = True
    last_checked: int = 0
    response_time: int | None = None
    error: str | None = None


class FailoverEvent(BaseModel):
    """Notification emitted by the failover engine for observers."""

    type: FailoverEventType
    provider_id: str | None = None
    provider_url: str | None = None
    attempt: int | None = None
    error: str | None = None


class ProviderInfo(BaseModel):
    """Current provider together with its health record."""

    provider: Provider | None = None
    health: ProviderHealth | None = None


class BlockHeader(BaseModel):
    """Subset of a NEAR block header used by the explorer."""

    model_config = ConfigDict(extra="allow")

    height: int
    hash: str
    prev_hash: str = ""
    timestamp: int = 0
    timestamp_nanosec: str = "0"
    gas_price: str = "0"
    total_supply: str = "0"


class ChunkHeader(BaseModel):
    """Chunk reference carried inside a block."""

    model_config = ConfigDict(extra="allow")

    chunk_hash: str
    shard_id: int = 0


class Block(BaseModel):
    """
    A NEAR block as returned by the ``block`` RPC method.

    Blocks are immutable once produced, so instances are safe to cache
    without expiry.

    """

    model_config = ConfigDict(extra="allow")

    author: str = ""
    header: BlockHeader
    chunks: list[ChunkHeader] = Field(default_factory=list)

    @property
    def height(self) -> int:
        """Block height."""
        return self.header.height

    @property
    def hash(self) -> str:
        """Block hash."""
        return self.header.hash


class Chunk(BaseModel):
    """A chunk as returned by the ``chunk`` RPC method."""

    model_config = ConfigDict(extra="allow")

    author: str = ""
    header: dict[str, Any] = Field(default_factory=dict)
    transactions: list[dict[str, Any]] = Field(default_factory=list)
    receipts: list[dict[str, Any]] = Field(default_factory=list)


class Transaction(BaseModel):
    """
    Transaction discovered while scanning a block's chunks.

    Attributes
    ----------
    hash : str
        Transaction hash (identity key)
    signer_id : str
        Sending account
    receiver_id : str
        Receiving account
    actions : list[Any]
        Raw action list
    block_height : int
        Height of the including block
    block_hash : str
        Hash of the including block
    timestamp : int
        Block timestamp
    timestamp_nanosec : str
        Block timestamp in nanoseconds, as a string

    """

    hash: str
    signer_id: str
    receiver_id: str
    actions: list[Any] = Field(default_factory=list)
    block_height: int
    block_hash: str
    timestamp: int = 0
    timestamp_nanosec: str = "0"


class SyncInfo(BaseModel):
    """Sync section of a ``status`` response."""

    model_config = ConfigDict(extra="allow")

    latest_block_hash: str
    latest_block_height: int
    latest_block_time: str = ""
    syncing: bool = False


class NetworkStatus(BaseModel):
    """Response of the ``status`` RPC method."""

    model_config = ConfigDict(extra="allow")

    chain_id: str
    sync_info: SyncInfo
    version: dict[str, Any] = Field(default_factory=dict)


class CacheStats(BaseModel):
    """Sizes of the explorer caches."""

    cached_blocks: int = 0
    cached_chunks: int = 0
    cached_transactions: int = 0
    last_processed_height: int | None = None
