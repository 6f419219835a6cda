"""Explorer service: cached chain queries on top of the failover client."""

import logging
from collections.abc import Callable
from typing import Any

from near_explorer.config import ExplorerConfig
from near_explorer.core.exceptions import (
    AllProvidersFailedError,
    ApplicationError,
    TransactionNotFoundError,
    ValidationError,
)
from near_explorer.core.models import (
    Block,
    CacheStats,
    Chunk,
    FailoverEvent,
    NetworkStatus,
    ProviderInfo,
    Transaction,
)
from near_explorer.core.registry import ProviderRegistry
from near_explorer.core.storage import JsonFileStore
from near_explorer.core.sync import LatestHeightPoller, SyncResult, TransactionSync
from near_explorer.rpc.cache import BlockCache, TransactionCache
from near_explorer.rpc.failover import FailoverClient, transactions_from_chunk
from near_explorer.rpc.health import HealthMonitor
from near_explorer.rpc.retry import RetryConfig
from near_explorer.rpc.transport import HttpTransport, Transport

logger = logging.getLogger(__name__)

TRANSACTION_SEARCH_DEPTH = 100
# Range scans may cover this many sync windows
RANGE_WINDOWS = 10


class Explorer:
    """
    Query surface for explorer front ends.

    Blocks and chunks are served cache-first and cached without expiry.
    Recent transactions are accumulated incrementally by a
    ``TransactionSync``. Switching the registry to another network clears
    every chain cache and the sync cursor, since heights and hashes of one
    network mean nothing on another.

    Parameters
    ----------
    registry : ProviderRegistry
        Provider registry
    transport : Transport
        Transport for RPC calls and probes
    retry_config : RetryConfig | None
        Per-provider retry budget
    request_timeout : float
        Timeout of one RPC attempt, in seconds
    probe_timeout : float
        Timeout of a health probe, in seconds
    round_robin : bool
        Spread successive calls across providers
    window : int
        Blocks scanned on the first transaction sync
    max_transactions : int
        Cap on cached transactions
    concurrency : int
        Blocks fetched concurrently per sync batch
    batch_delay : float
        Seconds between sync batches
    max_blocks : int
        Cap on cached blocks
    max_chunks : int
        Cap on cached chunks
    sleep : Callable | None
        Sleep used for backoff and batch delays, for tests

    """

    def __init__(
        self,
        registry: ProviderRegistry,
        transport: Transport,
        retry_config: RetryConfig | None = None,
        request_timeout: float = 30.0,
        probe_timeout: float = 10.0,
        *,
        round_robin: bool = False,
        window: int = 10,
        max_transactions: int = 2000,
        concurrency: int = 1,
        batch_delay: float = 0.2,
        max_blocks: int = 1000,
        max_chunks: int = 2000,
        sleep: Callable | None = None,
    ) -> None:
        self.registry = registry
        self.transport = transport
        self.health = HealthMonitor(registry, transport, probe_timeout=probe_timeout)
        self.client = FailoverClient(
            registry,
            transport,
            self.health,
            retry_config=retry_config,
            request_timeout=request_timeout,
            round_robin=round_robin,
            sleep=sleep,
        )
        self.block_cache = BlockCache(max_blocks=max_blocks, max_chunks=max_chunks)
        self.transaction_cache = TransactionCache(max_size=max_transactions)
        self.sync = TransactionSync(
            self,
            self.transaction_cache,
            window=window,
            concurrency=concurrency,
            batch_delay=batch_delay,
            sleep=sleep,
        )
        self._block_epoch = 0
        self._network = registry.get_selected_network()
        self._unsubscribe_registry = registry.subscribe(self._on_registry_change)

    @classmethod
    def from_config(cls, config: ExplorerConfig, transport: Transport | None = None) -> "Explorer":
        """
        Build an explorer with file-backed registry state.

        Parameters
        ----------
        config : ExplorerConfig
            Loaded configuration
        transport : Transport | None
            Transport override. An ``HttpTransport`` is built if None.

        Returns
        -------
        Explorer
            Ready-to-use explorer

        """
        registry = ProviderRegistry(JsonFileStore(config.state_path))
        registry.scrub_bad_providers()
        if config.network is not None and config.network != registry.get_selected_network():
            registry.set_selected_network(config.network)

        if transport is None:
            transport = HttpTransport(
                timeout=config.request_timeout,
                proxy_url=config.proxy.url if config.proxy.enabled else None,
            )
        retry = RetryConfig(
            max_attempts=config.retry.max_attempts,
            initial_backoff=config.retry.initial_backoff,
            multiplier=config.retry.multiplier,
            max_backoff=config.retry.max_backoff,
        )
        return cls(
            registry,
            transport,
            retry_config=retry,
            request_timeout=config.request_timeout,
            probe_timeout=config.probe_timeout,
            round_robin=config.round_robin,
            window=config.sync.window,
            max_transactions=config.sync.max_transactions,
            concurrency=config.sync.concurrency,
            batch_delay=config.sync.batch_delay,
            max_blocks=config.sync.max_blocks,
            max_chunks=config.sync.max_chunks,
        )

    def _on_registry_change(self) -> None:
        network = self.registry.get_selected_network()
        if network != self._network:
            logger.info("Network switched from %s to %s, clearing chain caches", self._network, network)
            self._network = network
            self.clear()

    # Point lookups

    async def get_status(self) -> NetworkStatus:
        """Node status of the current provider."""
        return await self.client.get_status()

    async def get_block(self, block_id: int | str) -> Block:
        """
        Get a block by height or hash, from cache when possible.

        Parameters
        ----------
        block_id : int | str
            Block height or block hash

        Returns
        -------
        Block
            The block

        """
        cached = self.block_cache.get_block(block_id)
        if cached is not None:
            return cached
        epoch = self._block_epoch
        block = await self.client.get_block(block_id)
        if epoch == self._block_epoch:
            self.block_cache.put_block(block)
        return block

    async def get_latest_block(self) -> Block:
        """Fetch the latest final block; it is cached under its height and hash."""
        epoch = self._block_epoch
        block = await self.client.get_latest_block()
        if epoch == self._block_epoch:
            self.block_cache.put_block(block)
        return block

    async def get_chunk(self, chunk_hash: str) -> Chunk:
        """Get a chunk by hash, from cache when possible."""
        cached = self.block_cache.get_chunk(chunk_hash)
        if cached is not None:
            return cached
        epoch = self._block_epoch
        chunk = await self.client.get_chunk(chunk_hash)
        if epoch == self._block_epoch:
            self.block_cache.put_chunk(chunk_hash, chunk)
        return chunk

    async def get_account(self, account_id: str) -> dict[str, Any]:
        """View an account at the latest final block."""
        return await self.client.get_account(account_id)

    # Transactions

    async def get_block_transactions(self, block: Block) -> tuple[list[Transaction], bool]:
        """
        Resolve a block's transactions through its chunks.

        Parameters
        ----------
        block : Block
            Block to resolve

        Returns
        -------
        tuple[list[Transaction], bool]
            Transactions found and whether every chunk was read. A chunk
            lost to transport failures makes the result incomplete; a chunk
            the node reports as an error is skipped.

        """
        transactions: list[Transaction] = []
        complete = True
        for chunk_header in block.chunks:
            try:
                chunk = await self.get_chunk(chunk_header.chunk_hash)
            except ApplicationError as e:
                logger.warning("Skipping chunk %s of block %d: %s", chunk_header.chunk_hash, block.height, e)
                continue
            except AllProvidersFailedError as e:
                logger.warning("Failed to fetch chunk %s of block %d: %s", chunk_header.chunk_hash, block.height, e)
                complete = False
                continue
            transactions.extend(transactions_from_chunk(block, chunk))
        return transactions, complete

    async def get_transactions_from_block(self, block_id: int | str) -> list[Transaction]:
        """Transactions of one block."""
        block = await self.get_block(block_id)
        transactions, _ = await self.get_block_transactions(block)
        return transactions

    async def sync_recent_transactions(self, latest_height: int | None = None) -> SyncResult | None:
        """
        Fold newly available blocks into the recent-transaction cache.

        Parameters
        ----------
        latest_height : int | None
            Latest chain height. Fetched from the network if None.

        Returns
        -------
        SyncResult | None
            None if there was nothing new or a sync is already running

        """
        if latest_height is None:
            latest_height = (await self.get_latest_block()).height
        return await self.sync.sync_to(latest_height)

    def get_recent_transactions(self, account: str | None = None) -> list[Transaction]:
        """Cached recent transactions, newest first, optionally filtered by account."""
        if account:
            return self.transaction_cache.filter_by_account(account)
        return self.transaction_cache.items()

    @property
    def max_range_blocks(self) -> int:
        return self.sync.window * RANGE_WINDOWS

    async def get_transactions_in_range(self, from_height: int, to_height: int) -> list[Transaction]:
        """
        Transactions of an inclusive height range.

        The range is scanned through the block and chunk caches and merged
        into the recent-transaction cache; the sync cursor is not moved. At
        most ``max_range_blocks`` blocks are scanned per call.

        Raises
        ------
        ValidationError
            If the range is empty, negative or too large

        """
        if from_height < 0 or to_height < from_height:
            msg = f"Invalid height range {from_height}-{to_height}"
            raise ValidationError(msg)
        size = to_height - from_height + 1
        if size > self.max_range_blocks:
            limit = self.max_range_blocks
            msg = f"Height range {from_height}-{to_height} spans {size} blocks, the limit is {limit}"
            raise ValidationError(msg)
        result = await self.sync.scan(from_height, to_height)
        return result.transactions

    async def find_transaction(
        self,
        tx_hash: str,
        account_id: str | None = None,
        search_depth: int = TRANSACTION_SEARCH_DEPTH,
    ) -> dict[str, Any]:
        """
        Fetch a transaction's full status.

        Without a signer account id, the recent-transaction cache is checked
        first and then the last ``search_depth`` blocks are searched newest
        first to discover the signer.

        Raises
        ------
        TransactionNotFoundError
            If the transaction is not in the searched blocks

        """
        if account_id:
            return await self.client.get_transaction_status(tx_hash, account_id)

        cached = self.transaction_cache.get(tx_hash)
        if cached is not None:
            return await self.client.get_transaction_status(tx_hash, cached.signer_id)

        latest = await self.get_latest_block()
        lowest = max(0, latest.height - search_depth)
        for height in range(latest.height, lowest - 1, -1):
            try:
                block = await self.get_block(height)
            except (ApplicationError, AllProvidersFailedError) as e:
                logger.debug("Skipping block %d during transaction search: %s", height, e)
                continue
            transactions, _ = await self.get_block_transactions(block)
            for tx in transactions:
                if tx.hash == tx_hash:
                    return await self.client.get_transaction_status(tx_hash, tx.signer_id)

        msg = (
            f"Transaction {tx_hash} not found in the last {search_depth} blocks. "
            "Provide the sender account id to look up older transactions."
        )
        raise TransactionNotFoundError(msg)

    def poller(self, interval: float = 3.0, on_block: Callable[[Block], None] | None = None) -> LatestHeightPoller:
        """Build a poller that keeps the recent-transaction cache in sync."""
        return LatestHeightPoller(self.get_latest_block, self.sync, interval=interval, on_block=on_block)

    # Provider management

    def get_current_provider_info(self) -> ProviderInfo:
        """Current provider of the rotation with its health record."""
        return self.client.get_current_provider_info()

    def select_provider(self, provider_id: str) -> bool:
        """Point the rotation at an enabled provider; False if not enabled."""
        return self.client.select_provider(provider_id)

    def on_failover_event(self, listener: Callable[[FailoverEvent], None]) -> Callable[[], None]:
        """Subscribe to failover events; returns an unsubscribe function."""
        return self.client.on_failover_event(listener)

    # Cache management

    def stats(self) -> CacheStats:
        """Current cache sizes and sync cursor."""
        return CacheStats(
            cached_blocks=self.block_cache.block_count,
            cached_chunks=self.block_cache.chunk_count,
            cached_transactions=len(self.transaction_cache),
            last_processed_height=self.sync.cursor.last_processed_height,
        )

    def clear_blocks(self) -> None:
        """Drop cached blocks and chunks, including those of requests still in flight."""
        self._block_epoch += 1
        self.block_cache.clear()

    def clear_transactions(self) -> None:
        """Drop cached transactions and restart the sync window."""
        self.sync.reset()

    def clear(self) -> None:
        """Drop every chain cache."""
        self.clear_blocks()
        self.clear_transactions()

    async def aclose(self) -> None:
        """Detach from the registry and close the transport if it supports it."""
        self._unsubscribe_registry()
        self.client.close()
        close = getattr(self.transport, "aclose", None)
        if close is not None:
            await close()
