"""Incremental synchronization of recent transactions."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from near_explorer.core.exceptions import AllProvidersFailedError, ApplicationError, ExplorerError
from near_explorer.core.models import Block, Transaction
from near_explorer.rpc.cache import TransactionCache

logger = logging.getLogger(__name__)


class BlockSource(Protocol):
    """Where the synchronizer gets blocks and their transactions from."""

    async def get_block(self, block_id: int | str) -> Block:
        """Fetch (or serve from cache) one block."""
        ...

    async def get_block_transactions(self, block: Block) -> tuple[list[Transaction], bool]:
        """Return the block's transactions and whether every chunk was read."""
        ...


class SyncCursor:
    """
    Highest block height already folded into the transaction cache.

    The cursor never moves backwards; ``advance`` with a lower height is
    ignored.

    """

    def __init__(self) -> None:
        self._height: int | None = None

    @property
    def last_processed_height(self) -> int | None:
        return self._height

    @property
    def initialized(self) -> bool:
        return self._height is not None

    def advance(self, height: int) -> None:
        if self._height is None or height > self._height:
            self._height = height

    def reset(self) -> None:
        self._height = None


@dataclass
class SyncResult:
    """
    Outcome of scanning one height range.

    Attributes
    ----------
    from_height : int
        First height requested
    to_height : int
        Last height requested
    covered_to : int | None
        Last height of the contiguous fully-scanned prefix, None if even the
        first height failed
    blocks_fetched : int
        Blocks scanned without transport failure
    failed_heights : list[int]
        Heights left unscanned because of transport failures
    transactions : list[Transaction]
        Transactions found in the range, newest block first
    transactions_added : int
        Transactions not previously in the cache

    """

    from_height: int
    to_height: int
    covered_to: int | None = None
    blocks_fetched: int = 0
    failed_heights: list[int] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)
    transactions_added: int = 0

    @property
    def complete(self) -> bool:
        return not self.failed_heights


class TransactionSync:
    """
    Windowed accumulation of recent transactions.

    The first sync scans the last ``window`` blocks up to the latest height;
    later syncs scan only ``(last_processed_height, latest]``. Blocks are
    fetched in ascending batches of ``concurrency`` with ``batch_delay``
    seconds between batches. Each batch is merged into the cache as soon as
    it completes, and the cursor only advances through heights whose every
    chunk was read, so a block skipped by a transport failure is scanned
    again next time. ``reset`` starts a new generation: a scan begun before
    it stops at its next batch boundary without merging or moving the cursor.

    Parameters
    ----------
    source : BlockSource
        Block and chunk access
    cache : TransactionCache
        Destination of merged transactions
    window : int
        Number of blocks scanned on first activation
    concurrency : int
        Blocks fetched concurrently per batch
    batch_delay : float
        Pause between batches, in seconds
    sleep : Callable[[float], Awaitable[None]] | None
        Sleep used between batches, ``asyncio.sleep`` if None

    """

    def __init__(
        self,
        source: BlockSource,
        cache: TransactionCache,
        window: int = 10,
        concurrency: int = 1,
        batch_delay: float = 0.2,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        if window < 1:
            msg = "window must be at least 1"
            raise ValueError(msg)
        if concurrency < 1:
            msg = "concurrency must be at least 1"
            raise ValueError(msg)
        self.source = source
        self.cache = cache
        self.window = window
        self.concurrency = concurrency
        self.batch_delay = batch_delay
        self.cursor = SyncCursor()
        self._sleep = sleep or asyncio.sleep
        self._lock = asyncio.Lock()
        self._generation = 0

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    def needs_sync(self, latest_height: int) -> bool:
        """True if ``latest_height`` is beyond the processed cursor."""
        current = self.cursor.last_processed_height
        return current is None or latest_height > current

    def reset(self) -> None:
        """Forget the cursor and cached transactions, e.g. after a network switch."""
        self._generation += 1
        self.cursor.reset()
        self.cache.clear()

    async def sync_to(self, latest_height: int) -> SyncResult | None:
        """
        Fold new blocks up to ``latest_height`` into the cache.

        Parameters
        ----------
        latest_height : int
            Latest known chain height

        Returns
        -------
        SyncResult | None
            None if there was nothing new or a sync is already running

        """
        if self._lock.locked():
            logger.debug("Sync already in progress, skipping height %d", latest_height)
            return None

        async with self._lock:
            current = self.cursor.last_processed_height
            if current is None:
                start = max(0, latest_height - self.window + 1)
                logger.info("Initial sync: fetching %d blocks (%d to %d)", latest_height - start + 1, start, latest_height)
            elif latest_height <= current:
                return None
            else:
                start = current + 1

            return await self.scan(start, latest_height, advance_cursor=True)

    async def scan(self, from_height: int, to_height: int, *, advance_cursor: bool = False) -> SyncResult:
        """
        Scan an inclusive height range and merge what was found.

        Parameters
        ----------
        from_height : int
            First height
        to_height : int
            Last height
        advance_cursor : bool
            Move the sync cursor over the covered prefix after each batch

        Returns
        -------
        SyncResult
            Coverage and transactions of the range

        """
        result = SyncResult(from_height=from_height, to_height=to_height)
        if to_height < from_height:
            return result

        generation = self._generation
        covered = from_height - 1
        gap = False
        found: list[Transaction] = []

        for batch_start in range(from_height, to_height + 1, self.concurrency):
            if self._generation != generation:
                return self._abandon(result)
            batch = list(range(batch_start, min(batch_start + self.concurrency, to_height + 1)))
            outcomes = await asyncio.gather(*(self._fetch_height(height) for height in batch))
            if self._generation != generation:
                return self._abandon(result)

            batch_transactions: list[Transaction] = []
            for height, transactions, ok in outcomes:
                batch_transactions.extend(transactions)
                if ok:
                    result.blocks_fetched += 1
                else:
                    result.failed_heights.append(height)
                    gap = True
                if ok and not gap and height == covered + 1:
                    covered = height

            result.transactions_added += self.cache.merge(batch_transactions)
            found.extend(batch_transactions)
            if advance_cursor and covered >= from_height:
                self.cursor.advance(covered)

            if batch[-1] < to_height and self.batch_delay > 0:
                await self._sleep(self.batch_delay)

        result.covered_to = covered if covered >= from_height else None
        result.transactions = sorted(found, key=lambda tx: tx.block_height, reverse=True)

        if found:
            logger.info("Found %d transactions in blocks %d-%d", len(found), from_height, to_height)
        if result.failed_heights:
            logger.warning(
                "Blocks %d-%d: %d scanned, %d failed (%s)",
                from_height,
                to_height,
                result.blocks_fetched,
                len(result.failed_heights),
                ", ".join(str(h) for h in result.failed_heights[:10]),
            )
        return result

    @staticmethod
    def _abandon(result: SyncResult) -> SyncResult:
        # Anything found belongs to the state that was reset
        logger.info("Sync state was reset, abandoning scan of blocks %d-%d", result.from_height, result.to_height)
        result.covered_to = None
        result.transactions = []
        result.transactions_added = 0
        return result

    async def _fetch_height(self, height: int) -> tuple[int, list[Transaction], bool]:
        try:
            block = await self.source.get_block(height)
        except ApplicationError as e:
            # Authoritative answer, e.g. a skipped height with no block
            logger.debug("No block at height %d: %s", height, e)
            return height, [], True
        except AllProvidersFailedError as e:
            logger.debug("Failed to fetch block %d: %s", height, e)
            return height, [], False

        transactions, complete = await self.source.get_block_transactions(block)
        return height, transactions, complete


class LatestHeightPoller:
    """
    Polls the latest block on a fixed interval and triggers syncs.

    A sync is launched only when the new height is beyond the cursor and no
    sync is running, so ticks never overlap an in-flight window fetch.

    Parameters
    ----------
    fetch_latest : Callable[[], Awaitable[Block]]
        Returns the latest block
    sync : TransactionSync
        Synchronizer to trigger
    interval : float
        Seconds between ticks
    on_block : Callable[[Block], None] | None
        Called with every polled latest block

    """

    def __init__(
        self,
        fetch_latest: Callable[[], Awaitable[Block]],
        sync: TransactionSync,
        interval: float = 3.0,
        on_block: Callable[[Block], None] | None = None,
    ) -> None:
        self.fetch_latest = fetch_latest
        self.sync = sync
        self.interval = interval
        self.on_block = on_block
        self.latest_height: int | None = None
        self._sync_task: asyncio.Task | None = None

    async def tick(self) -> asyncio.Task | None:
        """
        Run one poll.

        Returns
        -------
        asyncio.Task | None
            The sync task started by this tick, if any

        """
        block = await self.fetch_latest()
        self.latest_height = block.header.height
        if self.on_block is not None:
            self.on_block(block)

        if self._sync_task is not None and not self._sync_task.done():
            return None
        if self.sync.is_syncing or not self.sync.needs_sync(block.header.height):
            return None
        self._sync_task = asyncio.create_task(self.sync.sync_to(block.header.height))
        self._sync_task.add_done_callback(self._log_sync_failure)
        return self._sync_task

    @staticmethod
    def _log_sync_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if isinstance(error, ExplorerError):
            logger.warning("Transaction sync failed: %s", error)
        elif error is not None:
            logger.error("Transaction sync crashed", exc_info=error)

    async def run(self, stop: asyncio.Event | None = None, max_ticks: int | None = None) -> None:
        """
        Poll until ``stop`` is set, ``max_ticks`` is reached, or the task is cancelled.

        Explorer errors of a tick or of a sync task are logged and polling
        continues. On a normal stop the running sync is awaited; on
        cancellation it is cancelled too, and batches already merged stay in
        the cache.

        """
        stop = stop or asyncio.Event()
        ticks = 0
        try:
            while not stop.is_set() and (max_ticks is None or ticks < max_ticks):
                ticks += 1
                try:
                    await self.tick()
                except ExplorerError as e:
                    logger.warning("Polling latest block failed: %s", e)
                if stop.is_set() or (max_ticks is not None and ticks >= max_ticks):
                    break
                try:
                    await asyncio.wait_for(stop.wait(), timeout=self.interval)
                except TimeoutError:
                    pass
        except BaseException:
            await self.cancel_sync()
            raise
        await self.wait_for_sync()

    async def wait_for_sync(self) -> None:
        """Wait for the running sync task, if any; a failure is only logged."""
        task = self._sync_task
        self._sync_task = None
        if task is not None:
            await asyncio.wait({task})

    async def cancel_sync(self) -> None:
        """Cancel the running sync task, if any, and wait for it to unwind."""
        task = self._sync_task
        self._sync_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
