"""In-memory caches for immutable chain data and accumulated transactions."""

from collections import OrderedDict
from collections.abc import Iterable

from near_explorer.core.models import Block, Chunk, Transaction


class BlockCache:
    """
    Capacity-bounded cache for blocks and chunks.

    Blocks and chunks never change once produced, so entries have no
    expiry; when the cache is full the oldest inserted entry is evicted.
    Blocks are indexed both by height and by hash.

    Parameters
    ----------
    max_blocks : int
        Maximum number of blocks kept
    max_chunks : int
        Maximum number of chunks kept

    """

    def __init__(self, max_blocks: int = 1000, max_chunks: int = 2000) -> None:
        self.max_blocks = max_blocks
        self.max_chunks = max_chunks
        self._blocks: OrderedDict[int, Block] = OrderedDict()
        self._hash_index: dict[str, int] = {}
        self._chunks: OrderedDict[str, Chunk] = OrderedDict()

    def get_block(self, block_id: int | str) -> Block | None:
        """
        Get a cached block by height or hash.

        Parameters
        ----------
        block_id : int | str
            Block height or block hash

        Returns
        -------
        Block | None
            Cached block, or None on a miss

        """
        if isinstance(block_id, int):
            return self._blocks.get(block_id)
        height = self._hash_index.get(block_id)
        return self._blocks.get(height) if height is not None else None

    def put_block(self, block: Block) -> None:
        """Store a block, evicting the oldest entries beyond capacity."""
        height = block.header.height
        if height in self._blocks:
            self._blocks.move_to_end(height)
        self._blocks[height] = block
        self._hash_index[block.header.hash] = height
        while len(self._blocks) > self.max_blocks:
            _, evicted = self._blocks.popitem(last=False)
            self._hash_index.pop(evicted.header.hash, None)

    def get_chunk(self, chunk_hash: str) -> Chunk | None:
        """Get a cached chunk by hash."""
        return self._chunks.get(chunk_hash)

    def put_chunk(self, chunk_hash: str, chunk: Chunk) -> None:
        """Store a chunk, evicting the oldest entries beyond capacity."""
        self._chunks[chunk_hash] = chunk
        self._chunks.move_to_end(chunk_hash)
        while len(self._chunks) > self.max_chunks:
            self._chunks.popitem(last=False)

    def clear_blocks(self) -> None:
        """Remove all cached blocks."""
        self._blocks.clear()
        self._hash_index.clear()

    def clear(self) -> None:
        """Remove all cached blocks and chunks."""
        self.clear_blocks()
        self._chunks.clear()

    @property
    def block_count(self) -> int:
        return len(self._blocks)

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)


class TransactionCache:
    """
    Deduplicated, size-capped set of recent transactions.

    Merges are synchronous and never suspend, so concurrent fetches that
    complete in any order cannot lose each other's updates.

    Parameters
    ----------
    max_size : int
        Number of newest transactions (by block height) kept after a merge

    """

    def __init__(self, max_size: int = 2000) -> None:
        if max_size < 1:
            msg = "max_size must be at least 1"
            raise ValueError(msg)
        self.max_size = max_size
        self._items: dict[str, Transaction] = {}

    def merge(self, transactions: Iterable[Transaction]) -> int:
        """
        Union new transactions into the cache.

        Duplicates by hash are replaced by the incoming copy. The result is
        truncated to the ``max_size`` entries with the highest block height.

        Parameters
        ----------
        transactions : Iterable[Transaction]
            Newly discovered transactions

        Returns
        -------
        int
            Number of hashes that were not cached before

        """
        combined = dict(self._items)
        added = 0
        for tx in transactions:
            if tx.hash not in combined:
                added += 1
            combined[tx.hash] = tx

        ordered = sorted(combined.values(), key=lambda tx: tx.block_height, reverse=True)
        self._items = {tx.hash: tx for tx in ordered[: self.max_size]}
        return added

    def get(self, tx_hash: str) -> Transaction | None:
        """Cached transaction by hash."""
        return self._items.get(tx_hash)

    def items(self) -> list[Transaction]:
        """All cached transactions, newest block first."""
        return list(self._items.values())

    def in_range(self, from_height: int, to_height: int) -> list[Transaction]:
        """Cached transactions with ``from_height <= block_height <= to_height``."""
        return [tx for tx in self._items.values() if from_height <= tx.block_height <= to_height]

    def filter_by_account(self, account: str) -> list[Transaction]:
        """Cached transactions whose signer or receiver contains ``account`` (case-insensitive)."""
        needle = account.lower()
        return [
            tx for tx in self._items.values() if needle in tx.signer_id.lower() or needle in tx.receiver_id.lower()
        ]

    def clear(self) -> None:
        """Remove all cached transactions."""
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, tx_hash: object) -> bool:
        return tx_hash in self._items
