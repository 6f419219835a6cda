"""Tests for the explorer service."""

import pytest

from near_explorer.config import ExplorerConfig
from near_explorer.core.exceptions import TransactionNotFoundError, ValidationError
from near_explorer.core.explorer import Explorer
from near_explorer.core.models import Network
from tests.fakes import FakeChain, FakeTransport, no_sleep, rpc_result


class ExplorerNode(FakeChain):
    """Chain fake that also answers transaction status and account queries."""

    def __call__(self, request):
        method, params = request["method"], request["params"]
        if method == "EXPERIMENTAL_tx_status":
            return rpc_result(
                request,
                {"status": {"SuccessValue": ""}, "transaction": {"hash": params[0], "signer_id": params[1]}},
            )
        if method == "query":
            return rpc_result(
                request,
                {"amount": "2000000000000000000000000", "locked": "0", "storage_usage": 182, "block_height": 9},
            )
        return super().__call__(request)


@pytest.fixture
def node():
    return ExplorerNode(latest=20)


@pytest.fixture
def transport(node):
    return FakeTransport(default=node)


@pytest.fixture
def explorer(registry, transport):
    return Explorer(registry, transport, sleep=no_sleep, batch_delay=0, window=5)


def methods(transport):
    return [method for _, method, _ in transport.calls]


@pytest.mark.asyncio
async def test_get_block_is_cache_first(explorer, transport):
    """Test that a block is fetched once and then served by height or hash."""
    block = await explorer.get_block(12)
    again = await explorer.get_block(12)
    by_hash = await explorer.get_block("block-12")

    assert again is block
    assert by_hash is block
    assert methods(transport) == ["block"]


@pytest.mark.asyncio
async def test_get_latest_block_populates_cache(explorer, transport):
    """Test that the latest block is cached under its height."""
    latest = await explorer.get_latest_block()
    transport.calls.clear()

    assert (await explorer.get_block(latest.height)) is latest
    assert transport.calls == []


@pytest.mark.asyncio
async def test_get_chunk_is_cache_first(explorer, transport):
    """Test chunk caching."""
    await explorer.get_chunk("chunk-3-0")
    await explorer.get_chunk("chunk-3-0")

    assert methods(transport) == ["chunk"]


@pytest.mark.asyncio
async def test_transactions_from_block(explorer):
    """Test resolving a block's transactions."""
    transactions = await explorer.get_transactions_from_block(7)

    assert [tx.hash for tx in transactions] == ["tx-7-0"]
    assert transactions[0].signer_id == "alice.test"


@pytest.mark.asyncio
async def test_block_transactions_report_incomplete_chunks(registry, node, transport):
    """Test that an unreachable chunk marks the result incomplete."""
    node.chunks_per_block = 2
    node.unreachable_chunks.add("chunk-7-1")
    explorer = Explorer(registry, transport, sleep=no_sleep)

    block = await explorer.get_block(7)
    transactions, complete = await explorer.get_block_transactions(block)

    assert [tx.hash for tx in transactions] == ["tx-7-0"]
    assert not complete


@pytest.mark.asyncio
async def test_recent_transactions_filtered_by_account(explorer):
    """Test the account filter on the recent cache."""
    await explorer.sync_recent_transactions(20)

    assert len(explorer.get_recent_transactions("BOB")) == 5
    assert explorer.get_recent_transactions("carol") == []


@pytest.mark.asyncio
async def test_invalid_range_is_rejected(explorer, transport):
    """Test range validation before any network activity."""
    with pytest.raises(ValidationError):
        await explorer.get_transactions_in_range(10, 5)
    with pytest.raises(ValidationError):
        await explorer.get_transactions_in_range(-1, 5)

    assert transport.calls == []


@pytest.mark.asyncio
async def test_find_transaction_with_account(explorer, transport):
    """Test direct status lookup when the signer is known."""
    result = await explorer.find_transaction("tx-1-0", "alice.test")

    assert result["transaction"]["signer_id"] == "alice.test"
    assert transport.calls == [("http://54.90.246.254:3030", "EXPERIMENTAL_tx_status", ["tx-1-0", "alice.test"])]


@pytest.mark.asyncio
async def test_find_transaction_from_recent_cache(explorer, transport):
    """Test signer discovery from cached transactions."""
    await explorer.sync_recent_transactions(20)
    transport.calls.clear()

    result = await explorer.find_transaction("tx-18-0")

    assert result["transaction"]["hash"] == "tx-18-0"
    assert methods(transport) == ["EXPERIMENTAL_tx_status"]


@pytest.mark.asyncio
async def test_find_transaction_by_block_search(explorer, transport):
    """Test signer discovery by scanning recent blocks newest first."""
    result = await explorer.find_transaction("tx-15-0")

    assert result["transaction"]["signer_id"] == "alice.test"
    block_ids = [params.get("block_id") for _, method, params in transport.calls if method == "block"]
    assert block_ids == [None, 19, 18, 17, 16, 15]


@pytest.mark.asyncio
async def test_find_transaction_not_found(explorer):
    """Test the search depth bound."""
    with pytest.raises(TransactionNotFoundError, match="last 3 blocks"):
        await explorer.find_transaction("tx-2-0", search_depth=3)


@pytest.mark.asyncio
async def test_get_account(explorer):
    """Test the account view."""
    view = await explorer.get_account("alice.test")

    assert view["storage_usage"] == 182


@pytest.mark.asyncio
async def test_network_switch_clears_caches(explorer, registry):
    """Test that chain state of one network never leaks into another."""
    await explorer.sync_recent_transactions(20)
    assert explorer.stats().cached_blocks > 0

    registry.set_selected_network(Network.MAINNET)

    stats = explorer.stats()
    assert stats.cached_blocks == 0
    assert stats.cached_chunks == 0
    assert stats.cached_transactions == 0
    assert stats.last_processed_height is None


@pytest.mark.asyncio
async def test_provider_toggle_keeps_caches(explorer, registry):
    """Test that registry changes within a network keep chain caches."""
    await explorer.sync_recent_transactions(20)

    registry.toggle_provider("localnet-default")

    assert explorer.stats().cached_transactions == 5
    assert explorer.stats().last_processed_height == 20


@pytest.mark.asyncio
async def test_stats_and_clearing(explorer):
    """Test cache statistics and clearing."""
    await explorer.sync_recent_transactions(20)

    stats = explorer.stats()
    assert stats.cached_blocks == 5
    assert stats.cached_chunks == 5
    assert stats.cached_transactions == 5
    assert stats.last_processed_height == 20

    explorer.clear_transactions()
    assert explorer.stats().cached_transactions == 0
    assert explorer.stats().last_processed_height is None
    assert explorer.stats().cached_blocks == 5

    explorer.clear_blocks()
    assert explorer.stats().cached_blocks == 0


@pytest.mark.asyncio
async def test_from_config(tmp_path, node):
    """Test wiring from configuration with file-backed state."""
    state_path = tmp_path / "state.json"
    config = ExplorerConfig(network=Network.TESTNET, state_path=state_path)

    explorer = Explorer.from_config(config, transport=FakeTransport(default=node))

    assert explorer.registry.get_selected_network() == Network.TESTNET
    assert state_path.exists()
    status = await explorer.get_status()
    assert status.sync_info.latest_block_height == 20
    await explorer.aclose()


@pytest.mark.asyncio
async def test_aclose_detaches_from_registry(explorer, registry):
    """Test that a closed explorer stops reacting to registry changes."""
    await explorer.sync_recent_transactions(20)

    await explorer.aclose()
    registry.set_selected_network(Network.MAINNET)

    assert explorer.stats().cached_transactions == 5


@pytest.mark.asyncio
async def test_range_is_capped(registry, transport):
    """Range scans are limited to ten sync windows."""
    explorer = Explorer(registry, transport, sleep=no_sleep, batch_delay=0, window=2)
    assert explorer.max_range_blocks == 20

    with pytest.raises(ValidationError, match="limit is 20"):
        await explorer.get_transactions_in_range(0, 20)
    assert transport.calls == []

    transactions = await explorer.get_transactions_in_range(1, 20)
    assert len(transactions) == 20


@pytest.mark.asyncio
async def test_block_fetched_across_network_switch_is_not_cached(registry, node):
    """A response that arrives after a network switch is returned but not cached."""

    def switching(request):
        response = node(request)
        if request["method"] == "block":
            registry.set_selected_network(Network.MAINNET)
        return response

    explorer = Explorer(registry, FakeTransport(default=switching), sleep=no_sleep)

    block = await explorer.get_block(12)

    assert block.height == 12
    assert explorer.stats().cached_blocks == 0
