"""Tests for the failover execution engine."""

import pytest

from near_explorer.core.exceptions import (
    AllProvidersFailedError,
    ApplicationError,
    NoProvidersAvailableError,
    TransportError,
)
from near_explorer.core.models import FailoverEventType, Network
from near_explorer.rpc.failover import FailoverClient
from near_explorer.rpc.health import HealthMonitor
from near_explorer.rpc.retry import RetryConfig
from near_explorer.rpc.transport import TransportResponse
from tests.fakes import (
    LOCALNET_AWS,
    LOCALNET_DEFAULT,
    FakeChain,
    FakeTransport,
    RecordingSleep,
    no_sleep,
    refuse,
    rpc_error,
    rpc_result,
)


def make_client(registry, transport, **kwargs):
    health = HealthMonitor(registry, transport)
    kwargs.setdefault("sleep", no_sleep)
    return FailoverClient(registry, transport, health, **kwargs)


@pytest.mark.asyncio
async def test_success_on_first_provider(two_provider_registry):
    transport = FakeTransport()
    transport.route(LOCALNET_AWS, FakeChain(latest=42))
    client = make_client(two_provider_registry, transport)

    block = await client.get_latest_block()

    assert block.height == 42
    assert transport.urls() == [LOCALNET_AWS]
    health = client.health.get_health("localnet-aws")
    assert health is not None and health.is_healthy
    assert health.response_time is not None


@pytest.mark.asyncio
async def test_application_error_is_not_retried(two_provider_registry):
    """A JSON-RPC error is returned after exactly one attempt on one provider."""
    transport = FakeTransport()
    transport.route(
        LOCALNET_AWS,
        lambda request: rpc_error(request, -32000, "params.block_id must be greater than 0"),
    )
    transport.route(LOCALNET_DEFAULT, FakeChain(latest=10))
    client = make_client(two_provider_registry, transport)
    events = []
    client.on_failover_event(events.append)

    with pytest.raises(ApplicationError, match="params.block_id must be greater than 0") as excinfo:
        await client.get_block(0)

    assert excinfo.value.code == -32000
    assert len(transport.calls) == 1
    assert not any(e.type == FailoverEventType.PROVIDER_SWITCH for e in events)
    assert not any(e.type == FailoverEventType.RETRY for e in events)
    assert client.health.get_health("localnet-aws").is_healthy


@pytest.mark.asyncio
async def test_all_providers_failing_makes_n_times_attempts(two_provider_registry):
    """Two refusing providers with three attempts each give six attempts in total."""
    transport = FakeTransport(default=refuse)
    client = make_client(two_provider_registry, transport)

    with pytest.raises(AllProvidersFailedError) as excinfo:
        await client.get_latest_block()

    assert len(transport.calls) == 6
    assert transport.urls() == [LOCALNET_AWS] * 3 + [LOCALNET_DEFAULT] * 3
    assert excinfo.value.tried == ["localnet-aws", "localnet-default"]
    assert isinstance(excinfo.value.last_error, TransportError)
    assert "localnet-aws" in str(excinfo.value)
    assert not client.health.get_health("localnet-aws").is_healthy
    assert not client.health.get_health("localnet-default").is_healthy


@pytest.mark.asyncio
async def test_attempt_count_scales_with_retry_budget(registry):
    registry.enable_all_in_network()
    registry.add_custom_provider("Third", "http://127.0.0.1:3031")
    transport = FakeTransport(default=refuse)
    client = make_client(registry, transport, retry_config=RetryConfig(max_attempts=2))

    with pytest.raises(AllProvidersFailedError):
        await client.call("status", [])

    assert len(transport.calls) == 3 * 2


@pytest.mark.asyncio
async def test_backoff_schedule_between_attempts(two_provider_registry):
    transport = FakeTransport(default=refuse)
    sleep = RecordingSleep()
    client = make_client(two_provider_registry, transport, sleep=sleep)

    with pytest.raises(AllProvidersFailedError):
        await client.call("status", [])

    # No sleep before the first attempt on each provider
    assert sleep.delays == pytest.approx([0.1, 0.3, 0.1, 0.3])


@pytest.mark.asyncio
async def test_failover_to_next_provider(two_provider_registry):
    transport = FakeTransport()
    transport.route(LOCALNET_AWS, refuse)
    transport.route(LOCALNET_DEFAULT, FakeChain(latest=7))
    client = make_client(two_provider_registry, transport)
    events = []
    client.on_failover_event(events.append)

    status = await client.get_status()

    assert status.sync_info.latest_block_height == 7
    assert transport.urls() == [LOCALNET_AWS] * 3 + [LOCALNET_DEFAULT]
    types = [e.type for e in events]
    assert types.count(FailoverEventType.ERROR) == 3
    assert types.count(FailoverEventType.RETRY) == 2
    assert FailoverEventType.PROVIDER_SWITCH in types
    assert types[-1] == FailoverEventType.SUCCESS


@pytest.mark.asyncio
async def test_http_5xx_is_a_transport_error(two_provider_registry):
    transport = FakeTransport()
    transport.route(LOCALNET_AWS, lambda request: TransportResponse(503, "Service Unavailable"))
    transport.route(LOCALNET_DEFAULT, FakeChain(latest=3))
    client = make_client(two_provider_registry, transport)

    block = await client.get_latest_block()

    assert block.height == 3
    assert transport.urls().count(LOCALNET_AWS) == 3


@pytest.mark.asyncio
async def test_rotation_cursor_persists_across_calls(two_provider_registry):
    """After a failover, later calls start with the provider that answered."""
    transport = FakeTransport()
    transport.route(LOCALNET_AWS, refuse)
    transport.route(LOCALNET_DEFAULT, FakeChain(latest=5))
    client = make_client(two_provider_registry, transport)

    await client.get_latest_block()
    transport.calls.clear()
    await client.get_latest_block()

    assert transport.urls() == [LOCALNET_DEFAULT]
    assert client.get_current_provider_info().provider.id == "localnet-default"


@pytest.mark.asyncio
async def test_round_robin_spreads_calls(two_provider_registry):
    chain = FakeChain(latest=5)
    transport = FakeTransport(default=chain)
    client = make_client(two_provider_registry, transport, round_robin=True)

    for _ in range(4):
        await client.get_latest_block()

    assert transport.urls() == [LOCALNET_AWS, LOCALNET_DEFAULT, LOCALNET_AWS, LOCALNET_DEFAULT]


@pytest.mark.asyncio
async def test_registry_change_resets_cursor(two_provider_registry):
    transport = FakeTransport(default=FakeChain(latest=5))
    client = make_client(two_provider_registry, transport)
    assert client.select_provider("localnet-default")

    two_provider_registry.set_selected_network(Network.TESTNET)
    two_provider_registry.set_selected_network(Network.LOCALNET)
    await client.get_latest_block()

    assert transport.urls() == [LOCALNET_AWS]


@pytest.mark.asyncio
async def test_network_switch_routes_to_new_partition(two_provider_registry):
    transport = FakeTransport(default=FakeChain(latest=5))
    client = make_client(two_provider_registry, transport)

    two_provider_registry.set_selected_network(Network.TESTNET)
    await client.get_latest_block()

    assert transport.urls() == ["https://rpc.testnet.near.org"]


@pytest.mark.asyncio
async def test_no_enabled_providers_fails_immediately(registry):
    registry.disable_all_in_network()
    transport = FakeTransport(default=FakeChain(latest=5))
    client = make_client(registry, transport)

    with pytest.raises(NoProvidersAvailableError, match="localnet"):
        await client.get_status()

    assert transport.calls == []


@pytest.mark.asyncio
async def test_listener_errors_do_not_break_dispatch(two_provider_registry):
    transport = FakeTransport(default=FakeChain(latest=5))
    client = make_client(two_provider_registry, transport)

    def broken(event):
        raise RuntimeError("listener bug")

    client.on_failover_event(broken)
    block = await client.get_latest_block()

    assert block.height == 5


def test_unsubscribe_stops_events(two_provider_registry):
    client = make_client(two_provider_registry, FakeTransport())
    events = []
    unsubscribe = client.on_failover_event(events.append)

    unsubscribe()
    client.select_provider("localnet-default")

    assert events == []


def test_select_provider_rejects_disabled(registry):
    client = make_client(registry, FakeTransport())

    assert not client.select_provider("localnet-default")
    assert client.get_current_provider_info().provider.id == "localnet-aws"


@pytest.mark.asyncio
async def test_get_transactions_from_block_skips_failed_chunks(two_provider_registry):
    chain = FakeChain(latest=5, chunks_per_block=2)
    chain.unreachable_chunks.add("chunk-5-1")
    transport = FakeTransport(default=chain)
    client = make_client(two_provider_registry, transport)

    block = await client.get_block(5)
    transactions = await client.get_transactions_from_block(block)

    assert [tx.hash for tx in transactions] == ["tx-5-0"]
    assert transactions[0].block_height == 5
    assert transactions[0].block_hash == "block-5"


@pytest.mark.asyncio
async def test_malformed_result_fails_over(two_provider_registry):
    """A result that does not match the expected shape is retried, then failed over."""
    transport = FakeTransport()
    transport.route(LOCALNET_AWS, lambda request: rpc_result(request, None))
    transport.route(LOCALNET_DEFAULT, FakeChain(latest=9))
    client = make_client(two_provider_registry, transport)

    block = await client.get_latest_block()

    assert block.height == 9
    assert transport.urls() == [LOCALNET_AWS] * 3 + [LOCALNET_DEFAULT]
    health = client.health.get_health("localnet-aws")
    assert not health.is_healthy
    assert "Malformed block result" in health.error


@pytest.mark.asyncio
async def test_malformed_result_everywhere_exhausts_providers(two_provider_registry):
    transport = FakeTransport(default=lambda request: rpc_result(request, {"header": "nope"}))
    client = make_client(two_provider_registry, transport)

    with pytest.raises(AllProvidersFailedError) as excinfo:
        await client.get_chunk("chunk-1-0")

    assert len(transport.calls) == 6
    assert isinstance(excinfo.value.last_error, TransportError)


@pytest.mark.asyncio
async def test_unparsed_call_returns_raw_result(registry):
    transport = FakeTransport(default=lambda request: rpc_result(request, None))
    client = make_client(registry, transport)

    assert await client.call("block", {"finality": "final"}) is None
    assert len(transport.calls) == 1
