"""NEAR RPC client with automatic failover and retry logic."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

import pydantic

from near_explorer.core.exceptions import (
    AllProvidersFailedError,
    ApplicationError,
    NoProvidersAvailableError,
    TransportError,
)
from near_explorer.core.models import (
    Block,
    Chunk,
    FailoverEvent,
    FailoverEventType,
    NetworkStatus,
    Provider,
    ProviderInfo,
    Transaction,
)
from near_explorer.core.registry import ProviderRegistry
from near_explorer.rpc.health import HealthMonitor
from near_explorer.rpc.jsonrpc import RequestIdGenerator, decode_response, encode_request
from near_explorer.rpc.retry import RetryConfig
from near_explorer.rpc.transport import DEFAULT_TIMEOUT, Transport

logger = logging.getLogger(__name__)

FailoverListener = Callable[[FailoverEvent], None]


def transactions_from_chunk(block: Block, chunk: Chunk) -> list[Transaction]:
    """
    Build Transaction models for every transaction of a chunk.

    Parameters
    ----------
    block : Block
        Block that includes the chunk
    chunk : Chunk
        Fetched chunk

    Returns
    -------
    list[Transaction]
        Transactions stamped with the block's height, hash and timestamps

    """
    return [
        Transaction(
            hash=tx["hash"],
            signer_id=tx.get("signer_id", ""),
            receiver_id=tx.get("receiver_id", ""),
            actions=tx.get("actions") or [],
            block_height=block.header.height,
            block_hash=block.header.hash,
            timestamp=block.header.timestamp,
            timestamp_nanosec=block.header.timestamp_nanosec,
        )
        for tx in chunk.transactions
    ]


def _parse_result(parse: Callable[[Any], Any], result: Any, method: str, url: str) -> Any:
    try:
        return parse(result)
    except pydantic.ValidationError as e:
        msg = f"Malformed {method} result from {url}: {e.error_count()} validation error(s)"
        raise TransportError(msg, url=url) from e


class FailoverClient:
    """
    Dispatches JSON-RPC calls over the enabled providers of the active network.

    Each provider gets a bounded number of sequential attempts with
    exponential backoff. Transport errors are retried and then failed over
    to the next provider in priority order; application errors are raised
    immediately. The rotation cursor persists across calls and is reset
    whenever the registry changes.

    Parameters
    ----------
    registry : ProviderRegistry
        Source of enabled providers
    transport : Transport
        Transport used for every attempt
    health : HealthMonitor
        Receives the outcome of every attempt
    retry_config : RetryConfig | None
        Per-provider retry budget. Defaults to 3 attempts, 0.1s x3 backoff.
    request_timeout : float
        Timeout for one attempt, in seconds
    round_robin : bool
        Advance the cursor after each success so consecutive calls spread
        across providers. By default the cursor stays on the last provider
        that answered.
    sleep : Callable[[float], Awaitable[None]] | None
        Backoff sleep, ``asyncio.sleep`` if None

    """

    def __init__(
        self,
        registry: ProviderRegistry,
        transport: Transport,
        health: HealthMonitor,
        retry_config: RetryConfig | None = None,
        request_timeout: float = DEFAULT_TIMEOUT,
        *,
        round_robin: bool = False,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.registry = registry
        self.transport = transport
        self.health = health
        self.retry_config = retry_config or RetryConfig()
        self.request_timeout = request_timeout
        self.round_robin = round_robin
        self._sleep = sleep or asyncio.sleep
        self._cursor = 0
        self._listeners: list[FailoverListener] = []
        self._ids = RequestIdGenerator()
        self._unsubscribe_registry = registry.subscribe(self._reset_cursor)

    # Rotation

    def _reset_cursor(self) -> None:
        # An index into one network's list is meaningless for another
        self._cursor = 0

    def _current_provider(self) -> Provider | None:
        providers = self.registry.get_enabled_providers()
        if not providers:
            return None
        if not 0 <= self._cursor < len(providers):
            self._cursor = 0
        return providers[self._cursor]

    def _switch_to_next_provider(self, *, announce: bool = True) -> Provider | None:
        providers = self.registry.get_enabled_providers()
        if not providers:
            return None
        self._cursor = (self._cursor + 1) % len(providers)
        provider = providers[self._cursor]
        if announce:
            logger.info("Switched to RPC provider %s (%s)", provider.id, provider.url)
            self._emit(FailoverEventType.PROVIDER_SWITCH, provider)
        return provider

    # Events

    def on_failover_event(self, listener: FailoverListener) -> Callable[[], None]:
        """
        Subscribe to provider-switch, retry, error and success events.

        Parameters
        ----------
        listener : Callable[[FailoverEvent], None]
            Callback receiving each event

        Returns
        -------
        Callable[[], None]
            Function that removes the subscription

        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(
        self,
        event_type: FailoverEventType,
        provider: Provider,
        attempt: int | None = None,
        error: str | None = None,
    ) -> None:
        event = FailoverEvent(
            type=event_type,
            provider_id=provider.id,
            provider_url=provider.url,
            attempt=attempt,
            error=error,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Error in failover event listener")

    # Core dispatch

    async def call(self, method: str, params: Any, parse: Callable[[Any], Any] | None = None) -> Any:
        """
        Execute one logical RPC call with retries and failover.

        Parameters
        ----------
        method : str
            RPC method name
        params : Any
            Method parameters
        parse : Callable[[Any], Any] | None
            Validator applied to the ``result`` inside the attempt, e.g. a
            model's ``model_validate``. A result it rejects is a transport
            failure of that provider.

        Returns
        -------
        Any
            The JSON-RPC ``result``, parsed if ``parse`` is given

        Raises
        ------
        NoProvidersAvailableError
            If no provider is enabled for the active network
        ApplicationError
            If a provider answered with a JSON-RPC error
        AllProvidersFailedError
            If every enabled provider exhausted its attempts with transport errors

        """
        providers = self.registry.get_enabled_providers()
        if not providers:
            network = self.registry.get_selected_network()
            msg = f"No RPC providers enabled for the {network} network. Enable at least one provider in settings."
            raise NoProvidersAvailableError(msg)

        max_attempts = self.retry_config.max_attempts
        tried: list[str] = []
        last_error: TransportError | None = None

        for provider_attempt in range(len(providers)):
            provider = self._current_provider()
            if provider is None:
                msg = "All RPC providers were disabled while the request was in flight."
                raise NoProvidersAvailableError(msg)
            tried.append(provider.id)

            for attempt in range(1, max_attempts + 1):
                if attempt > 1:
                    delay = self.retry_config.get_delay(attempt)
                    logger.debug(
                        "RPC call %s failed on %s (attempt %d/%d), retrying in %.1fs...",
                        method,
                        provider.id,
                        attempt - 1,
                        max_attempts,
                        delay,
                    )
                    await self._sleep(delay)
                    self._emit(FailoverEventType.RETRY, provider, attempt=attempt)

                payload = encode_request(self._ids.next(), method, params)
                start = time.monotonic()
                try:
                    response = await self.transport.send(provider.url, payload, self.request_timeout)
                    result = decode_response(response, provider.url)
                    if parse is not None:
                        result = _parse_result(parse, result, method, provider.url)
                except ApplicationError:
                    # The node answered; another provider would say the same
                    elapsed = int((time.monotonic() - start) * 1000)
                    self.health.update_health(provider.id, is_healthy=True, response_time=elapsed)
                    raise
                except TransportError as e:
                    last_error = e
                    self.health.update_health(provider.id, is_healthy=False, error=str(e))
                    self._emit(FailoverEventType.ERROR, provider, attempt=attempt, error=str(e))
                    logger.warning("RPC call %s to %s failed: %s", method, provider.id, e)
                    continue

                elapsed = int((time.monotonic() - start) * 1000)
                self.health.update_health(provider.id, is_healthy=True, response_time=elapsed, error=None)
                self._emit(FailoverEventType.SUCCESS, provider, attempt=attempt)
                if self.round_robin:
                    self._switch_to_next_provider(announce=False)
                return result

            logger.debug("RPC call %s failed after %d attempts on %s", method, max_attempts, provider.id)
            if provider_attempt < len(providers) - 1:
                self._switch_to_next_provider()

        msg = (
            f"All RPC providers failed for {method} (tried: {', '.join(tried)}). "
            "Check your network connection or enable more providers in settings."
        )
        if last_error is not None:
            msg = f"{msg} Last error: {last_error}"
        raise AllProvidersFailedError(msg, tried=tried, last_error=last_error) from last_error

    # Public API

    async def get_status(self) -> NetworkStatus:
        """Fetch node status, including the latest block height."""
        return await self.call("status", [], parse=NetworkStatus.model_validate)

    async def get_block(self, block_id: int | str) -> Block:
        """
        Fetch a block by height or hash.

        Parameters
        ----------
        block_id : int | str
            Block height or block hash

        Returns
        -------
        Block
            The block

        """
        return await self.call("block", {"block_id": block_id}, parse=Block.model_validate)

    async def get_latest_block(self) -> Block:
        """Fetch the latest final block."""
        return await self.call("block", {"finality": "final"}, parse=Block.model_validate)

    async def get_chunk(self, chunk_id: str) -> Chunk:
        """Fetch a chunk by hash."""
        return await self.call("chunk", [chunk_id], parse=Chunk.model_validate)

    async def get_transaction(self, tx_hash: str, account_id: str) -> dict[str, Any]:
        """Fetch a transaction outcome with the ``tx`` method."""
        return await self.call("tx", [tx_hash, account_id])

    async def get_transaction_status(self, tx_hash: str, account_id: str) -> dict[str, Any]:
        """Fetch a transaction outcome including receipts."""
        return await self.call("EXPERIMENTAL_tx_status", [tx_hash, account_id])

    async def get_account(self, account_id: str) -> dict[str, Any]:
        """View an account at the latest final block."""
        return await self.call(
            "query",
            {"request_type": "view_account", "finality": "final", "account_id": account_id},
        )

    async def get_transactions_from_block(self, block: Block) -> list[Transaction]:
        """
        Collect the transactions of every chunk in a block.

        Chunks that fail to load are skipped with a warning.

        """
        transactions: list[Transaction] = []
        for chunk_header in block.chunks:
            try:
                chunk = await self.get_chunk(chunk_header.chunk_hash)
            except (ApplicationError, AllProvidersFailedError) as e:
                logger.warning("Failed to fetch chunk %s: %s", chunk_header.chunk_hash, e)
                continue
            transactions.extend(transactions_from_chunk(block, chunk))
        return transactions

    # Provider management

    def get_current_provider_info(self) -> ProviderInfo:
        """Current provider of the rotation with its health record."""
        provider = self._current_provider()
        health = self.health.get_health(provider.id) if provider else None
        return ProviderInfo(provider=provider, health=health)

    def select_provider(self, provider_id: str) -> bool:
        """
        Point the rotation cursor at a specific enabled provider.

        Parameters
        ----------
        provider_id : str
            Provider id

        Returns
        -------
        bool
            False if the provider is not enabled in the active network

        """
        providers = self.registry.get_enabled_providers()
        for index, provider in enumerate(providers):
            if provider.id == provider_id:
                self._cursor = index
                self._emit(FailoverEventType.PROVIDER_SWITCH, provider)
                return True
        return False

    def close(self) -> None:
        """Detach from the registry."""
        self._unsubscribe_registry()
