"""Advisory per-provider health tracking and manual probes."""

import asyncio
import logging
import time
from collections.abc import Callable

from near_explorer.core.exceptions import ApplicationError, ExplorerError
from near_explorer.core.models import Network, ProviderHealth
from near_explorer.core.registry import ProviderRegistry
from near_explorer.rpc.jsonrpc import RequestIdGenerator, decode_response, encode_request
from near_explorer.rpc.transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 10.0

HealthListener = Callable[[ProviderHealth], None]


def now_ms() -> int:
    """Current epoch time in milliseconds."""
    return int(time.time() * 1000)


class HealthMonitor:
    """
    Records reachability and latency for each provider.

    Health is informational: the failover engine writes to it after every
    attempt, but never consults it to skip a provider.

    Parameters
    ----------
    registry : ProviderRegistry
        Registry used to resolve provider ids for probes
    transport : Transport
        Transport used by probes
    probe_timeout : float
        Hard timeout for one probe, in seconds

    """

    def __init__(
        self,
        registry: ProviderRegistry,
        transport: Transport,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
    ) -> None:
        self.registry = registry
        self.transport = transport
        self.probe_timeout = probe_timeout
        self._health: dict[str, ProviderHealth] = {}
        self._listeners: list[HealthListener] = []
        self._ids = RequestIdGenerator()
        registry.on_provider_removed(self.forget)

    def get_health(self, provider_id: str) -> ProviderHealth | None:
        """Health record for a provider, or None if never observed."""
        return self._health.get(provider_id)

    def all_health(self) -> dict[str, ProviderHealth]:
        """Snapshot of every known health record."""
        return dict(self._health)

    def update_health(self, provider_id: str, **fields: object) -> ProviderHealth:
        """
        Merge fields into a provider's health record.

        ``last_checked`` is always refreshed. A record is created on first
        use with ``is_healthy=True``.

        Parameters
        ----------
        provider_id : str
            Provider id
        **fields : object
            Any of ``is_healthy``, ``response_time``, ``error``

        Returns
        -------
        ProviderHealth
            The merged record

        """
        current = self._health.get(provider_id) or ProviderHealth(provider_id=provider_id)
        merged = current.model_copy(update={**fields, "provider_id": provider_id, "last_checked": now_ms()})
        self._health[provider_id] = merged
        for listener in list(self._listeners):
            try:
                listener(merged)
            except Exception:
                logger.exception("Error in health listener")
        return merged

    def forget(self, provider_id: str) -> None:
        """Drop the record of a removed provider."""
        self._health.pop(provider_id, None)

    def subscribe(self, listener: HealthListener) -> Callable[[], None]:
        """Register a callback receiving every updated record; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def test_provider(self, provider_id: str) -> ProviderHealth:
        """
        Probe a provider with a ``status`` call.

        Never raises for network or RPC failures; the outcome is recorded
        and returned as a health value.

        Parameters
        ----------
        provider_id : str
            Provider id

        Returns
        -------
        ProviderHealth
            The recorded outcome

        Raises
        ------
        ProviderNotFoundError
            If the id is unknown

        """
        provider = self.registry.get_provider(provider_id)
        payload = encode_request(self._ids.next(), "status", [])
        start = time.monotonic()

        try:
            response = await asyncio.wait_for(
                self.transport.send(provider.url, payload, self.probe_timeout),
                timeout=self.probe_timeout,
            )
            decode_response(response, provider.url)
        except ApplicationError as e:
            elapsed = int((time.monotonic() - start) * 1000)
            logger.warning("Provider %s answered probe with an error: %s", provider.id, e)
            return self.update_health(provider.id, is_healthy=False, response_time=elapsed, error=str(e))
        except TimeoutError:
            elapsed = int((time.monotonic() - start) * 1000)
            logger.warning("Provider %s probe timed out after %.1fs", provider.id, self.probe_timeout)
            error = f"Probe timed out after {self.probe_timeout:g}s"
            return self.update_health(provider.id, is_healthy=False, response_time=elapsed, error=error)
        except ExplorerError as e:
            elapsed = int((time.monotonic() - start) * 1000)
            logger.warning("Provider %s probe failed: %s", provider.id, e)
            return self.update_health(provider.id, is_healthy=False, response_time=elapsed, error=str(e))

        elapsed = int((time.monotonic() - start) * 1000)
        logger.debug("Provider %s healthy (%dms)", provider.id, elapsed)
        return self.update_health(provider.id, is_healthy=True, response_time=elapsed, error=None)

    async def test_all(self, network: Network | str | None = None) -> dict[str, ProviderHealth]:
        """
        Probe every provider of a network concurrently.

        Parameters
        ----------
        network : Network | str | None
            Network to probe. The active network if None.

        Returns
        -------
        dict[str, ProviderHealth]
            Outcome per provider id

        """
        providers = self.registry.get_all_providers(network)
        results = await asyncio.gather(*(self.test_provider(p.id) for p in providers))
        return {health.provider_id: health for health in results}
