"""Network-partitioned provider registry with durable persistence."""

import json
import logging
import time
from collections.abc import Callable
from typing import Literal

from pydantic import ValidationError as ModelValidationError

from near_explorer.core.exceptions import ProviderNotFoundError, ValidationError
from near_explorer.core.models import Network, Provider
from near_explorer.core.storage import KeyValueStore, MemoryStore
from near_explorer.data import get_builtin_providers, get_config_version, get_default_network

logger = logging.getLogger(__name__)

STATE_KEY = "near_rpc_providers"
CUSTOM_PRIORITY_BASE = 1000

# Markers of URLs that are documentation or repository pages, not RPC endpoints
_BAD_URL_MARKERS = ("github.com", "docs.")

Listener = Callable[[], None]


def is_bad_provider_url(url: str) -> bool:
    """
    Check whether a URL is clearly not an RPC endpoint.

    Parameters
    ----------
    url : str
        Endpoint URL

    Returns
    -------
    bool
        True for repository, documentation, or bare homepage URLs

    """
    lowered = url.lower()
    if any(marker in lowered for marker in _BAD_URL_MARKERS):
        return True
    if "rpc" in lowered:
        return False
    return lowered.endswith(".com") or lowered.endswith(".org/")


def validate_provider_url(url: str) -> str:
    """
    Validate a user-supplied endpoint URL.

    Parameters
    ----------
    url : str
        Candidate URL

    Returns
    -------
    str
        The stripped URL

    Raises
    ------
    ValidationError
        If the URL does not start with http:// or https://

    """
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        msg = f"URL must start with http:// or https:// (got {url!r})"
        raise ValidationError(msg)
    return url


class ProviderRegistry:
    """
    Registry of RPC providers, partitioned by network.

    Built-in providers are seeded from the packaged provider list; custom
    providers are added and removed explicitly. Every mutation is persisted
    as one versioned blob and then announced to subscribers synchronously,
    so the failover engine can reset its rotation cursor before the next
    attempt.

    Parameters
    ----------
    store : KeyValueStore | None
        Durable storage. An in-memory store is used if None.

    """

    def __init__(self, store: KeyValueStore | None = None) -> None:
        self.store = store if store is not None else MemoryStore()
        self._builtin: list[Provider] = []
        self._custom: list[Provider] = []
        self._selected_network: Network = get_default_network()
        self._listeners: list[Listener] = []
        self._removal_listeners: list[Callable[[str], None]] = []
        self._load()

    # Persistence

    def _seed_defaults(self) -> None:
        self._builtin = get_builtin_providers()
        self._custom = []
        self._selected_network = get_default_network()

    def _load(self) -> None:
        """Load persisted state, reseeding defaults on version mismatch or corruption."""
        raw = self.store.get(STATE_KEY)
        if raw is None:
            logger.info("No persisted provider configuration, seeding built-in defaults")
            self._seed_defaults()
            self._save(notify=False)
            return

        current_version = get_config_version()
        try:
            state = json.loads(raw)
            saved_version = state.get("version")
            if saved_version != current_version:
                logger.info(
                    "Migrating provider config from version %s to %s, resetting to defaults",
                    saved_version or "legacy",
                    current_version,
                )
                self._seed_defaults()
                self._save(notify=False)
                return

            builtin = [Provider.model_validate(p) for p in state.get("providers", [])]
            custom = [Provider.model_validate(p) for p in state.get("custom_providers", [])]
            enabled_ids = state.get("enabled_ids")
            selected = Network(state.get("selected_network", get_default_network()))
        except (json.JSONDecodeError, AttributeError, TypeError, ValueError, ModelValidationError) as e:
            logger.warning("Discarding unreadable provider configuration: %s", e)
            self._seed_defaults()
            self._save(notify=False)
            return

        self._builtin = builtin or get_builtin_providers()
        self._custom = custom
        self._selected_network = selected
        if enabled_ids is not None:
            enabled = set(enabled_ids)
            for provider in self._builtin + self._custom:
                provider.enabled = provider.id in enabled

    def _save(self, *, notify: bool = True) -> None:
        """Persist the full registry state in a single write."""
        state = {
            "version": get_config_version(),
            "providers": [p.model_dump(mode="json") for p in self._builtin],
            "custom_providers": [p.model_dump(mode="json") for p in self._custom],
            "enabled_ids": [p.id for p in self._builtin + self._custom if p.enabled],
            "selected_network": self._selected_network.value,
        }
        self.store.set(STATE_KEY, json.dumps(state))
        if notify:
            self._notify()

    # Subscriptions

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a callback invoked after every registry mutation.

        Parameters
        ----------
        listener : Callable[[], None]
            Callback without arguments

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

    def on_provider_removed(self, listener: Callable[[str], None]) -> None:
        """Register a callback receiving the id of each removed provider."""
        self._removal_listeners.append(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Error in provider registry listener")

    # Queries

    def get_selected_network(self) -> Network:
        """Currently active network."""
        return self._selected_network

    def get_all_providers(self, network: Network | str | None = None) -> list[Provider]:
        """
        Get built-in and custom providers of one network.

        Parameters
        ----------
        network : Network | str | None
            Network to list. The active network if None.

        Returns
        -------
        list[Provider]
            Providers sorted by ascending priority

        """
        target = Network(network) if network is not None else self._selected_network
        providers = [p for p in self._builtin + self._custom if p.network == target]
        return sorted(providers, key=lambda p: p.priority)

    def get_enabled_providers(self, network: Network | str | None = None) -> list[Provider]:
        """
        Get enabled providers of one network in priority order.

        An empty list means no route is available; it is not an error here.

        """
        return [p for p in self.get_all_providers(network) if p.enabled]

    def get_custom_providers(self) -> list[Provider]:
        """All user-added providers across networks."""
        return list(self._custom)

    def get_provider(self, provider_id: str) -> Provider:
        """
        Look up a provider by id across all networks.

        Raises
        ------
        ProviderNotFoundError
            If no provider has this id

        """
        for provider in self._builtin + self._custom:
            if provider.id == provider_id:
                return provider
        msg = f"Provider {provider_id} not found"
        raise ProviderNotFoundError(msg)

    def _find_in_network(self, provider_id: str) -> Provider:
        for provider in self.get_all_providers():
            if provider.id == provider_id:
                return provider
        msg = f"Provider {provider_id} not found in {self._selected_network} network"
        raise ProviderNotFoundError(msg)

    # Mutations

    def set_selected_network(self, network: Network | str) -> None:
        """Switch the active network partition."""
        self._selected_network = Network(network)
        logger.info("Selected network: %s", self._selected_network)
        self._save()

    def toggle_provider(self, provider_id: str, enabled: bool | None = None) -> Provider:
        """
        Flip or set the enabled flag of a provider in the active network.

        Parameters
        ----------
        provider_id : str
            Provider id
        enabled : bool | None
            Explicit state. Flips the current state if None.

        Returns
        -------
        Provider
            The updated provider

        """
        provider = self._find_in_network(provider_id)
        provider.enabled = (not provider.enabled) if enabled is None else enabled
        self._save()
        return provider

    def enable_all_in_network(self) -> None:
        """Enable every provider of the active network."""
        for provider in self.get_all_providers():
            provider.enabled = True
        self._save()

    def disable_all_in_network(self) -> None:
        """Disable every provider of the active network."""
        for provider in self.get_all_providers():
            provider.enabled = False
        self._save()

    def update_priority(self, provider_id: str, priority: int) -> Provider:
        """Set an explicit priority for a provider in the active network."""
        provider = self._find_in_network(provider_id)
        provider.priority = priority
        self._save()
        return provider

    def move_provider(self, provider_id: str, direction: Literal["up", "down"]) -> None:
        """
        Swap a provider with its neighbour in the active network's ordering.

        Moving the first provider up or the last one down is a no-op that
        still persists and notifies.

        """
        if direction not in ("up", "down"):
            msg = f"direction must be 'up' or 'down' (got {direction!r})"
            raise ValidationError(msg)

        providers = self.get_all_providers()
        index = next((i for i, p in enumerate(providers) if p.id == provider_id), None)
        if index is None:
            msg = f"Provider {provider_id} not found in {self._selected_network} network"
            raise ProviderNotFoundError(msg)

        target = index - 1 if direction == "up" else index + 1
        if 0 <= target < len(providers):
            providers[index], providers[target] = providers[target], providers[index]
            priorities = sorted(p.priority for p in providers)
            # Ties would make the swap invisible; fall back to consecutive slots
            if len(set(priorities)) < len(priorities):
                priorities = list(range(priorities[0], priorities[0] + len(priorities)))
            for provider, priority in zip(providers, priorities, strict=True):
                provider.priority = priority
        self._save()

    def add_custom_provider(self, name: str, url: str, network: Network | str | None = None) -> Provider:
        """
        Add a user-defined provider.

        Parameters
        ----------
        name : str
            Display label
        url : str
            Endpoint URL, must start with http:// or https://
        network : Network | str | None
            Target network. The active network if None.

        Returns
        -------
        Provider
            The new provider, enabled and ordered after existing customs

        Raises
        ------
        ValidationError
            If the name is blank or the URL scheme is not http(s)

        """
        if not name or not name.strip():
            msg = "Provider name must not be empty"
            raise ValidationError(msg)
        url = validate_provider_url(url)
        target = Network(network) if network is not None else self._selected_network

        existing_ids = {p.id for p in self._builtin + self._custom}
        provider_id = f"custom-{int(time.time() * 1000)}"
        suffix = 1
        while provider_id in existing_ids:
            provider_id = f"custom-{int(time.time() * 1000)}-{suffix}"
            suffix += 1

        provider = Provider(
            id=provider_id,
            name=name.strip(),
            url=url,
            network=target,
            enabled=True,
            priority=CUSTOM_PRIORITY_BASE + len(self._custom),
            is_custom=True,
        )
        self._custom.append(provider)
        logger.info("Added custom provider %s (%s) for %s", provider.name, provider.url, target)
        self._save()
        return provider

    def remove_custom_provider(self, provider_id: str) -> None:
        """
        Remove a user-defined provider.

        Raises
        ------
        ProviderNotFoundError
            If no custom provider has this id

        """
        remaining = [p for p in self._custom if p.id != provider_id]
        if len(remaining) == len(self._custom):
            msg = f"Custom provider {provider_id} not found"
            raise ProviderNotFoundError(msg)
        self._custom = remaining
        for listener in list(self._removal_listeners):
            listener(provider_id)
        self._save()

    def reset_to_defaults(self) -> None:
        """Drop custom providers and restore the built-in list and network."""
        removed = [p.id for p in self._custom]
        self._seed_defaults()
        for provider_id in removed:
            for listener in list(self._removal_listeners):
                listener(provider_id)
        self._save()

    def scrub_bad_providers(self) -> bool:
        """
        Reseed built-ins if any stored URL is clearly not an RPC endpoint.

        Custom providers with valid-looking URLs are kept.

        Returns
        -------
        bool
            True if bad entries were found and replaced

        """
        bad = [p for p in self._builtin + self._custom if is_bad_provider_url(p.url)]
        if not bad:
            return False

        logger.warning("Detected bad provider URLs %s, resetting built-in providers", [p.url for p in bad])
        bad_ids = {p.id for p in bad}
        self._builtin = get_builtin_providers()
        self._custom = [p for p in self._custom if p.id not in bad_ids]
        for provider_id in bad_ids:
            for listener in list(self._removal_listeners):
                listener(provider_id)
        self._save()
        return True
