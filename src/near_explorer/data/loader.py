"""Built-in provider list loader."""

from functools import cache
from pathlib import Path
from typing import Any

import yaml

from near_explorer.core.models import Network, Provider


@cache
def load_provider_data() -> dict[str, Any]:
    """
    Load the built-in provider configuration from providers.yaml.

    Returns
    -------
    dict[str, Any]
        Raw configuration with ``config_version``, ``default_network`` and
        ``providers`` keyed by network

    """
    path = Path(__file__).parent / "providers.yaml"
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f)


def get_config_version() -> str:
    """Version string of the built-in provider configuration."""
    return str(load_provider_data()["config_version"])


def get_default_network() -> Network:
    """Network selected when no persisted selection exists."""
    return Network(load_provider_data()["default_network"])


def get_builtin_providers(network: Network | str | None = None) -> list[Provider]:
    """
    Build fresh Provider models for the built-in endpoints.

    Parameters
    ----------
    network : Network | str | None
        Restrict to one network. All networks if None.

    Returns
    -------
    list[Provider]
        New model instances, safe to mutate

    """
    providers = []
    for network_name, entries in load_provider_data()["providers"].items():
        if network is not None and network_name != Network(network):
            continue
        for entry in entries:
            providers.append(Provider(network=Network(network_name), is_custom=False, **entry))
    return providers


def get_supported_networks() -> list[Network]:
    """Networks that ship built-in providers."""
    return [Network(name) for name in load_provider_data()["providers"]]
