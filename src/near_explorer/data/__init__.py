"""Built-in provider data and loaders."""

from near_explorer.data.loader import (
    get_builtin_providers,
    get_config_version,
    get_default_network,
    get_supported_networks,
    load_provider_data,
)

__all__ = [
    "get_builtin_providers",
    "get_config_version",
    "get_default_network",
    "get_supported_networks",
    "load_provider_data",
]
