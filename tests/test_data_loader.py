"""Tests for the built-in provider list."""

from near_explorer.core.models import Network
from near_explorer.data import (
    get_builtin_providers,
    get_config_version,
    get_default_network,
    get_supported_networks,
)


def test_config_version():
    """Test the provider configuration version."""
    assert get_config_version() == "2.0"


def test_default_network():
    """Test that localnet is selected by default."""
    assert get_default_network() == Network.LOCALNET


def test_supported_networks():
    """Test networks with built-in providers."""
    networks = get_supported_networks()

    assert Network.MAINNET in networks
    assert Network.TESTNET in networks
    assert Network.LOCALNET in networks


def test_builtin_ids_are_unique():
    """Test that provider ids are unique across networks."""
    ids = [p.id for p in get_builtin_providers()]

    assert len(ids) == len(set(ids))


def test_builtin_providers_for_network():
    """Test filtering built-ins by network."""
    localnet = get_builtin_providers(Network.LOCALNET)

    assert {p.network for p in localnet} == {Network.LOCALNET}
    assert [p.id for p in localnet if p.enabled] == ["localnet-aws"]
    assert all(not p.is_custom for p in localnet)


def test_every_network_has_an_enabled_default():
    """Test that each network starts with a usable route."""
    for network in get_supported_networks():
        assert any(p.enabled for p in get_builtin_providers(network))


def test_builtin_providers_are_fresh_copies():
    """Test that mutating a returned provider does not leak."""
    first = get_builtin_providers(Network.MAINNET)
    first[0].enabled = False

    second = get_builtin_providers(Network.MAINNET)

    assert second[0].enabled
