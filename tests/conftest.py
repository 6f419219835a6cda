"""Pytest configuration for near-rpc-explorer tests."""

import pytest

from near_explorer.core.registry import ProviderRegistry
from near_explorer.core.storage import MemoryStore


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def registry(store):
    """Registry seeded with built-ins, localnet selected."""
    return ProviderRegistry(store)


@pytest.fixture
def two_provider_registry(registry):
    """Localnet registry with both built-in localnet providers enabled."""
    registry.enable_all_in_network()
    return registry
