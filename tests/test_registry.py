"""Tests for the per-user manager registry."""

import pytest

from mcphub.config.store import InMemoryConfigStore
from mcphub.manager import ConnectionManager
from mcphub.registry import ManagerRegistry
from tests.conftest import FakeTransportFactory, seed


@pytest.fixture
def registry_parts():
    store = InMemoryConfigStore()
    transports = FakeTransportFactory()

    def factory(user_id, store):
        return ConnectionManager(user_id, store, transport_factory=transports)

    return store, transports, factory


@pytest.mark.asyncio
async def test_get_returns_same_manager_for_same_user(registry_parts):
    store, _, factory = registry_parts
    registry = ManagerRegistry(store, manager_factory=factory)

    first = await registry.get("alice")
    second = await registry.get("alice")

    assert first is second
    assert first.user_id == "alice"
    assert len(registry) == 1
    await registry.disconnect_all()


@pytest.mark.asyncio
async def test_least_recently_used_manager_is_evicted(registry_parts):
    store, _, factory = registry_parts
    registry = ManagerRegistry(store, max_managers=2, manager_factory=factory)

    alice = await registry.get("alice")
    await registry.get("bob")
    await registry.get("alice")
    await registry.get("carol")

    assert registry.active_user_ids() == ["alice", "carol"]
    assert "bob" not in registry
    assert alice.closed is False
    await registry.disconnect_all()


@pytest.mark.asyncio
async def test_single_slot_replaces_previous_user(registry_parts):
    store, transports, factory = registry_parts
    await seed(store, {"remote": {"url": "https://example.com/sse"}}, user_id="alice")
    registry = ManagerRegistry(store, max_managers=1, manager_factory=factory)

    alice = await registry.get("alice")
    await alice.initialize()
    bob = await registry.get("bob")

    assert alice.closed is True
    assert transports.closes == 1
    assert registry.active_user_ids() == ["bob"]
    assert bob is not alice
    assert await registry.get("alice") is not alice
    await registry.disconnect_all()


@pytest.mark.asyncio
async def test_remove_and_disconnect_all(registry_parts):
    store, _, factory = registry_parts
    registry = ManagerRegistry(store, manager_factory=factory)
    alice = await registry.get("alice")
    bob = await registry.get("bob")

    assert await registry.remove("alice") is True
    assert await registry.remove("alice") is False
    assert alice.closed is True

    await registry.disconnect_all()

    assert bob.closed is True
    assert len(registry) == 0


def test_max_managers_must_be_positive():
    with pytest.raises(ValueError):
        ManagerRegistry(InMemoryConfigStore(), max_managers=0)
