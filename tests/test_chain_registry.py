# tests/test_chain_registry.py

import pytest

from chain_manager_async import ChainRegistry
from core.utils import ChainIdentityMismatch, UnknownChain
from tests.fakes import FakeConnection, connections_factory, make_descriptor


@pytest.mark.asyncio
async def test_register_verified_chain_is_resolvable():
    connection = FakeConnection(137)
    registry = ChainRegistry(connection_factory=connections_factory({137: connection}))

    await registry.register(make_descriptor(137, "Polygon"))

    assert registry.lookup(137).name == "Polygon"
    assert registry.connection(137) is connection
    assert [d.chain_id for d in registry.all()] == [137]


@pytest.mark.asyncio
async def test_register_rejects_mismatched_chain_id():
    """Chain 1 whose endpoint reports chain id 2 must not be registered."""
    registry = ChainRegistry(connection_factory=connections_factory({1: FakeConnection(2)}))

    with pytest.raises(ChainIdentityMismatch) as excinfo:
        await registry.register(make_descriptor(1))

    assert excinfo.value.expected == 1
    assert excinfo.value.actual == 2
    assert registry.all() == []
    with pytest.raises(UnknownChain):
        registry.connection(1)


@pytest.mark.asyncio
async def test_lookup_of_unregistered_chain_fails():
    registry = ChainRegistry(connection_factory=connections_factory({}))

    with pytest.raises(UnknownChain):
        registry.lookup(42161)
    with pytest.raises(UnknownChain):
        registry.connection(42161)


@pytest.mark.asyncio
async def test_register_all_keeps_partial_success():
    connections = {
        1: FakeConnection(1),
        10: FakeConnection(999),                      # wrong network
        137: ConnectionError("endpoint unreachable"),  # cannot connect at all
        8453: FakeConnection(8453),
    }
    connections[8453].eth.reported_chain_id = TimeoutError("chain id query failed")
    registry = ChainRegistry(connection_factory=connections_factory(connections))

    outcome = await registry.register_all([make_descriptor(cid) for cid in (1, 10, 137, 8453)])

    assert outcome[1] is None
    assert isinstance(outcome[10], ChainIdentityMismatch)
    assert isinstance(outcome[137], ConnectionError)
    assert isinstance(outcome[8453], TimeoutError)
    assert registry.chain_ids() == [1]


@pytest.mark.asyncio
async def test_register_all_times_out_slow_chain_only():
    connections = {1: FakeConnection(1), 10: FakeConnection(10, delay=5)}
    registry = ChainRegistry(connection_factory=connections_factory(connections), register_timeout_s=0.05)

    outcome = await registry.register_all([make_descriptor(1), make_descriptor(10)])

    assert outcome[1] is None
    assert outcome[10] is not None
    assert 1 in registry and 10 not in registry


@pytest.mark.asyncio
async def test_duplicate_registration_is_rejected():
    registry = ChainRegistry(connection_factory=connections_factory({1: FakeConnection(1)}))
    await registry.register(make_descriptor(1))

    with pytest.raises(ValueError):
        await registry.register(make_descriptor(1))
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_close_drops_every_connection():
    connection = FakeConnection(1)
    registry = ChainRegistry(connection_factory=connections_factory({1: connection}))
    await registry.register(make_descriptor(1))

    await registry.close()

    assert connection.provider.disconnects == 1
    assert registry.all() == []
    with pytest.raises(UnknownChain):
        registry.connection(1)


@pytest.mark.asyncio
async def test_failed_registrations_release_their_connection():
    connections = {
        1: FakeConnection(1),
        10: FakeConnection(999),
        137: FakeConnection(137),
        8453: FakeConnection(8453, delay=5),
    }
    connections[137].eth.reported_chain_id = ConnectionError("reset by peer")
    registry = ChainRegistry(connection_factory=connections_factory(connections), register_timeout_s=0.05)

    await registry.register_all([make_descriptor(cid) for cid in connections])

    assert registry.chain_ids() == [1]
    assert connections[1].provider.disconnects == 0
    assert connections[10].provider.disconnects == 1
    assert connections[137].provider.disconnects == 1
    assert connections[8453].provider.disconnects == 1
