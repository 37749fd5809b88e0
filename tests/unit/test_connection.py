"""Unit tests for Connection flow, saturation and losses."""

import pytest

from datastream.constants import MAX_PARTICLES_PER_CONNECTION
from datastream.models import Connection, Node
from datastream.node_types import NODE_TYPES


@pytest.fixture
def link():
    source = Node(id=1, type="PROCESSOR", x=0.0, y=0.0, data_stored=5.0)
    target = Node(id=0, type="CORE", x=100.0, y=0.0)
    source.connect(target.id)
    target.connect(source.id)
    nodes = {source.id: source, target.id: target}
    return Connection(from_node_id=1, to_node_id=0), source, target, nodes


class TestConnectionTick:
    """Tests for a single connection tick."""

    def test_transfer_with_losses(self, link):
        conn, source, target, nodes = link
        lost = conn.tick(100, 100.0, nodes)

        # ideal = 5 / 100 * 100 = 5 -> saturation 0.05
        assert conn.saturation == pytest.approx(0.05)
        # distance 0.2 + saturation 0.01
        assert conn.losses == pytest.approx(0.21)
        assert source.data_stored == pytest.approx(4.9)
        assert target.data_stored == pytest.approx(0.1 * 0.79)
        assert conn.flow_rate == pytest.approx(0.079)
        assert lost == pytest.approx(0.021)

    def test_transfer_rate_limited_to_one_unit_per_second(self, link):
        conn, source, target, nodes = link
        source.data_stored = 500.0
        conn.tick(1000, 100.0, nodes)
        assert source.data_stored == pytest.approx(499.0)

    def test_saturation_capped_at_one(self, link):
        conn, source, _, nodes = link
        source.data_stored = 1000.0
        conn.tick(100, 100.0, nodes)
        assert conn.saturation == 1.0
        assert conn.losses == pytest.approx(0.4)

    def test_distance_loss_capped(self):
        source = Node(id=1, type="PROCESSOR", x=0.0, y=0.0, data_stored=0.5)
        target = Node(id=2, type="PROCESSOR", x=1000.0, y=0.0)
        conn = Connection(1, 2)
        conn.tick(100, 100.0, {1: source, 2: target})
        # distance loss caps at 0.3; saturation = 0.05 / 100
        assert conn.losses == pytest.approx(0.3 + 0.0005 * 0.2)

    def test_loss_reduction_averaged_over_both_ends(self, link):
        conn, source, target, nodes = link
        compressor = Node(id=5, type="COMPRESSOR", x=0.0, y=100.0)
        source.connect(compressor.id)
        compressor.connect(source.id)
        nodes[compressor.id] = compressor

        conn.tick(100, 100.0, nodes)
        assert conn.losses == pytest.approx(0.21 * (1 - 0.25))

    def test_global_loss_multiplier(self, link):
        conn, _, _, nodes = link
        conn.tick(100, 100.0, nodes, loss_multiplier=0.75)
        assert conn.losses == pytest.approx(0.21 * 0.75)

    def test_loss_stays_bounded(self, link):
        conn, source, _, nodes = link
        for stored in (0.0, 0.5, 5.0, 1e6):
            source.data_stored = stored
            conn.tick(100, 100.0, nodes)
            assert 0.0 <= conn.saturation <= 1.0
            assert 0.0 <= conn.losses < 1.0

    def test_empty_source_moves_nothing(self, link):
        conn, source, target, nodes = link
        source.data_stored = 0.0
        lost = conn.tick(100, 100.0, nodes)
        assert conn.flow_rate == 0.0
        assert lost == 0.0
        assert target.data_stored == 0.0

    def test_delivery_into_buffer_node(self):
        source = Node(id=1, type="PROCESSOR", x=0.0, y=0.0, data_stored=2.0)
        memory = Node(id=2, type="MEMORY", x=100.0, y=0.0)
        conn = Connection(1, 2)
        conn.tick(100, 100.0, {1: source, 2: memory}, now_ms=4200.0)
        assert memory.data_stored == 0.0
        assert len(memory.buffer) == 1
        assert memory.buffer[0][1] == 4200.0

    def test_full_buffer_counts_as_lost(self):
        source = Node(id=1, type="PROCESSOR", x=0.0, y=0.0, data_stored=2.0)
        memory = Node(id=2, type="MEMORY", x=100.0, y=0.0)
        for _ in range(NODE_TYPES["MEMORY"].buffer_capacity):
            memory.receive(1.0)
        conn = Connection(1, 2)
        lost = conn.tick(100, 100.0, {1: source, 2: memory})
        assert lost == pytest.approx(0.1)
        assert conn.flow_rate == 0.0

    def test_particle_count_capped(self, link):
        conn, source, _, nodes = link
        now = 0.0
        for _ in range(200):
            source.data_stored = 5.0
            now += 250.0
            conn.tick(10, 100.0, nodes, now_ms=now)
        assert len(conn.particles) <= MAX_PARTICLES_PER_CONNECTION


class TestConnectionExists:
    """Tests for unordered pair membership."""

    def test_exists_either_direction(self):
        connections = [Connection(1, 2), Connection(2, 3)]
        assert Connection.exists_between(1, 2, connections)
        assert Connection.exists_between(2, 1, connections)
        assert Connection.exists_between(3, 2, connections)
        assert not Connection.exists_between(1, 3, connections)

    def test_other_end(self):
        conn = Connection(4, 9)
        assert conn.other_end(4) == 9
        assert conn.other_end(9) == 4
        assert conn.touches(9)
        assert not conn.touches(5)
