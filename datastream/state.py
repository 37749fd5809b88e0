from __future__ import annotations

import logging
from collections import deque
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from .constants import (
    CANVAS_HEIGHT,
    CANVAS_WIDTH,
    INITIAL_BANDWIDTH,
    INITIAL_DATA,
    INITIAL_INTEGRITY,
    INTEGRITY_DECAY_PER_OVERLOAD,
    MAX_CONNECTION_DISTANCE,
    MAX_CONNECTIONS_PER_NODE,
    MAX_INTEGRITY,
    MAX_TICK_DELTA_MS,
)
from .models import Connection, Node
from .node_types import can_types_connect

LOGGER = logging.getLogger(__name__)


class NetworkPhase(Enum):
    RUNNING = "running"
    CRASHED = "crashed"
    REBOOTING = "rebooting"


CrashHandler = Callable[["NetworkState"], None]


class NetworkState:
    """
    Owns every node and connection and advances them one tick at a time.

    A tick runs to completion before anything else may read the state, so
    readers between ticks always see a consistent snapshot.
    """

    def __init__(self, on_crash: Optional[CrashHandler] = None) -> None:
        self.nodes: Dict[int, Node] = {}
        self.connections: List[Connection] = []
        self._next_node_id: int = 0

        # Resources
        self.data: float = INITIAL_DATA
        self.bandwidth: float = INITIAL_BANDWIDTH
        self.bandwidth_used: float = 0.0
        self.integrity: float = INITIAL_INTEGRITY

        # Statistics
        self.total_data_generated: float = 0.0
        self.total_data_lost: float = 0.0
        self.game_time: float = 0.0  # simulated ms
        self.tick_count: int = 0

        # Global rules, set by the economy layer from unlocked modules
        self.bandwidth_multiplier: float = 1.0
        self.loss_multiplier: float = 1.0
        self.healing_rate: float = 0.0  # integrity per simulated second

        # Lifecycle
        self.phase: NetworkPhase = NetworkPhase.RUNNING
        self.paused: bool = False
        self.on_crash: Optional[CrashHandler] = on_crash
        self.crash_count: int = 0

        self._initialize_core()

    # ------------------------------------------------------------------
    # Node bookkeeping
    # ------------------------------------------------------------------

    def _allocate_node_id(self) -> int:
        node_id = self._next_node_id
        self._next_node_id += 1
        return node_id

    def _initialize_core(self) -> Node:
        core = Node(id=self._allocate_node_id(), type="CORE", x=CANVAS_WIDTH / 2, y=CANVAS_HEIGHT / 2)
        self.nodes[core.id] = core
        return core

    @property
    def core(self) -> Node:
        for node in self.nodes.values():
            if node.type == "CORE":
                return node
        raise RuntimeError("Network has no CORE node")

    @property
    def next_node_id(self) -> int:
        return self._next_node_id

    def create_node(self, node_type: str, x: float, y: float) -> Node:
        """Insert a node without any rule checks; callers validate placement."""
        node = Node(id=self._allocate_node_id(), type=node_type, x=float(x), y=float(y))
        self.nodes[node.id] = node
        return node

    def count_nodes_of_type(self, node_type: str) -> int:
        return sum(1 for n in self.nodes.values() if n.type == node_type)

    def nodes_within(self, x: float, y: float, radius: float, inclusive: bool = True) -> List[Tuple[float, Node]]:
        """Return (distance, node) pairs around a point, nearest first."""
        found: List[Tuple[float, Node]] = []
        for node in self.nodes.values():
            distance = ((node.x - x) ** 2 + (node.y - y) ** 2) ** 0.5
            if distance < radius or (inclusive and distance == radius):
                found.append((distance, node))
        found.sort(key=lambda item: (item[0], item[1].id))
        return found

    def connection_candidates(
        self,
        node_type: str,
        x: float,
        y: float,
        exclude_id: Optional[int] = None,
    ) -> List[Tuple[float, Node]]:
        """Existing nodes a node of this type at (x, y) may auto-connect to, nearest first."""
        return [
            (distance, node)
            for distance, node in self.nodes_within(x, y, MAX_CONNECTION_DISTANCE)
            if node.id != exclude_id and can_types_connect(node_type, node.type)
        ]

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def connection_exists(self, node_a_id: int, node_b_id: int) -> bool:
        return Connection.exists_between(node_a_id, node_b_id, self.connections)

    def add_connection(self, from_node: Node, to_node: Node) -> Optional[Connection]:
        """Link two nodes unless a connection already joins them."""
        if from_node.id == to_node.id or self.connection_exists(from_node.id, to_node.id):
            return None
        connection = Connection(from_node_id=from_node.id, to_node_id=to_node.id)
        self.connections.append(connection)
        from_node.connect(to_node.id)
        to_node.connect(from_node.id)
        return connection

    def auto_connect(self, node: Node) -> List[Connection]:
        """Connect a freshly placed node to its nearest eligible neighbors."""
        nearest = self.connection_candidates(node.type, node.x, node.y, exclude_id=node.id)
        created: List[Connection] = []
        for _, neighbor in nearest[:MAX_CONNECTIONS_PER_NODE]:
            connection = self.add_connection(node, neighbor)
            if connection is not None:
                created.append(connection)
        return created

    def connections_of(self, node_id: int) -> List[Connection]:
        return [conn for conn in self.connections if conn.touches(node_id)]

    # ------------------------------------------------------------------
    # Topology
    # ------------------------------------------------------------------

    def reachable_from_core(self, excluded_node_id: Optional[int] = None) -> Set[int]:
        """Breadth-first walk over neighbor ids starting at the CORE."""
        core = self.core
        visited: Set[int] = {core.id}
        queue = deque([core.id])
        while queue:
            current = self.nodes.get(queue.popleft())
            if current is None:
                continue
            for neighbor_id in current.connections:
                if neighbor_id == excluded_node_id or neighbor_id in visited:
                    continue
                if neighbor_id not in self.nodes:
                    continue
                visited.add(neighbor_id)
                queue.append(neighbor_id)
        return visited

    def is_network_connected(self, excluded_node_id: Optional[int] = None) -> bool:
        """True when every node other than the excluded one is reachable from the CORE."""
        remaining = [
            n.id for n in self.nodes.values()
            if n.type != "CORE" and n.id != excluded_node_id
        ]
        if not remaining:
            return True
        visited = self.reachable_from_core(excluded_node_id)
        return all(node_id in visited for node_id in remaining)

    def remove_node(self, node_id: int) -> Optional[Dict[str, Any]]:
        """Remove a node and every attached connection, returning a snapshot."""
        node = self.nodes.get(node_id)
        if node is None:
            return None

        removed = self.connections_of(node_id)
        self.connections = [conn for conn in self.connections if not conn.touches(node_id)]
        for other in self.nodes.values():
            other.disconnect(node_id)
        self.nodes.pop(node_id, None)

        return {
            "node": node.to_dict(),
            "removedConnections": [[conn.from_node_id, conn.to_node_id] for conn in removed],
        }

    def reset_topology(self) -> None:
        """Collapse the network to the CORE alone."""
        core = self.core
        core.connections = []
        core.data_stored = 0.0
        core.buffer.clear()
        self.nodes = {core.id: core}
        self.connections = []

    def reset_resources(self) -> None:
        self.data = INITIAL_DATA
        self.integrity = INITIAL_INTEGRITY
        self.update_bandwidth_usage()

    def restore(self, nodes: Iterable[Node]) -> None:
        """Replace the graph with restored nodes and rebuild connections from their neighbor lists."""
        self.nodes = {node.id: node for node in nodes}
        self.connections = []
        for node in list(self.nodes.values()):
            for neighbor_id in list(node.connections):
                neighbor = self.nodes.get(neighbor_id)
                if neighbor is None:
                    node.disconnect(neighbor_id)
                    continue
                if not self.connection_exists(node.id, neighbor.id):
                    self.add_connection(node, neighbor)
        if self.nodes:
            self._next_node_id = max(self._next_node_id, max(self.nodes) + 1)

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    def simulate_tick(self, delta_ms: float) -> None:
        """
        Advance the network by one tick.

        Order matters: nodes produce, connections move what was produced,
        buffered data is released, everything stored is collected into the
        global pool, then bandwidth and integrity are recomputed and a crash
        is triggered if integrity ran out.
        """
        if self.paused or self.phase is not NetworkPhase.RUNNING:
            return

        delta_ms = max(0.0, min(float(delta_ms), MAX_TICK_DELTA_MS))
        self.game_time += delta_ms
        self.tick_count += 1

        for node in self.nodes.values():
            node.tick(delta_ms, self.nodes)

        for connection in self.connections:
            lost = connection.tick(
                delta_ms,
                self.bandwidth,
                self.nodes,
                now_ms=self.game_time,
                loss_multiplier=self.loss_multiplier,
            )
            self.total_data_lost += lost

        for node in self.nodes.values():
            if node.buffer:
                node.release_buffer(self.game_time)

        self._collect_data()
        self.update_bandwidth_usage()
        self._update_integrity(delta_ms)
        self._check_crash()

    def _collect_data(self) -> None:
        for node in self.nodes.values():
            if node.data_stored > 0:
                collected = node.withdraw()
                self.data += collected
                self.total_data_generated += collected

    def update_bandwidth_usage(self) -> None:
        self.bandwidth_used = sum(
            node.config.bandwidth_cost * node.bandwidth_reduction(self.nodes)
            for node in self.nodes.values()
        )
        self.bandwidth = INITIAL_BANDWIDTH * self.bandwidth_multiplier

    def _update_integrity(self, delta_ms: float) -> None:
        seconds = delta_ms / 1000.0
        if self.bandwidth_used > self.bandwidth and self.bandwidth > 0:
            overload = (self.bandwidth_used - self.bandwidth) / self.bandwidth
            self.integrity -= overload * INTEGRITY_DECAY_PER_OVERLOAD * seconds

        if self.healing_rate > 0:
            self.integrity += self.healing_rate * seconds

        self.integrity = min(max(self.integrity, 0.0), MAX_INTEGRITY)

    def _check_crash(self) -> None:
        if self.integrity > 0 or self.phase is not NetworkPhase.RUNNING:
            return

        self.phase = NetworkPhase.CRASHED
        self.paused = True
        self.crash_count += 1
        LOGGER.info("Network crashed after %.0f ms of game time", self.game_time)

        if self.on_crash is not None:
            self.on_crash(self)
        else:
            self.reboot()

    def reboot(self) -> bool:
        """Finish a crash: keep only the CORE and restore starting resources."""
        if self.phase is not NetworkPhase.CRASHED:
            return False
        self.phase = NetworkPhase.REBOOTING
        self.reset_topology()
        self.reset_resources()
        self.phase = NetworkPhase.RUNNING
        self.paused = False
        LOGGER.info("Network rebooted")
        return True

    def production_rate(self) -> float:
        """Data per second produced by every node with its current neighbor bonuses."""
        return sum(node.production_rate(self.nodes) for node in self.nodes.values())

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def to_tick_message(self) -> Dict[str, Any]:
        nodes_arr = [
            {
                "id": node.id,
                "type": node.type,
                "x": round(node.x, 3),
                "y": round(node.y, 3),
                "dataRate": round(node.data_rate, 3),
                "isActive": node.is_active,
                "connections": list(node.connections),
                "buffered": len(node.buffer),
                "pulse": round(node.pulse_phase, 3),
            }
            for node in self.nodes.values()
        ]
        return {
            "type": "tick",
            "phase": self.phase.value,
            "paused": self.paused,
            "data": round(self.data, 4),
            "bandwidth": round(self.bandwidth, 4),
            "bandwidthUsed": round(self.bandwidth_used, 4),
            "integrity": round(self.integrity, 4),
            "totalDataGenerated": round(self.total_data_generated, 4),
            "totalDataLost": round(self.total_data_lost, 4),
            "gameTime": self.game_time,
            "nodes": nodes_arr,
            "connections": [conn.to_dict() for conn in self.connections],
        }
