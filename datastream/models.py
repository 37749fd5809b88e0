from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Mapping, Tuple

from .constants import (
    BUFFER_RELEASE_DELAY_MS,
    DISTANCE_LOSS_DIVISOR,
    IDEAL_BANDWIDTH_SCALE,
    MAX_DISTANCE_LOSS,
    MAX_LOSS_REDUCTION,
    MAX_PARTICLES_PER_CONNECTION,
    MAX_TRANSFER_PER_SECOND,
    PARTICLE_MAX_PROGRESS,
    PARTICLE_SPAWN_INTERVAL_MS,
    PARTICLE_SPEED,
    SATURATION_LOSS_FACTOR,
)
from .node_types import EffectKind, NodeTypeConfig, get_node_type


@dataclass
class Node:
    id: int
    type: str
    x: float
    y: float
    data_stored: float = 0.0
    is_active: bool = True
    connections: List[int] = field(default_factory=list)  # neighbor node ids
    # Additive production bonus from permanent upgrades; recomputed, never accumulated
    rate_bonus: float = field(default=0.0, compare=False)
    pulse_phase: float = field(default=0.0, compare=False)
    # (amount, enqueue game time in ms) for buffering node types
    buffer: Deque[Tuple[float, float]] = field(default_factory=deque, compare=False)

    @property
    def config(self) -> NodeTypeConfig:
        return get_node_type(self.type)

    @property
    def data_rate(self) -> float:
        base_rate = self.config.data_rate
        if base_rate <= 0:
            return 0.0
        return base_rate + self.rate_bonus

    def distance_to(self, other: "Node") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def neighbor_aggregate(self, kind: EffectKind, nodes: Mapping[int, "Node"]) -> float:
        """
        Combine the effects of connected, active neighbors.

        Data boosts and bandwidth reductions multiply together starting from 1.0.
        Loss reductions add up and are capped at MAX_LOSS_REDUCTION so some of
        the base loss always survives.
        """
        contributions: List[float] = []
        for neighbor_id in self.connections:
            neighbor = nodes.get(neighbor_id)
            if neighbor is None or not neighbor.is_active:
                continue
            effect = neighbor.config.neighbor_effect
            if effect is None:
                continue
            value = effect.contribution(kind)
            if value is not None:
                contributions.append(value)

        if kind is EffectKind.LOSS_REDUCTION:
            return min(sum(contributions), MAX_LOSS_REDUCTION)

        result = 1.0
        for value in contributions:
            result *= value
        return result

    def data_bonus(self, nodes: Mapping[int, "Node"]) -> float:
        return self.neighbor_aggregate(EffectKind.DATA_BOOST, nodes)

    def bandwidth_reduction(self, nodes: Mapping[int, "Node"]) -> float:
        return self.neighbor_aggregate(EffectKind.BANDWIDTH_REDUCTION, nodes)

    def loss_reduction(self, nodes: Mapping[int, "Node"]) -> float:
        return self.neighbor_aggregate(EffectKind.LOSS_REDUCTION, nodes)

    def production_rate(self, nodes: Mapping[int, "Node"]) -> float:
        """Data per second this node would produce with its current neighbors."""
        rate = self.data_rate
        if rate <= 0:
            return 0.0
        return rate * self.data_bonus(nodes)

    def tick(self, delta_ms: float, nodes: Mapping[int, "Node"]) -> None:
        if not self.is_active:
            return

        if self.data_rate > 0:
            self.data_stored += self.production_rate(nodes) * (delta_ms / 1000.0)

        self.pulse_phase = (self.pulse_phase + delta_ms * 0.003) % (2 * math.pi)

    def receive(self, amount: float, now_ms: float = 0.0) -> float:
        """Accept delivered data and return the part that was dropped."""
        capacity = self.config.buffer_capacity
        if capacity > 0:
            if len(self.buffer) >= capacity:
                return amount
            self.buffer.append((amount, now_ms))
            return 0.0
        self.data_stored += amount
        return 0.0

    def release_buffer(self, now_ms: float) -> float:
        """Move buffered entries older than the release delay into stored data."""
        released = 0.0
        while self.buffer and now_ms - self.buffer[0][1] > BUFFER_RELEASE_DELAY_MS:
            amount, _ = self.buffer.popleft()
            released += amount
        self.data_stored += released
        return released

    def withdraw(self) -> float:
        amount = self.data_stored
        self.data_stored = 0.0
        return amount

    def connect(self, node_id: int) -> None:
        if node_id not in self.connections:
            self.connections.append(node_id)

    def disconnect(self, node_id: int) -> None:
        self.connections = [nid for nid in self.connections if nid != node_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "x": self.x,
            "y": self.y,
            "dataStored": self.data_stored,
            "connections": list(self.connections),
            "isActive": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Node":
        """Rebuild a node from its persisted shape; raises on malformed input."""
        node_type = str(data["type"])
        get_node_type(node_type)
        connections: List[int] = []
        for neighbor_id in data.get("connections") or []:
            neighbor_id = int(neighbor_id)
            if neighbor_id not in connections:
                connections.append(neighbor_id)
        x = float(data["x"])
        y = float(data["y"])
        data_stored = float(data.get("dataStored", 0.0) or 0.0)
        if not (math.isfinite(x) and math.isfinite(y) and math.isfinite(data_stored)):
            raise ValueError(f"Node {data['id']} has a non-finite position or data amount")
        return cls(
            id=int(data["id"]),
            type=node_type,
            x=x,
            y=y,
            data_stored=max(0.0, data_stored),
            is_active=bool(data.get("isActive", True)),
            connections=connections,
        )


@dataclass
class Connection:
    from_node_id: int
    to_node_id: int
    flow_rate: float = 0.0  # effective amount delivered in the most recent tick
    saturation: float = 0.0
    losses: float = 0.0
    last_lost: float = 0.0  # amount lost in the most recent tick
    # Renderer-only progress values along the link
    particles: Deque[float] = field(
        default_factory=lambda: deque(maxlen=MAX_PARTICLES_PER_CONNECTION),
        compare=False,
    )
    last_particle_spawn_ms: float = field(default=-math.inf, compare=False)

    @property
    def key(self) -> frozenset:
        return frozenset((self.from_node_id, self.to_node_id))

    def touches(self, node_id: int) -> bool:
        return node_id in (self.from_node_id, self.to_node_id)

    def other_end(self, node_id: int) -> int:
        return self.to_node_id if node_id == self.from_node_id else self.from_node_id

    @staticmethod
    def exists_between(node_a_id: int, node_b_id: int, connections: Iterable["Connection"]) -> bool:
        pair = frozenset((node_a_id, node_b_id))
        return any(conn.key == pair for conn in connections)

    def tick(
        self,
        delta_ms: float,
        bandwidth_capacity: float,
        nodes: Mapping[int, Node],
        now_ms: float = 0.0,
        loss_multiplier: float = 1.0,
    ) -> float:
        """
        Move data from the source node to the destination node.

        Transfer is limited to MAX_TRANSFER_PER_SECOND units of source data per
        simulated second. Losses grow with distance and saturation and are
        mitigated by loss-reducing neighbors on either end. Returns the amount
        lost in transit.
        """
        from_node = nodes[self.from_node_id]
        to_node = nodes[self.to_node_id]

        available = from_node.data_stored
        distance = max(from_node.distance_to(to_node), 1e-9)

        ideal_bandwidth = (available / distance) * IDEAL_BANDWIDTH_SCALE
        if bandwidth_capacity > 0:
            self.saturation = max(0.0, min(ideal_bandwidth / bandwidth_capacity, 1.0))
        else:
            self.saturation = 1.0

        distance_loss = min(distance / DISTANCE_LOSS_DIVISOR, MAX_DISTANCE_LOSS)
        saturation_loss = self.saturation * SATURATION_LOSS_FACTOR
        base_loss = distance_loss + saturation_loss

        avg_reduction = (from_node.loss_reduction(nodes) + to_node.loss_reduction(nodes)) / 2.0
        self.losses = max(base_loss * (1.0 - avg_reduction), 0.0) * loss_multiplier

        self.last_lost = 0.0
        if available > 0:
            transfer = min(available, MAX_TRANSFER_PER_SECOND) * (delta_ms / 1000.0)
            effective = transfer * (1.0 - self.losses)

            from_node.data_stored -= transfer
            dropped = to_node.receive(effective, now_ms)

            self.flow_rate = effective - dropped
            self.last_lost = transfer - effective + dropped
            self._spawn_particle(now_ms)
        else:
            self.flow_rate = 0.0

        self._advance_particles(delta_ms)
        return self.last_lost

    def _spawn_particle(self, now_ms: float) -> None:
        if now_ms - self.last_particle_spawn_ms > PARTICLE_SPAWN_INTERVAL_MS:
            self.particles.append(0.0)
            self.last_particle_spawn_ms = now_ms

    def _advance_particles(self, delta_ms: float) -> None:
        step = PARTICLE_SPEED * (delta_ms / 1000.0)
        moved = [progress + step for progress in self.particles]
        self.particles.clear()
        self.particles.extend(p for p in moved if p < PARTICLE_MAX_PROGRESS)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_node_id,
            "to": self.to_node_id,
            "flowRate": round(self.flow_rate, 4),
            "saturation": round(self.saturation, 4),
            "losses": round(self.losses, 4),
            "particles": [round(p, 3) for p in self.particles],
        }
