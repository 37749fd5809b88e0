"""Static node type metadata and the neighbor effects each type applies."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union


class EffectKind(Enum):
    DATA_BOOST = "dataBoost"
    BANDWIDTH_REDUCTION = "bandwidthReduction"
    LOSS_REDUCTION = "lossReduction"


@dataclass(frozen=True)
class DataBoost:
    """Multiplies the production of every connected neighbor."""

    multiplier: float

    def contribution(self, kind: EffectKind) -> Optional[float]:
        return self.multiplier if kind is EffectKind.DATA_BOOST else None


@dataclass(frozen=True)
class BandwidthReduction:
    """Multiplies the bandwidth cost of every connected neighbor."""

    multiplier: float

    def contribution(self, kind: EffectKind) -> Optional[float]:
        return self.multiplier if kind is EffectKind.BANDWIDTH_REDUCTION else None


@dataclass(frozen=True)
class LossReduction:
    """Fraction of connection loss removed on a neighbor's links (summed, capped)."""

    amount: float

    def contribution(self, kind: EffectKind) -> Optional[float]:
        return self.amount if kind is EffectKind.LOSS_REDUCTION else None


@dataclass(frozen=True)
class Hybrid:
    bandwidth_reduction: float
    data_boost: float

    def contribution(self, kind: EffectKind) -> Optional[float]:
        if kind is EffectKind.BANDWIDTH_REDUCTION:
            return self.bandwidth_reduction
        if kind is EffectKind.DATA_BOOST:
            return self.data_boost
        return None


NeighborEffect = Union[DataBoost, BandwidthReduction, LossReduction, Hybrid]


@dataclass(frozen=True)
class NodeTypeConfig:
    key: str
    name: str
    cost: float
    bandwidth_cost: float
    data_rate: float
    description: str = ""
    neighbor_effect: Optional[NeighborEffect] = None
    unique: bool = False
    requires_prestige: int = 0
    buffer_capacity: int = 0  # > 0 only for buffering nodes

    @property
    def is_buffer(self) -> bool:
        return self.buffer_capacity > 0


NODE_TYPES: Dict[str, NodeTypeConfig] = {
    "CORE": NodeTypeConfig(
        key="CORE",
        name="Core",
        cost=0,
        bandwidth_cost=0,
        data_rate=2,
        description="Network origin. Produces Data and anchors any other node type.",
        unique=True,
    ),
    "PROCESSOR": NodeTypeConfig(
        key="PROCESSOR",
        name="Processor",
        cost=10,
        bandwidth_cost=8,
        data_rate=6,
        description="Produces Data and acts as a hub for the other node types.",
    ),
    "ROUTER": NodeTypeConfig(
        key="ROUTER",
        name="Router",
        cost=15,
        bandwidth_cost=3,
        data_rate=0,
        description="Halves the bandwidth use of connected nodes.",
        neighbor_effect=BandwidthReduction(0.5),
    ),
    "COMPRESSOR": NodeTypeConfig(
        key="COMPRESSOR",
        name="Compressor",
        cost=20,
        bandwidth_cost=4,
        data_rate=0,
        description="Removes 50% of the losses on neighbor connections.",
        neighbor_effect=LossReduction(0.5),
    ),
    "CACHE": NodeTypeConfig(
        key="CACHE",
        name="Cache",
        cost=25,
        bandwidth_cost=3,
        data_rate=0,
        description="Raises the Data production of connected nodes by 30%.",
        neighbor_effect=DataBoost(1.3),
    ),
    "AMPLIFIER": NodeTypeConfig(
        key="AMPLIFIER",
        name="Amplifier",
        cost=35,
        bandwidth_cost=12,
        data_rate=0,
        description="Multiplies neighbor production by 1.8 at a heavy bandwidth price.",
        neighbor_effect=DataBoost(1.8),
    ),
    "OPTIMIZER": NodeTypeConfig(
        key="OPTIMIZER",
        name="Optimizer",
        cost=100,
        bandwidth_cost=8,
        data_rate=8,
        description="Cuts neighbor bandwidth by 40% and raises their production by 25%.",
        neighbor_effect=Hybrid(bandwidth_reduction=0.6, data_boost=1.25),
        requires_prestige=1,
    ),
    "MEMORY": NodeTypeConfig(
        key="MEMORY",
        name="Memory",
        cost=30,
        bandwidth_cost=5,
        data_rate=0,
        description="Buffers incoming Data and releases it 10 seconds later.",
        requires_prestige=2,
        buffer_capacity=20,
    ),
}

HUB_TYPES = frozenset({"CORE", "PROCESSOR"})


def get_node_type(type_key: str) -> NodeTypeConfig:
    """Look up a node type, raising KeyError for unknown keys."""
    return NODE_TYPES[str(type_key)]


def is_hub_type(type_key: str) -> bool:
    return type_key in HUB_TYPES


def can_types_connect(type_a: str, type_b: str) -> bool:
    # At least one endpoint must be a hub
    return is_hub_type(type_a) or is_hub_type(type_b)
