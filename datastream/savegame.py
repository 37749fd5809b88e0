"""Persisted save payloads: building them from an engine and parsing them back."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .constants import (
    INITIAL_BANDWIDTH,
    INITIAL_INTEGRITY,
    MAX_INTEGRITY,
    PERMANENT_UPGRADES,
    PRESTIGE_MODULES,
    default_permanent_upgrades,
)
from .models import Node

if TYPE_CHECKING:  # pragma: no cover - import only for type checking
    from .game_engine import GameEngine

LOGGER = logging.getLogger(__name__)


class SaveLoadError(Exception):
    """Raised when a save payload cannot be loaded."""


@dataclass
class SaveData:
    """Validated contents of a save payload, not yet applied to any engine."""

    data: float
    nodes: List[Node]
    bandwidth: float = INITIAL_BANDWIDTH
    integrity: float = INITIAL_INTEGRITY
    consciousness_fragments: float = 0.0
    total_data_generated: float = 0.0
    total_data_lost: float = 0.0
    prestige_count: int = 0
    unlocked_modules: List[str] = field(default_factory=list)
    permanent_upgrades: Dict[str, int] = field(default_factory=default_permanent_upgrades)
    game_time: float = 0.0
    last_save_time: Optional[float] = None


def _coerce_float(value: Any, default: float = 0.0) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result


def _coerce_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def build_save_payload(engine: "GameEngine", now_ms: float) -> Dict[str, Any]:
    state = engine.state
    return {
        "data": state.data,
        "bandwidth": state.bandwidth,
        "integrity": state.integrity,
        "consciousnessFragments": engine.consciousness_fragments,
        "totalDataGenerated": state.total_data_generated,
        "totalDataLost": state.total_data_lost,
        "prestigeCount": engine.prestige_count,
        "nodes": [node.to_dict() for node in state.nodes.values()],
        "unlockedModules": list(engine.unlocked_modules),
        "permanentUpgrades": dict(engine.permanent_upgrades),
        "gameTime": state.game_time,
        "lastSaveTime": now_ms,
    }


def _parse_nodes(raw_nodes: Any) -> List[Node]:
    if not isinstance(raw_nodes, list):
        raise SaveLoadError("Save is missing its node list")

    nodes: List[Node] = []
    seen_ids = set()
    for raw in raw_nodes:
        if not isinstance(raw, dict):
            raise SaveLoadError("Node entries must be objects")
        try:
            node = Node.from_dict(raw)
        except KeyError as err:
            raise SaveLoadError(f"Node entry missing or unknown value: {err}") from err
        except (TypeError, ValueError) as err:
            raise SaveLoadError(f"Invalid node entry: {err}") from err
        if node.id in seen_ids:
            raise SaveLoadError(f"Duplicate node id {node.id}")
        seen_ids.add(node.id)
        nodes.append(node)

    core_count = sum(1 for node in nodes if node.type == "CORE")
    if core_count != 1:
        raise SaveLoadError(f"Save must contain exactly one CORE node, found {core_count}")
    return nodes


def _parse_upgrades(raw_upgrades: Any) -> Dict[str, int]:
    upgrades = default_permanent_upgrades()
    if not isinstance(raw_upgrades, dict):
        return upgrades
    for key, level in raw_upgrades.items():
        upgrade = PERMANENT_UPGRADES.get(key)
        if upgrade is None:
            LOGGER.warning("Ignoring unknown permanent upgrade %r in save", key)
            continue
        upgrades[key] = max(0, min(_coerce_int(level), int(upgrade["maxLevel"])))
    return upgrades


def _parse_modules(raw_modules: Any) -> List[str]:
    modules: List[str] = []
    if not isinstance(raw_modules, list):
        return modules
    for key in raw_modules:
        if key not in PRESTIGE_MODULES:
            LOGGER.warning("Ignoring unknown prestige module %r in save", key)
            continue
        if key not in modules:
            modules.append(key)
    return modules


def parse_save_payload(raw: Any) -> SaveData:
    """Validate a save (JSON text or decoded object) without touching any engine."""
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            raw = json.loads(raw)
        except (TypeError, ValueError) as err:
            raise SaveLoadError(f"Save is not valid JSON: {err}") from err

    if not isinstance(raw, dict):
        raise SaveLoadError("Save payload must be an object")

    if "data" not in raw:
        raise SaveLoadError("Save is missing its data amount")
    data_value = _coerce_float(raw.get("data"), default=math.nan)
    if math.isnan(data_value):
        raise SaveLoadError("Save data amount is not a number")

    # Missing or unusable timestamps grant no offline gains
    last_save: Optional[float] = _coerce_float(raw.get("lastSaveTime"), default=math.nan)
    if math.isnan(last_save) or last_save <= 0:
        last_save = None

    return SaveData(
        data=data_value,
        nodes=_parse_nodes(raw.get("nodes")),
        bandwidth=_coerce_float(raw.get("bandwidth"), INITIAL_BANDWIDTH),
        integrity=min(max(_coerce_float(raw.get("integrity"), INITIAL_INTEGRITY), 0.0), MAX_INTEGRITY),
        consciousness_fragments=max(0.0, _coerce_float(raw.get("consciousnessFragments"))),
        total_data_generated=_coerce_float(raw.get("totalDataGenerated")),
        total_data_lost=_coerce_float(raw.get("totalDataLost")),
        prestige_count=max(0, _coerce_int(raw.get("prestigeCount"))),
        unlocked_modules=_parse_modules(raw.get("unlockedModules")),
        permanent_upgrades=_parse_upgrades(raw.get("permanentUpgrades")),
        game_time=max(0.0, _coerce_float(raw.get("gameTime"))),
        last_save_time=last_save,
    )
