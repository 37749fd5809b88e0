"""
Game Engine - economy rules and the command surface on top of the network.
Handles costs, prestige, permanent upgrades, modules, and save/load.
"""
import dataclasses
import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional, Union

from .constants import (
    BASE_OFFLINE_RATE,
    DATA_PER_FRAGMENT,
    MAX_CONNECTIONS_PER_NODE,
    MIN_NODE_DISTANCE,
    NODE_DISCOUNT_PER_LEVEL,
    OFFLINE_MIN_TIME_MS,
    OFFLINE_RATE_PER_LEVEL,
    PERMANENT_UPGRADES,
    PRESTIGE_MODULES,
    PRESTIGE_THRESHOLD,
    PRODUCTION_UPGRADE_TARGETS,
    ROUTER_EXCLUSION_DISTANCE,
    default_permanent_upgrades,
    get_module_config,
)
from .models import Node
from .node_types import NODE_TYPES, NodeTypeConfig
from .savegame import SaveLoadError, build_save_payload, parse_save_payload
from .state import NetworkPhase, NetworkState

LOGGER = logging.getLogger(__name__)

Result = Dict[str, Any]
NodeRef = Union[Node, int]


class GameValidationError(Exception):
    """Raised when a game action fails validation."""
    pass


def _wall_clock_ms() -> float:
    return time.time() * 1000.0


class GameEngine:
    """Economy layer wrapping a NetworkState. Every command returns a result dict."""

    def __init__(
        self,
        on_crash: Optional[Callable[["GameEngine"], None]] = None,
        clock: Callable[[], float] = _wall_clock_ms,
    ) -> None:
        self.on_crash = on_crash
        self.clock = clock
        self.state = NetworkState(on_crash=self._handle_crash)

        # Persisted across crashes and prestige
        self.consciousness_fragments: float = 0.0
        self.prestige_count: int = 0
        self.unlocked_modules: List[str] = []
        self.permanent_upgrades: Dict[str, int] = default_permanent_upgrades()

        self._apply_modules()
        self._apply_upgrades()

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def validate_running(self) -> None:
        if self.state.phase is not NetworkPhase.RUNNING:
            raise GameValidationError("Network is rebooting")

    def validate_node_type(self, node_type: Any) -> NodeTypeConfig:
        config = NODE_TYPES.get(str(node_type))
        if config is None:
            raise GameValidationError(f"Unknown node type: {node_type}")
        return config

    def validate_node_exists(self, node_ref: NodeRef) -> Node:
        node_id = node_ref.id if isinstance(node_ref, Node) else node_ref
        try:
            node = self.state.nodes.get(int(node_id))
        except (TypeError, ValueError):
            node = None
        if node is None:
            raise GameValidationError("Node not found")
        return node

    def validate_sufficient_data(self, cost: float) -> None:
        if self.state.data < cost:
            raise GameValidationError("Not enough Data")

    def validate_sufficient_fragments(self, cost: float) -> None:
        if self.consciousness_fragments < cost:
            raise GameValidationError("Not enough Fragments")

    def _validate_placement(self, config: NodeTypeConfig, x: float, y: float) -> int:
        """Run the ordered placement checks and return the discounted cost."""
        state = self.state
        cost = self.get_node_cost(config.key)

        self.validate_sufficient_data(cost)

        if config.unique and state.count_nodes_of_type(config.key) > 0:
            raise GameValidationError("Unique node already present")

        if state.nodes_within(x, y, MIN_NODE_DISTANCE, inclusive=False):
            raise GameValidationError("Too close to another node")

        if config.key == "ROUTER":
            nearby = state.nodes_within(x, y, ROUTER_EXCLUSION_DISTANCE, inclusive=False)
            if any(node.type == "ROUTER" for _, node in nearby):
                raise GameValidationError("Routers cannot be connected to each other")

        if not state.connection_candidates(config.key, x, y):
            raise GameValidationError("Too far: no connection possible")

        return cost

    @staticmethod
    def _coerce_position(x: Any, y: Any) -> tuple:
        try:
            x_val = float(x)
            y_val = float(y)
        except (TypeError, ValueError):
            raise GameValidationError("Invalid coordinates")
        if math.isnan(x_val) or math.isnan(y_val) or math.isinf(x_val) or math.isinf(y_val):
            raise GameValidationError("Invalid coordinates")
        return x_val, y_val

    # ------------------------------------------------------------------
    # Economy
    # ------------------------------------------------------------------

    def get_node_cost(self, node_type: str) -> int:
        base_cost = NODE_TYPES[node_type].cost
        discount = self.permanent_upgrades.get("nodeDiscount", 0) * NODE_DISCOUNT_PER_LEVEL
        # Rounded first so float noise never bumps the ceiling
        return int(math.ceil(round(base_cost * (1 - discount), 6)))

    def get_upgrade_cost(self, upgrade_key: str) -> int:
        upgrade = PERMANENT_UPGRADES[upgrade_key]
        level = self.permanent_upgrades.get(upgrade_key, 0)
        return int(math.ceil(round(upgrade["baseCost"] * upgrade["costIncrease"] ** level, 6)))

    def is_node_type_unlocked(self, node_type: str) -> bool:
        config = NODE_TYPES.get(str(node_type))
        return config is not None and self.prestige_count >= config.requires_prestige

    def calculate_prestige_reward(self) -> int:
        if self.state.data < PRESTIGE_THRESHOLD:
            return 0
        return int(math.floor(self.state.data / DATA_PER_FRAGMENT))

    @property
    def offline_rate(self) -> float:
        return BASE_OFFLINE_RATE + OFFLINE_RATE_PER_LEVEL * self.permanent_upgrades.get("offlineRate", 0)

    def calculate_offline_gains(self, offline_ms: float) -> int:
        production_rate = self.state.production_rate()
        return int(math.floor(production_rate * (offline_ms / 1000.0) * self.offline_rate))

    def _apply_modules(self) -> None:
        bandwidth_multiplier = 1.0
        loss_multiplier = 1.0
        healing_rate = 0.0
        for key in self.unlocked_modules:
            module = get_module_config(key)
            bandwidth_multiplier *= module.get("bandwidthMultiplier", 1.0)
            loss_multiplier *= module.get("lossMultiplier", 1.0)
            healing_rate += module.get("healingRate", 0.0)

        self.state.bandwidth_multiplier = bandwidth_multiplier
        self.state.loss_multiplier = loss_multiplier
        self.state.healing_rate = healing_rate
        self.state.update_bandwidth_usage()

    def _rate_bonus_for(self, node_type: str) -> float:
        for upgrade_key, target_type in PRODUCTION_UPGRADE_TARGETS.items():
            if target_type == node_type:
                return float(self.permanent_upgrades.get(upgrade_key, 0))
        return 0.0

    def _apply_upgrades(self) -> None:
        for node in self.state.nodes.values():
            node.rate_bonus = self._rate_bonus_for(node.type)

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    def tick(self, delta_ms: float) -> None:
        self.state.simulate_tick(delta_ms)

    def _handle_crash(self, state: NetworkState) -> None:
        LOGGER.info("Integrity depleted; crash #%d", state.crash_count)
        if self.on_crash is not None:
            self.on_crash(self)
        else:
            state.reboot()

    def acknowledge_crash(self) -> Result:
        if not self.state.reboot():
            return {"success": False, "message": "No crash to acknowledge"}
        return {"success": True, "message": "System rebooted"}

    def toggle_pause(self) -> Result:
        if self.state.phase is not NetworkPhase.RUNNING:
            return {"success": False, "message": "Network is rebooting"}
        self.state.paused = not self.state.paused
        return {"success": True, "paused": self.state.paused}

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def add_node(self, node_type: str, x: Any, y: Any) -> Result:
        """Place a node, pay for it and auto-connect it to nearby eligible nodes."""
        try:
            self.validate_running()
            config = self.validate_node_type(node_type)
            x_val, y_val = self._coerce_position(x, y)
            cost = self._validate_placement(config, x_val, y_val)
        except GameValidationError as e:
            return {"success": False, "message": str(e)}

        node = self.state.create_node(config.key, x_val, y_val)
        node.rate_bonus = self._rate_bonus_for(config.key)
        self.state.data -= cost
        connections = self.state.auto_connect(node)

        LOGGER.debug("Placed %s #%d at (%.1f, %.1f) with %d links", config.key, node.id, x_val, y_val, len(connections))
        return {"success": True, "node": node, "connections": connections, "cost": cost}

    def preview_node(self, node_type: str, x: Any, y: Any) -> Result:
        """Project the outcome of a placement without changing anything."""
        if "PREDICTIVE_FLOW" not in self.unlocked_modules:
            return {"success": False, "message": "Predictive Flow module required"}
        try:
            config = self.validate_node_type(node_type)
            x_val, y_val = self._coerce_position(x, y)
        except GameValidationError as e:
            return {"success": False, "message": str(e)}

        reason: Optional[str] = None
        try:
            self.validate_running()
            self._validate_placement(config, x_val, y_val)
        except GameValidationError as e:
            reason = str(e)

        candidates = self.state.connection_candidates(config.key, x_val, y_val)
        neighbors = [node for _, node in candidates[:MAX_CONNECTIONS_PER_NODE]]
        ghost = Node(
            id=self.state.next_node_id,
            type=config.key,
            x=x_val,
            y=y_val,
            connections=[n.id for n in neighbors],
        )
        projected: Dict[int, Node] = dict(self.state.nodes)
        for neighbor in neighbors:
            projected[neighbor.id] = dataclasses.replace(neighbor, connections=neighbor.connections + [ghost.id])
        projected[ghost.id] = ghost
        bandwidth_used = sum(n.config.bandwidth_cost * n.bandwidth_reduction(projected) for n in projected.values())

        result: Result = {
            "success": True,
            "valid": reason is None,
            "cost": self.get_node_cost(config.key),
            "connectTo": [n.id for n in neighbors],
            "bandwidthUsed": bandwidth_used,
            "bandwidth": self.state.bandwidth,
            "overloaded": bandwidth_used > self.state.bandwidth,
        }
        if reason is not None:
            result["message"] = reason
        return result

    def delete_node(self, node_ref: NodeRef) -> Result:
        try:
            self.validate_running()
            node = self.validate_node_exists(node_ref)
            if node.type == "CORE":
                raise GameValidationError("Cannot delete the Core")
            if not self.state.is_network_connected(excluded_node_id=node.id):
                raise GameValidationError("Cannot delete: the network would be disconnected")
        except GameValidationError as e:
            return {"success": False, "message": str(e)}

        removal = self.state.remove_node(node.id)
        LOGGER.debug("Deleted %s #%d", node.type, node.id)
        payload: Result = {"success": True}
        if removal:
            payload.update(removal)
        return payload

    def create_connection(self, from_ref: NodeRef, to_ref: NodeRef) -> Result:
        try:
            self.validate_running()
            from_node = self.validate_node_exists(from_ref)
            to_node = self.validate_node_exists(to_ref)
            if from_node.id == to_node.id:
                raise GameValidationError("Cannot connect a node to itself")
            if self.state.connection_exists(from_node.id, to_node.id):
                raise GameValidationError("Connection already exists")
        except GameValidationError as e:
            return {"success": False, "message": str(e)}

        connection = self.state.add_connection(from_node, to_node)
        return {"success": True, "connection": connection}

    def prestige(self) -> Result:
        """Trade accumulated Data for fragments and restart from the Core."""
        try:
            self.validate_running()
            if self.state.data < PRESTIGE_THRESHOLD:
                raise GameValidationError("Not enough Data for Prestige")
        except GameValidationError as e:
            return {"success": False, "message": str(e)}

        fragments_gained = self.calculate_prestige_reward()
        self.consciousness_fragments += fragments_gained
        self.prestige_count += 1

        self.state.reset_topology()
        self.state.reset_resources()

        LOGGER.info("Prestige #%d granted %d fragments", self.prestige_count, fragments_gained)
        return {
            "success": True,
            "fragmentsGained": fragments_gained,
            "message": f"+{fragments_gained} Consciousness Fragments",
        }

    def unlock_module(self, module_key: str, cost: Optional[float] = None) -> Result:
        try:
            module = PRESTIGE_MODULES.get(str(module_key))
            if module is None:
                raise GameValidationError(f"Unknown module: {module_key}")
            if cost is None:
                cost = module["cost"]
            try:
                cost = float(cost)
            except (TypeError, ValueError):
                raise GameValidationError("Invalid module cost")
            if cost < 0:
                raise GameValidationError("Invalid module cost")
            self.validate_sufficient_fragments(cost)
            if module_key in self.unlocked_modules:
                raise GameValidationError("Module already unlocked")
        except GameValidationError as e:
            return {"success": False, "message": str(e)}

        self.consciousness_fragments -= cost
        self.unlocked_modules.append(module_key)
        self._apply_modules()
        LOGGER.info("Unlocked module %s", module_key)
        return {"success": True, "moduleKey": module_key}

    def buy_upgrade(self, upgrade_key: str) -> Result:
        try:
            upgrade = PERMANENT_UPGRADES.get(str(upgrade_key))
            if upgrade is None:
                raise GameValidationError(f"Unknown upgrade: {upgrade_key}")
            level = self.permanent_upgrades.get(upgrade_key, 0)
            if level >= upgrade["maxLevel"]:
                raise GameValidationError("Maximum level reached")
            cost = self.get_upgrade_cost(upgrade_key)
            self.validate_sufficient_fragments(cost)
        except GameValidationError as e:
            return {"success": False, "message": str(e)}

        self.consciousness_fragments -= cost
        self.permanent_upgrades[upgrade_key] = level + 1
        self._apply_upgrades()
        return {"success": True, "upgradeKey": upgrade_key, "level": level + 1, "cost": cost}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, now_ms: Optional[float] = None) -> Result:
        now = self.clock() if now_ms is None else float(now_ms)
        return {"success": True, "save": build_save_payload(self, now)}

    def load(self, raw: Any, now_ms: Optional[float] = None) -> Result:
        """Replace the current game with a saved one; on failure nothing changes."""
        try:
            save = parse_save_payload(raw)
        except SaveLoadError as e:
            LOGGER.warning("Rejected save payload: %s", e)
            return {"success": False, "message": f"Load failed: {e}"}

        state = self.state
        state.restore(save.nodes)
        state.data = save.data
        state.bandwidth = save.bandwidth
        state.integrity = save.integrity
        state.total_data_generated = save.total_data_generated
        state.total_data_lost = save.total_data_lost
        state.game_time = save.game_time
        state.phase = NetworkPhase.RUNNING
        state.paused = False

        self.consciousness_fragments = save.consciousness_fragments
        self.prestige_count = save.prestige_count
        self.unlocked_modules = list(save.unlocked_modules)
        self.permanent_upgrades = dict(save.permanent_upgrades)
        self._apply_modules()
        self._apply_upgrades()

        now = self.clock() if now_ms is None else float(now_ms)
        last_save = save.last_save_time if save.last_save_time is not None else now
        offline_ms = now - last_save
        LOGGER.info("Loaded save with %d nodes", len(state.nodes))

        if offline_ms > OFFLINE_MIN_TIME_MS:
            offline_gains = self.calculate_offline_gains(offline_ms)
            state.data += offline_gains
            return {
                "success": True,
                "offlineGains": offline_gains,
                "offlineMinutes": int(offline_ms // 60_000),
            }
        return {"success": True}

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def to_tick_message(self) -> Dict[str, Any]:
        message = self.state.to_tick_message()
        message["consciousnessFragments"] = self.consciousness_fragments
        message["prestigeCount"] = self.prestige_count
        message["prestigeReward"] = self.calculate_prestige_reward()
        return message

    def to_init_message(self) -> Dict[str, Any]:
        node_types = []
        for key, config in NODE_TYPES.items():
            node_types.append(
                {
                    "key": key,
                    "name": config.name,
                    "description": config.description,
                    "cost": self.get_node_cost(key),
                    "bandwidthCost": config.bandwidth_cost,
                    "dataRate": config.data_rate,
                    "unique": config.unique,
                    "requiresPrestige": config.requires_prestige,
                    "unlocked": self.is_node_type_unlocked(key),
                }
            )

        upgrades = []
        for key, upgrade in PERMANENT_UPGRADES.items():
            level = self.permanent_upgrades.get(key, 0)
            upgrades.append(
                {
                    "key": key,
                    "name": upgrade["name"],
                    "description": upgrade["description"],
                    "level": level,
                    "maxLevel": upgrade["maxLevel"],
                    "cost": self.get_upgrade_cost(key) if level < upgrade["maxLevel"] else None,
                }
            )

        modules = [
            {
                "key": key,
                "name": module["name"],
                "description": module["description"],
                "cost": module["cost"],
                "unlocked": key in self.unlocked_modules,
            }
            for key, module in PRESTIGE_MODULES.items()
        ]

        return {
            "type": "init",
            "nodeTypes": node_types,
            "upgrades": upgrades,
            "modules": modules,
            "offlineRate": self.offline_rate,
            "state": self.to_tick_message(),
        }

