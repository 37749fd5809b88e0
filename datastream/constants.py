from typing import Any, Dict

# Play area (the renderer draws the same plane)
CANVAS_WIDTH: float = 1200.0
CANVAS_HEIGHT: float = 800.0


# Core timing
TICK_INTERVAL_SECONDS: float = 0.1
MAX_TICK_DELTA_MS: float = 100.0  # elapsed time above this is dropped, not queued
AUTOSAVE_INTERVAL_MS: float = 30_000.0


# Starting resources
INITIAL_DATA: float = 10.0
INITIAL_BANDWIDTH: float = 100.0
INITIAL_INTEGRITY: float = 100.0
MAX_INTEGRITY: float = 100.0


# Placement and connectivity
MIN_NODE_DISTANCE: float = 50.0
MAX_CONNECTION_DISTANCE: float = 200.0
MAX_CONNECTIONS_PER_NODE: int = 3
ROUTER_EXCLUSION_DISTANCE: float = 200.0


# Flow and loss tuning
MAX_TRANSFER_PER_SECOND: float = 1.0
IDEAL_BANDWIDTH_SCALE: float = 100.0
DISTANCE_LOSS_DIVISOR: float = 500.0
MAX_DISTANCE_LOSS: float = 0.3
SATURATION_LOSS_FACTOR: float = 0.2
MAX_LOSS_REDUCTION: float = 0.9


# Integrity
INTEGRITY_DECAY_PER_OVERLOAD: float = 5.0  # per second, per unit of overload ratio


# Buffer (MEMORY) nodes
BUFFER_RELEASE_DELAY_MS: float = 10_000.0


# Connection particles (renderer only)
MAX_PARTICLES_PER_CONNECTION: int = 10
PARTICLE_SPAWN_INTERVAL_MS: float = 200.0
PARTICLE_SPEED: float = 0.5
PARTICLE_MAX_PROGRESS: float = 1.3


# Prestige economy
PRESTIGE_THRESHOLD: float = 1000.0
DATA_PER_FRAGMENT: float = 1000.0
NODE_DISCOUNT_PER_LEVEL: float = 0.05


# Offline gains
OFFLINE_MIN_TIME_MS: float = 60_000.0
BASE_OFFLINE_RATE: float = 0.25
OFFLINE_RATE_PER_LEVEL: float = 0.05


# Prestige modules (bought with consciousness fragments)
PRESTIGE_MODULES: Dict[str, Dict[str, Any]] = {
    "PREDICTIVE_FLOW": {
        "name": "Predictive Flow",
        "description": "Preview network load before placing a node",
        "cost": 5,
    },
    "QUANTUM_COMPRESSION": {
        "name": "Quantum Compression",
        "description": "-25% losses on every connection",
        "cost": 10,
        "lossMultiplier": 0.75,
    },
    "FRACTAL_ROUTING": {
        "name": "Fractal Routing",
        "description": "+15% bandwidth capacity",
        "cost": 15,
        "bandwidthMultiplier": 1.15,
    },
    "SELF_HEALING": {
        "name": "Self-Healing",
        "description": "Integrity regenerates +1%/s",
        "cost": 20,
        "healingRate": 1.0,
    },
}


# Permanent upgrades (levels survive crashes and prestige)
PERMANENT_UPGRADES: Dict[str, Dict[str, Any]] = {
    "offlineRate": {
        "name": "Offline Production",
        "description": "+5% offline gains per level",
        "baseCost": 5,
        "costIncrease": 1.5,
        "maxLevel": 10,
    },
    "coreProduction": {
        "name": "Core Optimisation",
        "description": "+1 Data/s Core production per level",
        "baseCost": 3,
        "costIncrease": 1.4,
        "maxLevel": 15,
    },
    "processorProduction": {
        "name": "Processor Optimisation",
        "description": "+1 Data/s Processor production per level",
        "baseCost": 5,
        "costIncrease": 1.5,
        "maxLevel": 15,
    },
    "nodeDiscount": {
        "name": "Network Efficiency",
        "description": "-5% cost on every node per level",
        "baseCost": 10,
        "costIncrease": 1.6,
        "maxLevel": 10,
    },
}

# Upgrade key -> node type whose effective rate it raises by one per level
PRODUCTION_UPGRADE_TARGETS: Dict[str, str] = {
    "coreProduction": "CORE",
    "processorProduction": "PROCESSOR",
}


def default_permanent_upgrades() -> Dict[str, int]:
    return {key: 0 for key in PERMANENT_UPGRADES}


def get_module_config(module_key: str) -> Dict[str, Any]:
    return PRESTIGE_MODULES.get(str(module_key), {})
