"""
Configuration constants and YAML config loading for the coordination server.

This module collects the timing constants, thresholds and default per-type
hazard decay rates used across the server, plus `load_config()` which merges
a YAML file over `DEFAULT_CONFIG`.
"""

import copy
import logging
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

# =============================================================================
# SIMULATION TIMING CONSTANTS
# =============================================================================
TICK_INCREMENT = 0.2  # Simulated seconds added per tick
TICKS_PER_SECOND = 5  # Ticks per wall-clock second at game speed 1
DEFAULT_GAME_SPEED = 1.0

# =============================================================================
# AGENT CONSTANTS
# =============================================================================
HEARTBEAT_TIMEOUT_SEC = 20.0  # Real agents time out after this long without a heartbeat
AGENT_SPEED = 15.0  # Meters per simulated second
WAYPOINT_ARRIVAL_THRESHOLD = 3.0  # Distance to consider a waypoint reached (m)
FLOCKING_RADIUS = 250.0  # Neighbours closer than this influence flocking (m)
FLOCKING_WEIGHT = 0.1  # Fraction of the flocking vector applied per tick
BATTERY_DRAIN_PER_METER = 0.00002  # Battery fraction spent per meter flown

# =============================================================================
# HAZARD CONSTANTS
# =============================================================================
HAZARD_NONE = -1  # Exploration trail marker, not a real hazard
HAZARD_FIRE = 0
HAZARD_DEBRIS = 1
HAZARD_CELL_PLACES = 4  # Hits are coalesced on a 1e-4 degree grid
DEFAULT_HAZARD_DECAY_RATES = {
    HAZARD_NONE: 0.001,
    HAZARD_FIRE: 0.0,
    HAZARD_DEBRIS: 0.0,
}

# =============================================================================
# ALLOCATION CONSTANTS
# =============================================================================
ALLOCATION_METHODS = ("random", "maxsum")
DEFAULT_ALLOCATION_METHOD = "maxsum"
UTILITY_DISTANCE_SCALE = 500.0  # Distance at which proximity utility halves (m)

# =============================================================================
# EDIT MODES
# =============================================================================
EDIT_MODE_MONITOR = 1
EDIT_MODE_EDIT = 2
EDIT_MODE_IMAGES = 3

# =============================================================================
# GAME TYPES
# =============================================================================
GAME_TYPE_SANDBOX = 0
GAME_TYPE_SCENARIO = 1

# =============================================================================
# IMAGE CAPTURE
# =============================================================================
IMAGE_CAPTURE_DELAY_SEC = 1.0  # Delay before a requested shallow capture is delivered
DEEP_SCAN_CAPTURE_DELAY_SEC = 5.0


DEFAULT_CONFIG: Dict[str, Any] = {
    "simulation": {
        "game_speed": DEFAULT_GAME_SPEED,
        "tick_increment": TICK_INCREMENT,
    },
    "agents": {
        "speed": AGENT_SPEED,
        "heartbeat_timeout_sec": HEARTBEAT_TIMEOUT_SEC,
        "arrival_threshold": WAYPOINT_ARRIVAL_THRESHOLD,
    },
    "hazards": {
        "decay_rates": dict(DEFAULT_HAZARD_DECAY_RATES),
    },
    "allocation": {
        "method": DEFAULT_ALLOCATION_METHOD,
        "seed": None,
    },
    "scenarios": {
        "directory": "scenarios",
    },
}


def _merge(base: dict, override: dict) -> dict:
    """Recursively merge override into a copy of base"""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load server configuration from YAML, falling back to defaults.

    Hazard decay rate keys are normalised to int so YAML files can write
    them either as `-1:` or `"-1":`.
    """
    if config_path is None:
        return copy.deepcopy(DEFAULT_CONFIG)

    with open(config_path, "r") as f:
        loaded = yaml.safe_load(f) or {}

    config = _merge(DEFAULT_CONFIG, loaded)
    config["hazards"]["decay_rates"] = {
        int(k): float(v) for k, v in config["hazards"]["decay_rates"].items()
    }
    logger.info(f"Loaded configuration from {config_path}")
    return config
