"""
Scenario loader - applies a scenario document to a fresh server.

Scenario files are JSON or YAML mappings. Recognised keys:

    gameId, gameDescription, gameCentre {lat, lng}
    allocationMethod      'random' | 'maxsum' (invalid -> warning, configured default)
    flockingEnabled       bool (invalid -> warning, False)
    hub {lat, lng}        adds a hub agent and sets the hub location
    avgAgentDropout       number (invalid -> warning, 0)
    faultySwarm           bool; when true, false-alarm targets are loaded too
    wind [{time, speed, heading}]
    timeLimitSeconds, timeLimitMinutes
    nextScenarioFile      enables passthrough to that file on time-out
    deepAllowed           bool
    agents [{lat, lng, battery?}]
    hazards [{lat, lng, type, size?}]
    targets [{lat, lng, type, lowRes?, highRes?, correctClassification?}]
                          targets with correctClassification "false" are
                          skipped unless faultySwarm is set
    extendedUIOptions {predictions?, uncertainties?}
    uncertaintyRadius, markers [{shape, centreLat, centreLng, radius}]

avgAgentDropout is read from the scenario itself whether or not faultySwarm is
set.

Invalid optional values are logged and replaced by defaults; they never reach
the core.
"""

import json
import logging
import os
from typing import Any, Dict, Optional, Tuple

import yaml

from coordinator.config import ALLOCATION_METHODS
from coordinator.geometry import Coordinate

logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coordinate(obj: Dict[str, Any]) -> Coordinate:
    return Coordinate(float(obj["lat"]), float(obj["lng"]))


def _is_false_alarm(target_doc: Dict[str, Any]) -> bool:
    return str(target_doc.get("correctClassification")).lower() == "false"


class ScenarioLoader:
    """
    Reads scenario documents and applies them through the server facade.

    Args:
        server: CoordinationServer the scenario is loaded into
        scenario_dir: Directory relative file names are resolved against
    """

    def __init__(self, server, scenario_dir: Optional[str] = None):
        self.server = server
        self.scenario_dir = scenario_dir

    def resolve(self, path: str) -> str:
        if self.scenario_dir and not os.path.isabs(path):
            return os.path.join(self.scenario_dir, path)
        return path

    def read(self, path: str) -> Dict[str, Any]:
        """Parse a scenario file (.json, otherwise YAML)"""
        full_path = self.resolve(path)
        with open(full_path, "r") as f:
            if full_path.endswith(".json"):
                document = json.load(f)
            else:
                document = yaml.safe_load(f)
        if not isinstance(document, dict):
            raise ValueError(f"Scenario {full_path} is not a mapping")
        return document

    def read_header(self, path: str) -> Tuple[Optional[str], Optional[str]]:
        """Return (gameId, gameDescription) of a scenario file"""
        document = self.read(path)
        return document.get("gameId"), document.get("gameDescription")

    def load_file(self, path: str) -> bool:
        """Load a scenario file. Returns False if it cannot be read."""
        try:
            document = self.read(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.error(f"Unable to load scenario {path}: {e}")
            return False
        self.load(document)
        logger.info(f"Scenario loaded from {path}")
        return True

    def load(self, document: Dict[str, Any]):
        """Apply a parsed scenario document to the server state"""
        state = self.server.state
        with state.lock:
            state.game_id = document.get("gameId")
            state.game_description = document.get("gameDescription")
            if "gameCentre" in document:
                state.game_centre = _coordinate(document["gameCentre"])

            self._load_options(document)

            hub = document.get("hub")
            if hub is not None:
                location = _coordinate(hub)
                self.server.add_hub_agent(location)
                state.hub_location = location

            for wind in document.get("wind") or []:
                state.add_future_wind(
                    float(wind["time"]), float(wind["speed"]), float(wind["heading"])
                )

            self._load_time_limit(document)
            self._load_entities(document)
            self._load_ui(document)

        logger.info(
            f"Scenario initialised: {state.game_id} "
            f"({len(state.agents)} agents, {len(state.hazards)} hazards, "
            f"{len(state.targets)} targets)"
        )

    def _load_options(self, document: Dict[str, Any]):
        state = self.server.state

        if "allocationMethod" in document:
            method = str(document["allocationMethod"]).lower()
            if method in ALLOCATION_METHODS:
                state.allocation_method = method
            else:
                logger.warning(
                    f"Allocation method '{method}' not valid. "
                    f"Set to '{state.default_allocation_method}'."
                )
                state.allocation_method = state.default_allocation_method

        if "flockingEnabled" in document:
            flocking = document["flockingEnabled"]
            if isinstance(flocking, bool):
                state.flocking_enabled = flocking
            else:
                logger.warning(
                    f"Expected boolean for flockingEnabled, received '{flocking}'. "
                    f"Set to false."
                )
                state.flocking_enabled = False

        if "avgAgentDropout" in document:
            dropout = document["avgAgentDropout"]
            if _is_number(dropout):
                state.avg_agent_dropout = float(dropout)
            else:
                logger.warning(
                    f"Expected number for avgAgentDropout, received '{dropout}'. "
                    f"Set to 0."
                )
                state.avg_agent_dropout = 0.0

        if isinstance(document.get("deepAllowed"), bool):
            state.deep_allowed = document["deepAllowed"]

    def _load_time_limit(self, document: Dict[str, Any]):
        state = self.server.state
        state.reset_next()

        for key, factor in (("timeLimitSeconds", 1), ("timeLimitMinutes", 60)):
            if key not in document:
                continue
            value = document[key]
            if _is_number(value):
                state.increment_time_limit(float(value) * factor)
            else:
                logger.warning(
                    f"Expected number for {key}, received '{value}'. "
                    f"Time limit not changed."
                )

        next_file = document.get("nextScenarioFile")
        if isinstance(next_file, str):
            state.passthrough = True
            state.next_file_name = next_file

    def _load_entities(self, document: Dict[str, Any]):
        for agent_doc in document.get("agents") or []:
            agent = self.server.add_agent(_coordinate(agent_doc))
            if _is_number(agent_doc.get("battery")):
                agent.battery = float(agent_doc["battery"])

        for hazard_doc in document.get("hazards") or []:
            self.server.add_hazard(
                _coordinate(hazard_doc),
                int(hazard_doc["type"]),
                size=int(hazard_doc.get("size", 1)),
            )

        faulty_swarm = document.get("faultySwarm") is True
        for target_doc in document.get("targets") or []:
            if _is_false_alarm(target_doc) and not faulty_swarm:
                logger.debug(
                    f"Skipping false-alarm target at "
                    f"({target_doc.get('lat')}, {target_doc.get('lng')})"
                )
                continue
            target = self.server.add_target(
                _coordinate(target_doc),
                int(target_doc["type"]),
                correct_classification=target_doc.get("correctClassification"),
                low_res=target_doc.get("lowRes"),
                high_res=target_doc.get("highRes"),
            )
            # Targets are discovered during play
            self.server.set_target_visibility(target.id, False)

    def _load_ui(self, document: Dict[str, Any]):
        state = self.server.state

        ui_options = document.get("extendedUIOptions") or {}
        for option in ("predictions", "uncertainties"):
            if ui_options.get(option) is True:
                state.add_ui_option(option)

        if _is_number(document.get("uncertaintyRadius")):
            state.uncertainty_radius = float(document["uncertaintyRadius"])

        for marker in document.get("markers") or []:
            state.markers.append(
                f"{marker['shape']},{marker['centreLat']},"
                f"{marker['centreLng']},{marker['radius']}"
            )
