"""
State - the entity registry and aggregate root of the simulation.

State exclusively owns every entity collection (agents, tasks, hazards,
targets), the three allocation maps, the hazard heat structure, the wind
schedule and the scenario clock fields.

Thread Safety:
    A single re-entrant lock (`State.lock`) guards every field. The clock
    thread holds it for a whole tick; command handlers hold it for any
    read-modify-write. The public methods below acquire it themselves, and
    callers that iterate the live collections (`state.agents`, ...) must
    hold it for the duration of the iteration:

        >>> with state.lock:
        ...     for agent in state.agents:
        ...         ...

    The hazard heat structure has its own finer-grained lock.

Registry Invariant:
    Within one collection at most one entity has a given id. `add()` refuses
    duplicates with DuplicateIdError; `get_by_id()` treats more than one match
    as CorruptStateError (a bug, never bad input).
"""

import copy
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional

from coordinator.config import (
    DEFAULT_ALLOCATION_METHOD,
    EDIT_MODE_MONITOR,
    GAME_TYPE_SANDBOX,
)
from coordinator.entities import ID_PREFIXES, EntityKind
from coordinator.errors import CorruptStateError, DuplicateIdError
from coordinator.geometry import Coordinate
from coordinator.hazard_hits import HazardHitCollection

logger = logging.getLogger(__name__)


@dataclass(order=True)
class WindChange:
    """Wind change scheduled `time` seconds after scenario start"""

    time: float
    speed: float
    heading: float


class State:
    """
    Aggregate root holding all scenario state.

    Args:
        hazard_decay_rates: Per hazard type decay rate (0 = permanent)
        clock: Wall-clock source in seconds, injectable for tests
        default_allocation_method: Method a reset falls back to
    """

    def __init__(
        self,
        hazard_decay_rates: Optional[Mapping[int, float]] = None,
        clock: Callable[[], float] = time.time,
        default_allocation_method: str = DEFAULT_ALLOCATION_METHOD,
    ):
        self.lock = threading.RLock()
        self.clock = clock
        # Restored by every reset, including the clock's scenario-end reset
        self.default_allocation_method = default_allocation_method

        self._collections: Dict[EntityKind, list] = {kind: [] for kind in EntityKind}
        self.completed_tasks: list = []
        self._id_counters: Dict[EntityKind, int] = {kind: 0 for kind in EntityKind}

        # Agent id -> task id
        self.allocation: Dict[str, str] = {}
        # Work-in-progress allocation not yet confirmed by the operator
        self.temp_allocation: Dict[str, str] = {}
        # Assignments orphaned by agents that dropped out
        self.dropped_allocation: Dict[str, str] = {}

        self.hazard_hits = HazardHitCollection(hazard_decay_rates)
        self.future_wind: List[WindChange] = []

        self.game_id: Optional[str] = None
        self.game_description: Optional[str] = None

        self.reset()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self, keep_header: bool = False):
        """
        Re-initialise every field to scenario-independent defaults.

        Args:
            keep_header: Preserve game id/description (scenario passthrough
                pre-loads the next scenario's header before resetting)
        """
        with self.lock:
            self.time = 0.0
            self.time_limit = 0.0
            self.scenario_start_time = 0.0
            self.scenario_end_time = 0.0  # 0 means no time limit
            # 1 = monitor, 2 = edit, 3 = images
            self.edit_mode = EDIT_MODE_MONITOR
            self.in_progress = False

            self.game_type = GAME_TYPE_SANDBOX
            if not keep_header:
                self.game_id = None
                self.game_description = None
            self.game_centre: Optional[Coordinate] = None
            self.hub_location: Optional[Coordinate] = None

            self.allocation_method = self.default_allocation_method
            self.flocking_enabled = False
            self.avg_agent_dropout = 0.0
            self.deep_allowed = False

            self.wind_speed = 0.0
            self.wind_heading = 0.0
            self.future_wind.clear()

            self.passthrough = False
            self.next_file_name = ""

            self.ui_options: List[str] = []
            self.uncertainty_radius = 0.0
            self.markers: List[str] = []

            self.allocation_undo_available = False
            self.allocation_redo_available = False

            for items in self._collections.values():
                items.clear()
            self.completed_tasks.clear()
            for kind in self._id_counters:
                self._id_counters[kind] = 0

            self.allocation.clear()
            self.temp_allocation.clear()
            self.dropped_allocation.clear()

            # ID -> image file name
            self.stored_images: Dict[str, str] = {}
            self.deep_scanned_ids: List[str] = []

            self.hazard_hits.clear()
            self.hazard_hits.init()

    def reset_next(self):
        """Clear passthrough and time limit fields before loading a scenario"""
        with self.lock:
            self.passthrough = False
            self.next_file_name = ""
            self.scenario_end_time = 0.0
            self.time_limit = 0.0

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    @property
    def agents(self) -> list:
        return self._collections[EntityKind.AGENT]

    @property
    def tasks(self) -> list:
        return self._collections[EntityKind.TASK]

    @property
    def hazards(self) -> list:
        return self._collections[EntityKind.HAZARD]

    @property
    def targets(self) -> list:
        return self._collections[EntityKind.TARGET]

    def next_id(self, kind: EntityKind) -> str:
        """Generate the next free id for an entity kind, e.g. 'UAV-3'"""
        with self.lock:
            while True:
                self._id_counters[kind] += 1
                candidate = f"{ID_PREFIXES[kind]}-{self._id_counters[kind]}"
                if self._find(kind, candidate) is None:
                    return candidate

    def add(self, entity):
        """Add an entity to the collection for its kind"""
        with self.lock:
            if self._find(entity.kind, entity.id) is not None:
                raise DuplicateIdError(entity.kind, entity.id)
            self._collections[entity.kind].append(entity)

    def remove(self, entity) -> bool:
        """Remove the entity with entity.id; False if it was not present"""
        with self.lock:
            existing = self._find(entity.kind, entity.id)
            if existing is None:
                return False
            self._collections[entity.kind].remove(existing)
            return True

    def get_by_id(self, kind: EntityKind, entity_id: str):
        with self.lock:
            return self._find(kind, entity_id)

    def _find(self, kind: EntityKind, entity_id: str):
        matching = [e for e in self._collections[kind] if e.id == entity_id]
        if not matching:
            return None
        if len(matching) > 1:
            logger.critical(f"Two {kind.value} objects found with id {entity_id}")
            raise CorruptStateError(
                f"{len(matching)} {kind.value} objects found with id '{entity_id}'"
            )
        return matching[0]

    def get_agent(self, agent_id: str):
        return self.get_by_id(EntityKind.AGENT, agent_id)

    def get_task(self, task_id: str):
        return self.get_by_id(EntityKind.TASK, task_id)

    def get_hazard(self, hazard_id: str):
        return self.get_by_id(EntityKind.HAZARD, hazard_id)

    def get_target(self, target_id: str):
        return self.get_by_id(EntityKind.TARGET, target_id)

    def add_completed_task(self, task):
        """Move a task from the live collection to the completed set"""
        with self.lock:
            self.remove(task)
            if task not in self.completed_tasks:
                self.completed_tasks.append(task)

    # ------------------------------------------------------------------
    # Clock fields
    # ------------------------------------------------------------------

    def increment_time(self, increment: float):
        with self.lock:
            self.time += increment

    def set_time_limit(self, time_limit: float):
        """Set the limit in seconds and derive the wall-clock end time"""
        with self.lock:
            self.time_limit = time_limit
            self.set_scenario_end_time()

    def increment_time_limit(self, increment: float):
        with self.lock:
            self.set_time_limit(self.time_limit + increment)

    def set_scenario_start_time(self):
        with self.lock:
            self.scenario_start_time = self.clock()

    def set_scenario_end_time(self):
        with self.lock:
            if self.time_limit == 0:
                self.scenario_end_time = 0.0
            else:
                self.scenario_end_time = self.clock() + self.time_limit

    def scenario_expired(self, now: Optional[float] = None) -> bool:
        with self.lock:
            if self.scenario_end_time == 0:
                return False
            now = self.clock() if now is None else now
            return now >= self.scenario_end_time

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    def add_future_wind(self, at_time: float, speed: float, heading: float):
        with self.lock:
            self.future_wind.append(WindChange(at_time, speed, heading))
            self.future_wind.sort()

    def pop_due_wind_changes(self, now: Optional[float] = None) -> List[WindChange]:
        """Remove and return wind changes whose time has arrived, in time order"""
        with self.lock:
            now = self.clock() if now is None else now
            due = [
                w for w in self.future_wind if now >= self.scenario_start_time + w.time
            ]
            for wind in due:
                self.future_wind.remove(wind)
            return due

    def add_hazard_hit(self, hazard_type: int, location: Coordinate) -> bool:
        return self.hazard_hits.add(hazard_type, location)

    def decay_hazard_hits(self):
        self.hazard_hits.decay_all()

    def add_ui_option(self, option: str):
        with self.lock:
            if option not in self.ui_options:
                self.ui_options.append(option)

    def add_to_stored_images(self, entity_id: str, filename: str, is_deep: bool):
        with self.lock:
            self.stored_images[entity_id] = filename
            if is_deep and entity_id not in self.deep_scanned_ids:
                self.deep_scanned_ids.append(entity_id)

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> dict:
        """
        Consistent, detached view of the whole state.

        Built under the lock so no reader sees a half-applied tick.
        """
        with self.lock:
            return {
                "time": self.time,
                "timeLimit": self.time_limit,
                "scenarioStartTime": self.scenario_start_time,
                "scenarioEndTime": self.scenario_end_time,
                "editMode": self.edit_mode,
                "inProgress": self.in_progress,
                "gameType": self.game_type,
                "gameId": self.game_id,
                "gameDescription": self.game_description,
                "gameCentre": self.game_centre.to_dict() if self.game_centre else None,
                "hubLocation": self.hub_location.to_dict() if self.hub_location else None,
                "allocationMethod": self.allocation_method,
                "flockingEnabled": self.flocking_enabled,
                "deepAllowed": self.deep_allowed,
                "windSpeed": self.wind_speed,
                "windHeading": self.wind_heading,
                "agents": [a.to_dict() for a in self.agents],
                "tasks": [t.to_dict() for t in self.tasks],
                "completedTasks": [t.to_dict() for t in self.completed_tasks],
                "hazards": [h.to_dict() for h in self.hazards],
                "targets": [t.to_dict() for t in self.targets],
                "allocation": dict(self.allocation),
                "tempAllocation": dict(self.temp_allocation),
                "droppedAllocation": dict(self.dropped_allocation),
                "allocationUndoAvailable": self.allocation_undo_available,
                "allocationRedoAvailable": self.allocation_redo_available,
                "hazardHits": self.hazard_hits.to_dict(),
                "uiOptions": list(self.ui_options),
                "uncertaintyRadius": self.uncertainty_radius,
                "markers": list(self.markers),
                "storedImages": copy.copy(self.stored_images),
                "deepScannedIds": list(self.deep_scanned_ids),
            }
