"""
Task state machine - field work bound to a coordinate.

Task Lifecycle:
    1. PENDING: Task created, no agent assigned
    2. IN_PROGRESS: At least one agent assigned and flying/working
    3. COMPLETED: Completion detected and `complete()` called (terminal)

`step()` is called once per tick by the simulation clock for every task that
is not completed. It returns True exactly once, on the tick completion is
first detected. The clock then calls `complete()` exactly once and hands the
task to the allocator for dynamic reassignment.

Completion is polymorphic over task kind via `perform()`:
    Task:          a working assigned agent is at the task coordinate
    DeepScanTask:  a working assigned agent has flown over the target and
                   reached its final destination (the hub); triggers a deep
                   image capture as a side effect

Tasks hold agent ids, never agent objects; the clock resolves ids through
the registry each tick.
"""

import logging
from enum import Enum
from typing import Callable, Iterable, List, Mapping, Optional

from coordinator.config import WAYPOINT_ARRIVAL_THRESHOLD
from coordinator.entities import EntityKind
from coordinator.geometry import Coordinate

logger = logging.getLogger(__name__)

# Deep scans skip the fly-over leg when the agent is already this close (m)
DEEP_SCAN_NEAR_DISTANCE = 3.0


class TaskType(Enum):
    GENERIC = "generic"
    DEEP_SCAN = "deep_scan"


class TaskStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Task:
    """Generic task: complete once an assigned agent reaches the coordinate"""

    kind = EntityKind.TASK
    task_type = TaskType.GENERIC

    def __init__(
        self,
        task_id: str,
        coordinate: Coordinate,
        capacity: int = 1,
        priority: float = 1.0,
        target_id: Optional[str] = None,
        arrival_threshold: float = WAYPOINT_ARRIVAL_THRESHOLD,
    ):
        if capacity < 1:
            raise ValueError(f"Task capacity must be at least 1, got {capacity}")
        self.id = task_id
        self.coordinate = coordinate
        self.capacity = capacity
        self.priority = priority
        self.target_id = target_id
        self.arrival_threshold = arrival_threshold

        self.status = TaskStatus.PENDING
        self.agent_ids: List[str] = []
        self._completion_detected = False

    # ------------------------------------------------------------------
    # Assignment bookkeeping
    # ------------------------------------------------------------------

    def add_agent(self, agent_id: str):
        if agent_id not in self.agent_ids:
            self.agent_ids.append(agent_id)

    def remove_agent(self, agent_id: str):
        if agent_id in self.agent_ids:
            self.agent_ids.remove(agent_id)

    def clear_agents(self):
        self.agent_ids = []

    @property
    def remaining_capacity(self) -> int:
        return max(0, self.capacity - len(self.agent_ids))

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    def route_for(self, agent, hub: Optional[Coordinate]) -> List[Coordinate]:
        """Waypoints an agent assigned to this task should fly"""
        return [self.coordinate]

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def step(self, agents: Mapping[str, object]) -> bool:
        """
        Advance the task by one tick.

        Args:
            agents: Mapping of agent id to Agent, used to resolve assignees

        Returns:
            True only on the tick completion is first detected
        """
        if self.is_completed or self._completion_detected:
            return False

        assigned = [agents[a] for a in self.agent_ids if a in agents]
        if not assigned:
            self.status = TaskStatus.PENDING
            return False

        self.status = TaskStatus.IN_PROGRESS
        if self.perform(assigned):
            self._completion_detected = True
            return True
        return False

    def _active(self, agents: Iterable) -> List:
        return [
            a
            for a in agents
            if a.working and not a.timed_out and a.allocated_task_id == self.id
        ]

    def perform(self, agents: List) -> bool:
        """Return True when the task's completion condition holds"""
        for agent in self._active(agents):
            if agent.coordinate.distance_to(self.coordinate) <= self.arrival_threshold:
                return True
        return False

    def complete(self) -> bool:
        """
        Mark the task completed and drop its assignees.

        Returns True the first time; later calls log a warning and return
        False without side effects.
        """
        if self.is_completed:
            logger.warning(f"Task {self.id} already completed; ignoring")
            return False
        self.status = TaskStatus.COMPLETED
        self._completion_detected = True
        self.clear_agents()
        logger.info(f"Task {self.id} completed")
        return True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.task_type.value,
            "coordinate": self.coordinate.to_dict(),
            "status": self.status.value,
            "agents": list(self.agent_ids),
            "capacity": self.capacity,
            "priority": self.priority,
        }


class DeepScanTask(Task):
    """
    Deep scan of a target.

    The assigned agent flies over the target, then back to the hub. The scan
    completes once a working agent has reached that final destination, at
    which point a deep image of the target is requested.
    """

    task_type = TaskType.DEEP_SCAN

    def __init__(
        self,
        task_id: str,
        coordinate: Coordinate,
        on_capture: Optional[Callable[[Coordinate, bool], None]] = None,
        **kwargs,
    ):
        super().__init__(task_id, coordinate, **kwargs)
        self.on_capture = on_capture
        self.image_taken = False
        self.working_agent_ids: List[str] = []

    def route_for(self, agent, hub: Optional[Coordinate]) -> List[Coordinate]:
        route = []
        if agent.coordinate.distance_to(self.coordinate) > DEEP_SCAN_NEAR_DISTANCE:
            route.append(self.coordinate)
        if hub is not None:
            route.append(hub)
        return route

    def perform(self, agents: List) -> bool:
        for agent in self._active(agents):
            if agent.id not in self.working_agent_ids:
                self.working_agent_ids.append(agent.id)
            if agent.final_destination_reached:
                if self.on_capture is not None:
                    self.on_capture(self.coordinate, True)
                self.image_taken = True
                return True
        return False


def create_task(
    task_type: TaskType, task_id: str, coordinate: Coordinate, **kwargs
) -> Task:
    """Build the task class matching task_type"""
    if task_type == TaskType.DEEP_SCAN:
        return DeepScanTask(task_id, coordinate, **kwargs)
    return Task(task_id, coordinate, **kwargs)
