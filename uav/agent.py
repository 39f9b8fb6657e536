"""
Agent state machine - connectivity and motion for a single swarm member.

Each agent has two orthogonal state axes:

    Connectivity:  connected <-> timed_out
    Activity:      idle -> moving -> working

Connectivity is driven by heartbeats. Simulated agents heartbeat themselves
every step and may drop out at random (fault injection); real agents must be
heartbeated by the connection layer and time out after HEARTBEAT_TIMEOUT_SEC.

Motion is a simple step-toward-waypoint model: every step the agent flies
`speed * tick_increment` meters toward the head of its route, popping
waypoints as they are reached. When the last waypoint is popped the agent
reports `final_destination_reached`.

Usage:
    >>> agent = Agent("UAV-1", Coordinate(50.9, -1.4))
    >>> agent.assign("TASK-1", [Coordinate(50.901, -1.4)])
    >>> agent.step(flocking_enabled=False, dropout_probability=0.0)
"""

import logging
import random
import time
from typing import Iterable, List, Optional

import numpy as np

from coordinator.config import (
    AGENT_SPEED,
    BATTERY_DRAIN_PER_METER,
    FLOCKING_RADIUS,
    FLOCKING_WEIGHT,
    HEARTBEAT_TIMEOUT_SEC,
    TICK_INCREMENT,
    WAYPOINT_ARRIVAL_THRESHOLD,
)
from coordinator.entities import EntityKind
from coordinator.geometry import Coordinate

logger = logging.getLogger(__name__)


class Agent:
    """
    A single simulated or real swarm member.

    Attributes:
        id: Unique agent identifier
        coordinate: Current position
        battery: Remaining battery as a fraction (0-1)
        simulated: True for server-simulated agents, False for real drones
        is_hub: Hub agents are stationary and never allocated tasks
        timed_out: Connectivity lost (timeout or simulated dropout)
        last_heartbeat: Wall-clock time of the last heartbeat
        working: Agent is executing an allocated task
        final_destination_reached: Last route waypoint has been reached
        route: Ordered waypoints still to fly
        temp_route: Proposed route shown while the operator edits allocation
        stopped: Held in place (edit mode)
        allocated_task_id: Task the agent is currently working on
    """

    kind = EntityKind.AGENT

    def __init__(
        self,
        agent_id: str,
        coordinate: Coordinate,
        battery: float = 1.0,
        simulated: bool = True,
        is_hub: bool = False,
        speed: float = AGENT_SPEED,
        tick_increment: float = TICK_INCREMENT,
        heartbeat_timeout: float = HEARTBEAT_TIMEOUT_SEC,
        arrival_threshold: float = WAYPOINT_ARRIVAL_THRESHOLD,
        rng: Optional[random.Random] = None,
    ):
        self.id = agent_id
        self.coordinate = coordinate
        self.battery = battery
        self.simulated = simulated
        self.is_hub = is_hub

        self.speed = speed
        self.tick_increment = tick_increment
        self.heartbeat_timeout = heartbeat_timeout
        self.arrival_threshold = arrival_threshold
        self._rng = rng or random.Random()

        self.heading = 0.0
        self.timed_out = False
        self.last_heartbeat = time.time()

        self.working = False
        self.final_destination_reached = False
        self.route: List[Coordinate] = []
        self.temp_route: List[Coordinate] = []
        self.stopped = False
        self.allocated_task_id: Optional[str] = None

    @property
    def step_distance(self) -> float:
        """Meters flown per tick"""
        return self.speed * self.tick_increment

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    def heartbeat(self, now: Optional[float] = None):
        """Record a heartbeat; reconnects a timed out agent"""
        self.last_heartbeat = time.time() if now is None else now
        if self.timed_out:
            self.timed_out = False
            logger.info(f"Agent {self.id} reconnected")

    def is_timed_out(self) -> bool:
        return self.timed_out

    def seconds_since_heartbeat(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        return now - self.last_heartbeat

    def _check_connectivity(self, dropout_probability: float, now: float) -> bool:
        """Update connectivity for this tick. Returns False if the agent dropped."""
        if self.simulated:
            self.last_heartbeat = now
            if dropout_probability > 0 and self._rng.random() < dropout_probability:
                self.timed_out = True
                logger.warning(f"Agent {self.id} dropped out (simulated fault)")
                return False
            return True

        if now - self.last_heartbeat > self.heartbeat_timeout:
            self.timed_out = True
            logger.warning(
                f"Agent {self.id} timed out: no heartbeat for "
                f"{now - self.last_heartbeat:.1f}s"
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Route management
    # ------------------------------------------------------------------

    def assign(self, task_id: str, route: List[Coordinate]):
        """Start working on a task along the given route"""
        self.allocated_task_id = task_id
        self.working = True
        self.set_route(route)

    def release(self):
        """Drop the current task and stop flying"""
        self.allocated_task_id = None
        self.working = False
        self.route = []
        self.temp_route = []

    def set_route(self, route: List[Coordinate]):
        self.route = list(route)
        self.final_destination_reached = not self.route

    def set_temp_route(self, route: List[Coordinate]):
        self.temp_route = list(route)

    def stop(self):
        """Hold position until resumed"""
        self.stopped = True

    def resume(self):
        """Clear any edit-mode hold and continue the route"""
        self.stopped = False

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def step(
        self,
        flocking_enabled: bool = False,
        dropout_probability: float = 0.0,
        neighbours: Iterable["Agent"] = (),
        now: Optional[float] = None,
    ):
        """
        Advance this agent by one tick.

        Args:
            flocking_enabled: Nudge toward nearby agents' centroid and heading
            dropout_probability: Per-tick chance of a simulated connection fault
            neighbours: Other agents considered for flocking
            now: Wall-clock time (defaults to time.time())
        """
        now = time.time() if now is None else now
        if self.is_hub:
            self.last_heartbeat = now
            return
        if self.timed_out:
            return
        if not self._check_connectivity(dropout_probability, now):
            return
        if self.stopped or not self.route:
            return

        target = self.route[0]
        previous = self.coordinate
        new_position = previous.step_towards(target, self.step_distance)

        if flocking_enabled and new_position != target:
            new_position = self._apply_flocking(new_position, neighbours)

        if new_position != previous:
            self.heading = previous.bearing_to(new_position)
        self.coordinate = new_position
        self._drain_battery(previous.distance_to(new_position))

        if self.coordinate.distance_to(target) <= self.arrival_threshold:
            self.route.pop(0)
            if not self.route:
                self.final_destination_reached = True
                logger.debug(f"Agent {self.id} reached final destination")

    def _apply_flocking(
        self, position: Coordinate, neighbours: Iterable["Agent"]
    ) -> Coordinate:
        """Cohesion and alignment nudge from neighbours within FLOCKING_RADIUS"""
        offsets = []
        headings = []
        for other in neighbours:
            if other is self or other.is_hub or other.timed_out:
                continue
            if position.distance_to(other.coordinate) > FLOCKING_RADIUS:
                continue
            offsets.append(position.offset_to(other.coordinate))
            headings.append(np.radians(other.heading))

        if not offsets:
            return position

        cohesion = np.mean(np.array(offsets), axis=0) * FLOCKING_WEIGHT
        heading = np.arctan2(np.mean(np.sin(headings)), np.mean(np.cos(headings)))
        alignment = (
            np.array([np.cos(heading), np.sin(heading)])
            * FLOCKING_WEIGHT
            * self.step_distance
        )

        nudge = cohesion + alignment
        # Never let flocking outrun the agent's own speed
        norm = np.linalg.norm(nudge)
        limit = 0.5 * self.step_distance
        if norm > limit:
            nudge = nudge / norm * limit
        return position.offset(float(nudge[0]), float(nudge[1]))

    def _drain_battery(self, distance: float):
        self.battery = max(0.0, self.battery - distance * BATTERY_DRAIN_PER_METER)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "coordinate": self.coordinate.to_dict(),
            "battery": self.battery,
            "heading": self.heading,
            "simulated": self.simulated,
            "hub": self.is_hub,
            "timedOut": self.timed_out,
            "working": self.working,
            "stopped": self.stopped,
            "finalDestinationReached": self.final_destination_reached,
            "allocatedTaskId": self.allocated_task_id,
            "route": [c.to_dict() for c in self.route],
            "tempRoute": [c.to_dict() for c in self.temp_route],
        }
