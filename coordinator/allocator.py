"""
Allocator - agent to task assignment and the operator edit workflow.

The allocator owns the logic behind the three allocation maps held by State:

    allocation          Confirmed, authoritative for dispatch
    temp_allocation     Proposal edited live by the operator (edit mode)
    dropped_allocation  Assignments orphaned by agents that dropped out

Exactly one map drives assignment changes at a time: in edit mode (2) new
assignments land in `temp_allocation` and are only previewed on agents'
temp routes; in monitor (1) and images (3) modes they go straight into
`allocation` and agents fly them.

Algorithms:
    random: every idle agent picks a uniformly random task with spare capacity
    maxsum: maximise J(A) = Σ U(agent, task) by solving the assignment
            problem over (agents × task capacity slots) with
            scipy.optimize.linear_sum_assignment. Inputs are ordered by id,
            so identical inputs give identical allocations.

Both honour: one task per agent, at most `task.capacity` agents per task.

Dynamic Reassignment:
    `dynamic_reassign()` runs on every task completion and agent dropout.
    It retires the completed task, then matches only idle agents against
    tasks with spare capacity. In-progress assignments are left alone, so
    cost is O(idle agents × available tasks).

Usage:
    >>> allocator = Allocator(state)
    >>> allocator.run_auto_allocation()
    >>> allocator.put_in_temp_allocation("UAV-1", "TASK-3")
    >>> allocator.confirm_allocation()
"""

import logging
import random
import threading
import time
from collections import Counter
from typing import Dict, List, Optional, Sequence

import numpy as np
from scipy.optimize import linear_sum_assignment

from coordinator.config import EDIT_MODE_EDIT
from coordinator.entities import EntityKind
from coordinator.errors import NotFoundError
from coordinator.utility import AllocationResult, UtilityFunction, elapsed_ms

logger = logging.getLogger(__name__)


class Allocator:
    """
    Computes and maintains the agent-task assignment.

    Args:
        state: The State registry this allocator works on
        utility: Utility function for maxsum (default proximity weighted)
        rng: Random source for the random algorithm
    """

    def __init__(
        self,
        state,
        utility: Optional[UtilityFunction] = None,
        rng: Optional[random.Random] = None,
    ):
        self.state = state
        self.utility = utility or UtilityFunction()
        self._rng = rng or random.Random()

        self._reassign_lock = threading.Lock()
        self._undo_stack: List[Dict[str, str]] = []
        self._redo_stack: List[Dict[str, str]] = []

        # Performance tracking
        self.reassign_count = 0
        self.optimization_times_ms: List[float] = []

    # ------------------------------------------------------------------
    # Algorithms
    # ------------------------------------------------------------------

    def compute_allocation(
        self,
        agents: Sequence,
        tasks: Sequence,
        remaining: Optional[Dict[str, int]] = None,
        method: Optional[str] = None,
    ) -> AllocationResult:
        """
        Assign agents to tasks without touching State.

        Args:
            agents: Candidate agents (each receives at most one task)
            tasks: Candidate tasks
            remaining: Spare capacity per task id (defaults to task.capacity)
            method: 'random' or 'maxsum' (defaults to the scenario's method)
        """
        t_start = time.time()
        method = method or self.state.allocation_method
        agents = sorted(agents, key=lambda a: a.id)
        tasks = sorted(tasks, key=lambda t: t.id)
        if remaining is None:
            remaining = {t.id: t.capacity for t in tasks}
        else:
            remaining = dict(remaining)

        if method == "random":
            allocation = self._random_allocate(agents, tasks, remaining)
        elif method == "maxsum":
            allocation = self._maxsum_allocate(agents, tasks, remaining)
        else:
            raise ValueError(f"Unknown allocation method '{method}'")

        agents_by_id = {a.id: a for a in agents}
        tasks_by_id = {t.id: t for t in tasks}
        assigned_tasks = set(allocation.values())
        duration = elapsed_ms(t_start)
        self.optimization_times_ms.append(duration)

        return AllocationResult(
            allocation=allocation,
            objective_score=self.utility.compute_objective(
                allocation, agents_by_id, tasks_by_id
            ),
            unallocated_tasks=[t.id for t in tasks if t.id not in assigned_tasks],
            idle_agents=[a.id for a in agents if a.id not in allocation],
            optimization_time_ms=duration,
        )

    def _random_allocate(
        self, agents: Sequence, tasks: Sequence, remaining: Dict[str, int]
    ) -> Dict[str, str]:
        allocation = {}
        for agent in agents:
            eligible = [t for t in tasks if remaining.get(t.id, 0) > 0]
            if not eligible:
                break
            task = self._rng.choice(eligible)
            allocation[agent.id] = task.id
            remaining[task.id] -= 1
        return allocation

    def _maxsum_allocate(
        self, agents: Sequence, tasks: Sequence, remaining: Dict[str, int]
    ) -> Dict[str, str]:
        open_tasks = [t for t in tasks if remaining.get(t.id, 0) > 0]
        if not agents or not open_tasks:
            return {}

        # One column per unit of spare capacity
        utilities = self.utility.utility_matrix(agents, open_tasks)
        repeats = [remaining[t.id] for t in open_tasks]
        slot_matrix = np.repeat(utilities, repeats, axis=1)
        slot_tasks = [t for t, n in zip(open_tasks, repeats) for _ in range(n)]

        rows, cols = linear_sum_assignment(slot_matrix, maximize=True)
        return {agents[r].id: slot_tasks[c].id for r, c in zip(rows, cols)}

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    def _eligible_agents(self) -> list:
        return [a for a in self.state.agents if not a.is_hub and not a.timed_out]

    def _open_tasks(self) -> list:
        return [t for t in self.state.tasks if not t.is_completed]

    def _authoritative_map(self) -> Dict[str, str]:
        if self.state.edit_mode == EDIT_MODE_EDIT:
            return self.state.temp_allocation
        return self.state.allocation

    # ------------------------------------------------------------------
    # Full and incremental allocation
    # ------------------------------------------------------------------

    def run_auto_allocation(self) -> AllocationResult:
        """Solve from scratch over every eligible agent and open task"""
        with self.state.lock:
            result = self.compute_allocation(self._eligible_agents(), self._open_tasks())
            if self.state.edit_mode == EDIT_MODE_EDIT:
                self._push_history()
                self.state.temp_allocation.clear()
                self.state.temp_allocation.update(result.allocation)
                self._preview()
            else:
                self.state.allocation.clear()
                self.state.allocation.update(result.allocation)
                self._dispatch()
            self._prune_dropped()
            logger.info(
                f"Auto allocation: {len(result.allocation)} assignments, "
                f"objective {result.objective_score:.3f}"
            )
            return result

    def dynamic_reassign(self, completed_task=None) -> AllocationResult:
        """
        Incrementally reassign after a completion or dropout.

        Retires `completed_task` (if given), then matches idle agents
        against tasks with spare capacity. Calls are serialized.
        """
        with self.state.lock, self._reassign_lock:
            self.reassign_count += 1
            if completed_task is not None:
                self._retire_task(completed_task)

            target_map = self._authoritative_map()
            idle = [a for a in self._eligible_agents() if a.id not in target_map]
            load = Counter(target_map.values())
            remaining = {}
            available = []
            for task in self._open_tasks():
                spare = task.capacity - load[task.id]
                if spare > 0:
                    remaining[task.id] = spare
                    available.append(task)

            result = self.compute_allocation(idle, available, remaining)
            target_map.update(result.allocation)

            if target_map is self.state.temp_allocation:
                self._preview()
            else:
                self._dispatch()
            self._prune_dropped()

            logger.info(
                f"Dynamic reassignment #{self.reassign_count}: "
                f"{len(idle)} idle agents, {len(available)} available tasks, "
                f"{len(result.allocation)} new assignments"
            )
            return result

    def _retire_task(self, task):
        """Remove a completed task from every map and free its agents"""
        for mapping in (
            self.state.allocation,
            self.state.temp_allocation,
            self.state.dropped_allocation,
        ):
            for agent_id in [a for a, t in mapping.items() if t == task.id]:
                del mapping[agent_id]

        for agent in self.state.agents:
            if agent.allocated_task_id == task.id:
                agent.release()
        task.clear_agents()
        self.state.add_completed_task(task)

    def handle_agent_dropout(self, agent) -> Optional[str]:
        """
        Move a dropped agent's assignment to `dropped_allocation`.

        Returns the orphaned task id, if any. The task is picked up again by
        the next dynamic reassignment.
        """
        with self.state.lock:
            task_id = self.state.allocation.pop(agent.id, None)
            self.state.temp_allocation.pop(agent.id, None)
            if task_id is not None:
                self.state.dropped_allocation[agent.id] = task_id
                task = self.state.get_task(task_id)
                if task is not None:
                    task.remove_agent(agent.id)
                logger.warning(
                    f"Agent {agent.id} dropped out; task {task_id} awaiting reassignment"
                )
            agent.release()
            return task_id

    def _prune_dropped(self):
        """Forget dropped assignments whose task is covered again or gone"""
        covered = set(self.state.allocation.values()) | set(
            self.state.temp_allocation.values()
        )
        for agent_id, task_id in list(self.state.dropped_allocation.items()):
            task = self.state.get_task(task_id)
            if task is None or task.is_completed or task_id in covered:
                del self.state.dropped_allocation[agent_id]

    # ------------------------------------------------------------------
    # Applying allocations to agents and tasks
    # ------------------------------------------------------------------

    def _dispatch(self):
        """Sync agents' routes and tasks' assignees to the confirmed allocation"""
        allocation = self.state.allocation
        hub = self.state.hub_location

        for task in self.state.tasks:
            task.agent_ids = [a for a, t in allocation.items() if t == task.id]

        for agent in self.state.agents:
            if agent.is_hub:
                continue
            task_id = allocation.get(agent.id)
            if task_id is None:
                if agent.allocated_task_id is not None:
                    agent.release()
            elif agent.allocated_task_id != task_id:
                task = self.state.get_task(task_id)
                agent.assign(task_id, task.route_for(agent, hub))
            agent.set_temp_route([])

    def _preview(self):
        """Show the temp allocation on agents' temp routes"""
        hub = self.state.hub_location
        for agent in self.state.agents:
            if agent.is_hub:
                continue
            task_id = self.state.temp_allocation.get(agent.id)
            task = self.state.get_task(task_id) if task_id else None
            agent.set_temp_route(task.route_for(agent, hub) if task else [])

    # ------------------------------------------------------------------
    # Edit workflow
    # ------------------------------------------------------------------

    def _require_assignable(self, agent_id: str):
        """Look up an agent that may take a task; hubs and lost agents may not"""
        agent = self.state.get_agent(agent_id)
        if agent is None:
            raise NotFoundError(EntityKind.AGENT, agent_id)
        if agent.is_hub:
            raise ValueError(f"Agent {agent_id} is a hub and cannot take tasks")
        if agent.timed_out:
            raise ValueError(f"Agent {agent_id} has timed out and cannot take tasks")
        return agent

    def _validate(self, mapping: Dict[str, str]):
        """Raise NotFoundError for unknown ids, ValueError for bad agents or over-capacity"""
        load = Counter(mapping.values())
        for agent_id, task_id in mapping.items():
            self._require_assignable(agent_id)
            task = self.state.get_task(task_id)
            if task is None:
                raise NotFoundError(EntityKind.TASK, task_id)
            if load[task_id] > task.capacity:
                raise ValueError(
                    f"Task {task_id} assigned to {load[task_id]} agents "
                    f"(capacity {task.capacity})"
                )

    def copy_real_alloc_to_temp_alloc(self):
        with self.state.lock:
            self.state.temp_allocation.clear()
            self.state.temp_allocation.update(self.state.allocation)
            self._preview()

    def put_in_temp_allocation(self, agent_id: str, task_id: str):
        """
        Propose agent_id for task_id.

        If the task is already at capacity its earliest proposed agent is
        moved off it.
        """
        with self.state.lock:
            self._require_assignable(agent_id)
            task = self.state.get_task(task_id)
            if task is None:
                raise NotFoundError(EntityKind.TASK, task_id)

            self._push_history()
            temp = self.state.temp_allocation
            temp.pop(agent_id, None)
            holders = [a for a, t in temp.items() if t == task_id]
            while len(holders) >= task.capacity:
                del temp[holders.pop(0)]
            temp[agent_id] = task_id
            self._preview()

    def remove_from_temp_allocation(self, agent_id: str):
        with self.state.lock:
            if agent_id not in self.state.temp_allocation:
                raise NotFoundError(EntityKind.AGENT, agent_id)
            self._push_history()
            del self.state.temp_allocation[agent_id]
            self._preview()

    def set_temp_allocation(self, mapping: Optional[Dict[str, str]]):
        """Replace the proposal wholesale; None clears it"""
        with self.state.lock:
            mapping = dict(mapping or {})
            self._validate(mapping)
            self._push_history()
            self.state.temp_allocation.clear()
            self.state.temp_allocation.update(mapping)
            self._preview()

    def confirm_allocation(self, mapping: Optional[Dict[str, str]] = None):
        """
        Commit a proposal as the authoritative allocation.

        Args:
            mapping: Allocation to commit; defaults to the temp allocation
        """
        with self.state.lock:
            mapping = dict(self.state.temp_allocation if mapping is None else mapping)
            self._validate(mapping)
            self.state.allocation.clear()
            self.state.allocation.update(mapping)
            self.state.temp_allocation.clear()
            self._dispatch()
            self._prune_dropped()
            self.clear_allocation_history()
            logger.info(f"Allocation confirmed: {len(mapping)} assignments")

    def undo(self) -> bool:
        with self.state.lock:
            if not self._undo_stack:
                return False
            self._redo_stack.append(dict(self.state.temp_allocation))
            self._restore(self._undo_stack.pop())
            return True

    def redo(self) -> bool:
        with self.state.lock:
            if not self._redo_stack:
                return False
            self._undo_stack.append(dict(self.state.temp_allocation))
            self._restore(self._redo_stack.pop())
            return True

    def clear_allocation_history(self):
        with self.state.lock:
            self._undo_stack.clear()
            self._redo_stack.clear()
            self._update_history_flags()

    def _push_history(self):
        self._undo_stack.append(dict(self.state.temp_allocation))
        self._redo_stack.clear()
        self._update_history_flags()

    def _restore(self, snapshot: Dict[str, str]):
        # Entities may have been removed or dropped out since the snapshot was taken
        eligible = {a.id for a in self._eligible_agents()}
        snapshot = {
            a: t
            for a, t in snapshot.items()
            if a in eligible and self.state.get_task(t) is not None
        }
        self.state.temp_allocation.clear()
        self.state.temp_allocation.update(snapshot)
        self._preview()
        self._update_history_flags()

    def _update_history_flags(self):
        self.state.allocation_undo_available = bool(self._undo_stack)
        self.state.allocation_redo_available = bool(self._redo_stack)

    def reset(self):
        """Forget history and statistics (scenario reset)"""
        with self.state.lock:
            self.clear_allocation_history()
            self.reassign_count = 0
            self.optimization_times_ms = []

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, float]:
        stats = {"reassign_count": self.reassign_count}
        if self.optimization_times_ms:
            times = np.array(self.optimization_times_ms)
            stats["avg_optimization_ms"] = float(np.mean(times))
            stats["max_optimization_ms"] = float(np.max(times))
        return stats
