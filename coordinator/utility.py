"""
Utility function for agent-task allocation.

The maxsum allocator maximises the aggregate expected utility of an
allocation A:

    J(A) = Σ U(a, t)   for (a, t) in A

    U(a, t) = P_t · s / (s + d(a, t))

Where:
    P_t: Task priority (default 1.0)
    d(a, t): Distance from agent a to task t in meters
    s: Distance scale; utility halves at this distance
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import numpy as np

from coordinator.config import UTILITY_DISTANCE_SCALE


@dataclass
class AllocationResult:
    """Result of an allocation run"""

    allocation: Dict[str, str]  # Agent ID -> Task ID
    objective_score: float
    unallocated_tasks: List[str] = field(default_factory=list)
    idle_agents: List[str] = field(default_factory=list)
    optimization_time_ms: float = 0.0


class UtilityFunction:
    """Proximity-weighted utility of assigning an agent to a task"""

    def __init__(self, distance_scale: float = UTILITY_DISTANCE_SCALE):
        self.distance_scale = distance_scale

    def compute_utility(self, agent, task) -> float:
        distance = agent.coordinate.distance_to(task.coordinate)
        return task.priority * self.distance_scale / (self.distance_scale + distance)

    def utility_matrix(self, agents: Sequence, tasks: Sequence) -> np.ndarray:
        """Utility for every (agent, task) pair, rows follow agents"""
        matrix = np.zeros((len(agents), len(tasks)))
        for i, agent in enumerate(agents):
            for j, task in enumerate(tasks):
                matrix[i, j] = self.compute_utility(agent, task)
        return matrix

    def compute_objective(
        self, allocation: Dict[str, str], agents_by_id: Dict, tasks_by_id: Dict
    ) -> float:
        """J(A) over the pairs whose agent and task are both known"""
        score = 0.0
        for agent_id, task_id in allocation.items():
            agent = agents_by_id.get(agent_id)
            task = tasks_by_id.get(task_id)
            if agent is None or task is None:
                continue
            score += self.compute_utility(agent, task)
        return score


def elapsed_ms(t_start: float) -> float:
    return (time.time() - t_start) * 1000
