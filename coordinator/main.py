"""
Coordination Server - facade over the state registry, allocator and clock.

Command handlers (a connection layer, a UI bridge, tests) talk to the server
only through CoordinationServer. Every mutating call takes the State lock, so
commands interleave with clock ticks but never land inside one.
"""
import logging
import random
import sys
import time
from typing import Callable, Dict, Optional

from coordinator.allocator import Allocator
from coordinator.config import GAME_TYPE_SANDBOX, GAME_TYPE_SCENARIO, load_config
from coordinator.entities import EntityKind, Hazard, Target
from coordinator.errors import NotFoundError
from coordinator.geometry import Coordinate
from coordinator.imaging import ImageController
from coordinator.scenario import ScenarioLoader
from coordinator.simulator import Simulator
from coordinator.state import State
from coordinator.tasks import DeepScanTask, Task
from uav.agent import Agent

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class CoordinationServer:
    """
    Main server controller - wires and exposes all subsystems

    Args:
        config_path: YAML configuration file (defaults used when None)
        config: Already loaded configuration, takes precedence over config_path
        clock: Wall-clock source shared by every component
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        config: Optional[Dict] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or load_config(config_path)
        self.clock = clock
        self._rng = random.Random(self.config["allocation"]["seed"])

        self.state = State(
            hazard_decay_rates=self.config["hazards"]["decay_rates"],
            clock=clock,
            default_allocation_method=self.config["allocation"]["method"],
        )
        self.allocator = Allocator(self.state, rng=self._rng)
        self.image_controller = ImageController(self.state, clock=clock)
        self.scenario_loader = ScenarioLoader(
            self, scenario_dir=self.config["scenarios"]["directory"]
        )
        self.simulator = Simulator(
            self.state,
            self.allocator,
            self.image_controller,
            config=self.config,
            scenario_loader=self.scenario_loader,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    def add_agent(
        self,
        coordinate: Coordinate,
        agent_id: Optional[str] = None,
        simulated: bool = True,
        battery: float = 1.0,
    ) -> Agent:
        """Register an agent; it is offered work immediately if a game is running"""
        agents_config = self.config["agents"]
        with self.state.lock:
            agent = Agent(
                agent_id or self.state.next_id(EntityKind.AGENT),
                coordinate,
                battery=battery,
                simulated=simulated,
                speed=agents_config["speed"],
                tick_increment=self.config["simulation"]["tick_increment"],
                heartbeat_timeout=agents_config["heartbeat_timeout_sec"],
                arrival_threshold=agents_config["arrival_threshold"],
                rng=random.Random(self._rng.random()),
            )
            agent.heartbeat(self.clock())
            self.state.add(agent)
            logger.info(f"Agent {agent.id} added ({'simulated' if simulated else 'real'})")
            if self.state.in_progress:
                self.allocator.dynamic_reassign()
            return agent

    def add_hub_agent(self, coordinate: Coordinate) -> Agent:
        """Stationary hub; never allocated tasks"""
        with self.state.lock:
            agent = Agent(
                self.state.next_id(EntityKind.AGENT),
                coordinate,
                is_hub=True,
                rng=random.Random(self._rng.random()),
            )
            self.state.add(agent)
            logger.info(f"Hub {agent.id} added")
            return agent

    def remove_agent(self, agent_id: str):
        with self.state.lock:
            agent = self._require(EntityKind.AGENT, agent_id)
            self.allocator.handle_agent_dropout(agent)
            self.state.remove(agent)
            logger.info(f"Agent {agent_id} removed")
            if self.state.in_progress:
                self.allocator.dynamic_reassign()

    def heartbeat(self, agent_id: str):
        """Connection layer heartbeat; a reconnecting agent is offered work"""
        with self.state.lock:
            agent = self._require(EntityKind.AGENT, agent_id)
            was_timed_out = agent.timed_out
            agent.heartbeat(self.clock())
            if was_timed_out and self.state.in_progress:
                self.allocator.dynamic_reassign()

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def add_task(
        self,
        coordinate: Coordinate,
        task_id: Optional[str] = None,
        capacity: int = 1,
        priority: float = 1.0,
    ) -> Task:
        with self.state.lock:
            task = Task(
                task_id or self.state.next_id(EntityKind.TASK),
                coordinate,
                capacity=capacity,
                priority=priority,
                arrival_threshold=self.config["agents"]["arrival_threshold"],
            )
            self.state.add(task)
            logger.info(f"Task {task.id} added")
            if self.state.in_progress:
                self.allocator.dynamic_reassign()
            return task

    def add_deep_scan_task(self, target_id: str, priority: float = 1.0) -> DeepScanTask:
        """
        Deep scan of a known target: fly over it, return to the hub, and
        request a deep image.
        """
        with self.state.lock:
            target = self._require(EntityKind.TARGET, target_id)
            if self.state.game_type == GAME_TYPE_SCENARIO and not self.state.deep_allowed:
                raise PermissionError("Deep scans are not allowed in this scenario")

            task_id = self.state.next_id(EntityKind.TASK)
            task = DeepScanTask(
                task_id,
                target.coordinate,
                on_capture=lambda coordinate, deep: self.image_controller.take_image(
                    coordinate, deep, task_id=task_id
                ),
                priority=priority,
                target_id=target.id,
                arrival_threshold=self.config["agents"]["arrival_threshold"],
            )
            self.state.add(task)
            logger.info(f"Deep scan task {task_id} added for target {target_id}")
            if self.state.in_progress:
                self.allocator.dynamic_reassign()
            return task

    # ------------------------------------------------------------------
    # Hazards and targets
    # ------------------------------------------------------------------

    def add_hazard(self, coordinate: Coordinate, hazard_type: int, size: int = 1) -> Hazard:
        with self.state.lock:
            hazard = Hazard(
                self.state.next_id(EntityKind.HAZARD), coordinate, hazard_type, size
            )
            self.state.add(hazard)
            return hazard

    def record_hazard_hit(self, hazard_type: int, coordinate: Coordinate) -> bool:
        """An agent sensed a hazard (or explored, type -1) at coordinate"""
        return self.state.add_hazard_hit(hazard_type, coordinate)

    def add_target(
        self,
        coordinate: Coordinate,
        target_type: int,
        visible: bool = True,
        correct_classification: Optional[str] = None,
        low_res: Optional[str] = None,
        high_res: Optional[str] = None,
    ) -> Target:
        with self.state.lock:
            target = Target(
                self.state.next_id(EntityKind.TARGET),
                coordinate,
                target_type,
                visible=visible,
                correct_classification=correct_classification,
                low_res=low_res,
                high_res=high_res,
            )
            self.state.add(target)
            return target

    def set_target_visibility(self, target_id: str, visible: bool):
        with self.state.lock:
            self._require(EntityKind.TARGET, target_id).visible = visible

    # ------------------------------------------------------------------
    # Allocation and views
    # ------------------------------------------------------------------

    def change_view(self, mode: int):
        self.simulator.change_view(mode)

    def run_auto_allocation(self):
        return self.allocator.run_auto_allocation()

    def confirm_allocation(self, mapping: Optional[Dict[str, str]] = None):
        self.allocator.confirm_allocation(mapping)

    def set_temp_allocation(self, mapping: Optional[Dict[str, str]]):
        self.allocator.set_temp_allocation(mapping)

    # ------------------------------------------------------------------
    # Game lifecycle
    # ------------------------------------------------------------------

    def start_sandbox(self):
        with self.state.lock:
            self.state.game_type = GAME_TYPE_SANDBOX
            self.state.game_id = "Sandbox"
        logger.info("Sandbox loaded")
        self.simulator.start_simulation()

    def load_scenario(self, path: str) -> bool:
        """Load a scenario file into the state; start it with start_simulation()"""
        with self.state.lock:
            self.state.game_type = GAME_TYPE_SCENARIO
            return self.scenario_loader.load_file(path)

    def start_simulation(self):
        self.simulator.start_simulation()

    def reset(self):
        self.simulator.reset()

    def get_state(self) -> dict:
        return self.state.snapshot()

    def get_status(self) -> dict:
        """Short summary for periodic logging"""
        with self.state.lock:
            connected = sum(1 for a in self.state.agents if not a.timed_out and not a.is_hub)
            return {
                'time': self.state.time,
                'agents': {
                    'connected': connected,
                    'total': sum(1 for a in self.state.agents if not a.is_hub),
                },
                'tasks': {
                    'open': len(self.state.tasks),
                    'completed': len(self.state.completed_tasks),
                },
                'allocator': self.allocator.get_stats(),
            }

    def _require(self, kind: EntityKind, entity_id: str):
        entity = self.state.get_by_id(kind, entity_id)
        if entity is None:
            raise NotFoundError(kind, entity_id)
        return entity


def main():
    """Run the coordination server"""
    server = CoordinationServer('config/server_config.yaml')

    if len(sys.argv) > 1:
        if not server.load_scenario(sys.argv[1]):
            sys.exit(1)
        server.start_simulation()
    else:
        server.start_sandbox()

    try:
        logger.info("Coordination server running. Press Ctrl+C to stop.")
        while True:
            time.sleep(5)
            status = server.get_status()
            logger.info(f"Status: t={status['time']:.1f}s, "
                        f"{status['agents']['connected']}/{status['agents']['total']} agents connected, "
                        f"{status['tasks']['completed']} tasks completed")
    except KeyboardInterrupt:
        logger.info("Stopping coordination server")
        server.reset()


if __name__ == '__main__':
    main()
