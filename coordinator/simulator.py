"""
Simulation clock - the tick loop that advances the shared world state.

Every tick runs five phases while holding the State lock for the whole cycle:

    1. Advance virtual time by the tick increment (0.2 s)
    2. End of scenario: if the wall-clock end time has passed, pre-load the
       next scenario's header (passthrough) and reset. Nothing else runs.
    3. Wind: apply every scheduled change that is due, in time order
    4. Step agents, then tasks. Completions are collected first and only
       then completed and handed to the allocator (two-phase completion).
    5. Decay hazard hits and deliver due image captures

Cadence:
    period = 1 / (game_speed * 5) seconds (200 ms at game speed 1). After each
    tick the loop waits max(0, period - elapsed) on a threading.Event, so a
    reset interrupts the wait immediately. Game speed changes the real-time
    cadence only; virtual time always advances by the same increment.

Usage:
    >>> simulator = Simulator(state, allocator, image_controller)
    >>> simulator.start_simulation()
    >>> simulator.change_view(EDIT_MODE_EDIT)
    >>> simulator.reset()
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional

from coordinator.config import (
    DEFAULT_CONFIG,
    EDIT_MODE_EDIT,
    EDIT_MODE_IMAGES,
    EDIT_MODE_MONITOR,
    TICKS_PER_SECOND,
)

logger = logging.getLogger(__name__)


class Simulator:
    """
    Owns the clock thread and the per-tick read-step-write cycle.

    Args:
        state: State registry
        allocator: Allocator used for reassignment on completion and dropout
        image_controller: Receives capture requests and delivers due images
        config: Server configuration (see coordinator.config.DEFAULT_CONFIG)
        scenario_loader: Reads the next scenario header on passthrough
        clock: Wall-clock source in seconds
    """

    def __init__(
        self,
        state,
        allocator,
        image_controller,
        config: Optional[Dict] = None,
        scenario_loader=None,
        clock: Callable[[], float] = time.time,
    ):
        self.state = state
        self.allocator = allocator
        self.image_controller = image_controller
        self.scenario_loader = scenario_loader
        self.clock = clock

        config = config or DEFAULT_CONFIG
        self.game_speed = config["simulation"]["game_speed"]
        self.tick_increment = config["simulation"]["tick_increment"]

        self._stop_event = threading.Event()
        self.main_loop_thread: Optional[threading.Thread] = None
        self.tick_count = 0

    @property
    def period(self) -> float:
        """Target wall-clock seconds per tick"""
        return 1.0 / (self.game_speed * TICKS_PER_SECOND)

    @property
    def is_running(self) -> bool:
        return self.main_loop_thread is not None and self.main_loop_thread.is_alive()

    def sleep_time(self, elapsed: float) -> float:
        """Wait before the next tick given how long this one took"""
        return max(0.0, self.period - elapsed)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_simulation(self):
        """Stamp the scenario start and run the clock on a fresh thread"""
        with self.state.lock:
            if self.is_running:
                logger.warning("Simulation already running")
                return

            self.state.set_scenario_start_time()
            self.state.set_scenario_end_time()

            # Simulated agents must not time out while the operator reads the briefing
            now = self.clock()
            for agent in self.state.agents:
                if agent.simulated:
                    agent.heartbeat(now)

            self._stop_event = threading.Event()
            self.main_loop_thread = threading.Thread(
                target=self._main_loop, args=(self._stop_event,), daemon=True
            )
            self.main_loop_thread.start()
            self.state.in_progress = True
        logger.info(f"Simulation started (game speed {self.game_speed})")

    def stop_simulation(self):
        """Stop the clock thread and wait for it to leave its tick"""
        self._stop_event.set()
        thread = self.main_loop_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self.main_loop_thread = None

    def reset(self, keep_header: bool = False):
        """
        Stop the clock and return every component to its initial state.

        Safe to call from inside a tick: the lock is re-entrant and the loop
        exits once the current tick returns.
        """
        self.stop_simulation()
        with self.state.lock:
            self.state.reset(keep_header=keep_header)
            self.allocator.reset()
            self.image_controller.reset()
            self.tick_count = 0
        logger.info("Server reset")

    def _main_loop(self, stop_event: threading.Event):
        """Tick at the configured cadence until stop_event is set"""
        wait = 0.0
        while not stop_event.wait(wait):
            loop_start = time.time()
            if not self.tick():
                break
            wait = self.sleep_time(time.time() - loop_start)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self) -> bool:
        """
        Run one full cycle synchronously.

        Returns:
            False if the scenario ended (and was reset) during this tick
        """
        with self.state.lock:
            try:
                self.state.increment_time(self.tick_increment)
                now = self.clock()

                if self.state.scenario_expired(now):
                    self._end_scenario()
                    return False

                self._apply_wind_changes(now)
                self._step_agents(now)
                self._step_tasks()

                self.state.decay_hazard_hits()
                self.image_controller.check_for_images(now)

                self.tick_count += 1
                return True
            except Exception as e:
                logger.error(f"Tick {self.tick_count} failed: {e}", exc_info=True)
                raise

    def _end_scenario(self):
        passthrough = self.state.passthrough
        if passthrough:
            self._load_next_header()
        logger.info("Scenario time limit reached")
        self.reset(keep_header=passthrough)

    def _load_next_header(self):
        if self.scenario_loader is None:
            logger.warning("Passthrough requested but no scenario loader configured")
            return
        try:
            game_id, description = self.scenario_loader.read_header(
                self.state.next_file_name
            )
        except (OSError, ValueError) as e:
            logger.error(f"Could not read next scenario {self.state.next_file_name}: {e}")
            return
        self.state.game_id = game_id
        self.state.game_description = description
        logger.info(f"Passing through to next scenario {self.state.next_file_name}")

    def _apply_wind_changes(self, now: float):
        for change in self.state.pop_due_wind_changes(now):
            self.state.wind_speed = change.speed
            self.state.wind_heading = change.heading
            logger.info(
                f"Wind changed: speed {change.speed}, heading {change.heading}"
            )

    def _step_agents(self, now: float):
        agents = list(self.state.agents)
        dropped = []
        for agent in agents:
            if agent.timed_out:
                continue
            agent.step(
                flocking_enabled=self.state.flocking_enabled,
                dropout_probability=self.state.avg_agent_dropout,
                neighbours=agents,
                now=now,
            )
            if agent.timed_out:
                logger.info(f"Lost connection with agent {agent.id}")
                dropped.append(agent)

        for agent in dropped:
            self.allocator.handle_agent_dropout(agent)
        if dropped:
            self.allocator.dynamic_reassign()

    def _step_tasks(self):
        agents_by_id = {a.id: a for a in self.state.agents}
        # Collect first: completing mutates the task collection
        completed = [t for t in list(self.state.tasks) if t.step(agents_by_id)]
        for task in completed:
            if task.complete():
                self.image_controller.on_task_complete(task)
                self.allocator.dynamic_reassign(completed_task=task)

    # ------------------------------------------------------------------
    # View modes
    # ------------------------------------------------------------------

    def change_view(self, mode: int):
        """
        Switch between monitor (1), edit (2) and images (3) modes.

        Entering edit mode holds every agent and copies the confirmed
        allocation into the temp allocation. Leaving edit mode for monitor
        confirms the temp allocation.
        """
        with self.state.lock:
            if mode == EDIT_MODE_EDIT:
                for agent in self.state.agents:
                    agent.stop()
                self.allocator.copy_real_alloc_to_temp_alloc()
                self.allocator.clear_allocation_history()
                self.state.edit_mode = EDIT_MODE_EDIT
            elif mode == EDIT_MODE_MONITOR:
                was_editing = self.state.edit_mode == EDIT_MODE_EDIT
                self.state.edit_mode = EDIT_MODE_MONITOR
                if was_editing:
                    self.allocator.confirm_allocation()
                for agent in self.state.agents:
                    agent.resume()
            elif mode == EDIT_MODE_IMAGES:
                self.state.edit_mode = EDIT_MODE_IMAGES
                for agent in self.state.agents:
                    agent.resume()
            else:
                raise ValueError(f"Unknown view mode {mode}")
        logger.info(f"View changed to mode {mode}")
