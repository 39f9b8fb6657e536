"""
Unit tests for the State entity registry

Tests cover:
- Id uniqueness per collection and duplicate rejection
- Removal semantics
- Corruption detection on duplicate ids
- Id generation
- Reset idempotence and header preservation
- Clock fields (time limit, wind schedule)
"""

import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

import pytest  # noqa: E402
from coordinator.entities import EntityKind, Hazard, Target  # noqa: E402
from coordinator.errors import CorruptStateError, DuplicateIdError  # noqa: E402
from coordinator.state import State  # noqa: E402
from coordinator.tasks import Task  # noqa: E402
from uav.agent import Agent  # noqa: E402


class TestRegistry:
    """Test add / remove / lookup"""

    def test_add_and_get(self, state, origin):
        agent = Agent("UAV-1", origin)
        state.add(agent)
        assert state.get_agent("UAV-1") is agent
        assert state.get_by_id(EntityKind.AGENT, "UAV-1") is agent

    def test_get_missing_returns_none(self, state):
        assert state.get_task("TASK-404") is None

    def test_duplicate_add_rejected(self, state, origin):
        state.add(Agent("UAV-1", origin))
        with pytest.raises(DuplicateIdError) as exc_info:
            state.add(Agent("UAV-1", origin.offset(10, 0)))
        assert exc_info.value.entity_id == "UAV-1"
        assert len(state.agents) == 1

    def test_same_id_in_different_collections(self, state, origin):
        """Uniqueness is per collection"""
        state.add(Hazard("X", origin, 0))
        state.add(Target("X", origin, 1))
        assert state.get_hazard("X") is not None
        assert state.get_target("X") is not None

    def test_remove(self, state, origin):
        task = Task("TASK-1", origin)
        state.add(task)
        assert state.remove(task) is True
        assert state.remove(task) is False
        assert state.get_task("TASK-1") is None

    def test_duplicate_ids_detected_as_corruption(self, state, origin):
        state.add(Agent("UAV-1", origin))
        # Bypass add() to simulate a bug elsewhere
        state.agents.append(Agent("UAV-1", origin))
        with pytest.raises(CorruptStateError):
            state.get_agent("UAV-1")

    def test_add_completed_task(self, state, origin):
        task = Task("TASK-1", origin)
        state.add(task)
        state.add_completed_task(task)
        assert state.tasks == []
        assert state.completed_tasks == [task]


class TestIdGeneration:
    """Test per-kind id generation"""

    def test_sequential_ids(self, state):
        assert state.next_id(EntityKind.AGENT) == "UAV-1"
        assert state.next_id(EntityKind.AGENT) == "UAV-2"
        assert state.next_id(EntityKind.TASK) == "TASK-1"

    def test_skips_ids_in_use(self, state, origin):
        state.add(Task("TASK-1", origin))
        assert state.next_id(EntityKind.TASK) == "TASK-2"

    def test_reset_restarts_numbering(self, state):
        state.next_id(EntityKind.HAZARD)
        state.reset()
        assert state.next_id(EntityKind.HAZARD) == "HAZ-1"


class TestReset:
    """Test reset to defaults"""

    def _populate(self, state, origin):
        state.add(Agent("UAV-1", origin))
        state.add(Task("TASK-1", origin))
        state.add(Hazard("HAZ-1", origin, 0))
        state.allocation["UAV-1"] = "TASK-1"
        state.add_hazard_hit(0, origin)
        state.add_future_wind(5.0, 10.0, 90.0)
        state.increment_time(3.0)
        state.game_id = "game"
        state.flocking_enabled = True
        state.add_ui_option("predictions")

    def test_reset_matches_fresh_state(self, state, clock, origin):
        self._populate(state, origin)
        state.reset()
        assert state.snapshot() == State(clock=clock).snapshot()

    def test_reset_is_idempotent(self, state, origin):
        self._populate(state, origin)
        state.reset()
        first = state.snapshot()
        state.reset()
        assert state.snapshot() == first

    def test_reset_keep_header(self, state):
        state.game_id = "next"
        state.game_description = "Next scenario"
        state.reset(keep_header=True)
        assert state.game_id == "next"
        assert state.game_description == "Next scenario"

    def test_reset_clears_header(self, state):
        state.game_id = "game"
        state.reset()
        assert state.game_id is None


class TestClockFields:
    """Test time limit and wind schedule"""

    def test_time_limit_sets_end_time(self, state, clock):
        state.set_time_limit(60.0)
        assert state.scenario_end_time == clock() + 60.0
        assert not state.scenario_expired()
        clock.advance(61.0)
        assert state.scenario_expired()

    def test_zero_time_limit_never_expires(self, state, clock):
        state.set_time_limit(0)
        clock.advance(1e6)
        assert not state.scenario_expired()

    def test_increment_time_limit(self, state, clock):
        state.increment_time_limit(30.0)
        state.increment_time_limit(60.0)
        assert state.time_limit == 90.0
        assert state.scenario_end_time == clock() + 90.0

    def test_wind_changes_popped_in_time_order(self, state, clock):
        state.set_scenario_start_time()
        state.add_future_wind(10.0, 2.0, 180.0)
        state.add_future_wind(5.0, 1.0, 90.0)
        clock.advance(6.0)
        due = state.pop_due_wind_changes()
        assert [w.time for w in due] == [5.0]
        clock.advance(10.0)
        due = state.pop_due_wind_changes()
        assert [w.time for w in due] == [10.0]
        assert state.future_wind == []


class TestSnapshot:
    """Test state snapshots"""

    def test_snapshot_is_detached(self, state, origin):
        state.add(Agent("UAV-1", origin))
        state.allocation["UAV-1"] = "TASK-1"
        snapshot = state.snapshot()
        state.allocation.clear()
        assert snapshot["allocation"] == {"UAV-1": "TASK-1"}
        assert snapshot["agents"][0]["id"] == "UAV-1"

    def test_snapshot_includes_hazard_hits(self, state, origin):
        state.add_hazard_hit(-1, origin)
        hits = state.snapshot()["hazardHits"]
        assert len(hits["-1"]) == 1
        assert hits["-1"][0]["weight"] == 1.0
