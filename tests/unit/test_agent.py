"""
Unit tests for the Agent state machine

Tests cover:
- Step-toward-waypoint motion and final destination detection
- Edit-mode hold and resume
- Connectivity: simulated dropout, real-agent heartbeat timeout, reconnect
- Hub agents
- Flocking nudge
"""

import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

import pytest  # noqa: E402
from uav.agent import Agent  # noqa: E402


class TestMotion:
    """Test movement along a route"""

    def test_step_distance(self, origin):
        agent = Agent("UAV-1", origin)
        assert agent.step_distance == pytest.approx(3.0)

    def test_moves_toward_waypoint(self, origin, north_of):
        target = north_of(100)
        agent = Agent("UAV-1", origin)
        agent.set_route([target])
        agent.step(now=0.0)
        assert agent.coordinate.distance_to(target) == pytest.approx(97.0, abs=0.2)
        assert agent.heading == pytest.approx(0.0)

    def test_reaches_final_destination(self, origin, north_of):
        agent = Agent("UAV-1", origin)
        agent.set_route([north_of(5)])
        assert not agent.final_destination_reached
        agent.step(now=0.0)
        assert agent.route == []
        assert agent.final_destination_reached

    def test_pops_waypoints_in_order(self, origin, north_of):
        first, second = north_of(6), north_of(30)
        agent = Agent("UAV-1", origin)
        agent.set_route([first, second])
        for _ in range(3):
            agent.step(now=0.0)
        assert agent.route == [second]
        assert not agent.final_destination_reached

    def test_empty_route_means_destination_reached(self, origin):
        agent = Agent("UAV-1", origin)
        agent.set_route([])
        assert agent.final_destination_reached

    def test_battery_drains_with_distance(self, origin, north_of):
        agent = Agent("UAV-1", origin)
        agent.set_route([north_of(100)])
        agent.step(now=0.0)
        assert agent.battery < 1.0

    def test_idle_agent_does_not_move(self, origin):
        agent = Agent("UAV-1", origin)
        agent.step(now=0.0)
        assert agent.coordinate == origin


class TestHold:
    """Test edit-mode stop / resume"""

    def test_stopped_agent_holds_position(self, origin, north_of):
        agent = Agent("UAV-1", origin)
        agent.set_route([north_of(100)])
        agent.stop()
        agent.step(now=0.0)
        assert agent.coordinate == origin

    def test_resume_continues_route(self, origin, north_of):
        agent = Agent("UAV-1", origin)
        agent.set_route([north_of(100)])
        agent.stop()
        agent.resume()
        agent.step(now=0.0)
        assert agent.coordinate != origin


class TestConnectivity:
    """Test heartbeats, timeouts and simulated dropout"""

    def test_simulated_dropout(self, origin, north_of):
        agent = Agent("UAV-1", origin)
        agent.set_route([north_of(100)])
        agent.step(dropout_probability=1.0, now=0.0)
        assert agent.is_timed_out()
        assert agent.coordinate == origin

    def test_no_dropout_at_zero_probability(self, origin):
        agent = Agent("UAV-1", origin)
        for _ in range(100):
            agent.step(dropout_probability=0.0, now=0.0)
        assert not agent.is_timed_out()

    def test_simulated_agent_heartbeats_itself(self, origin):
        agent = Agent("UAV-1", origin)
        agent.step(now=500.0)
        assert agent.last_heartbeat == 500.0

    def test_real_agent_times_out(self, origin):
        agent = Agent("UAV-1", origin, simulated=False)
        agent.heartbeat(now=0.0)
        agent.step(now=19.0)
        assert not agent.timed_out
        agent.step(now=21.0)
        assert agent.timed_out

    def test_timed_out_agent_is_skipped(self, origin, north_of):
        agent = Agent("UAV-1", origin, simulated=False)
        agent.set_route([north_of(100)])
        agent.heartbeat(now=0.0)
        agent.step(now=30.0)
        agent.step(now=30.2)
        assert agent.coordinate == origin

    def test_heartbeat_reconnects(self, origin):
        agent = Agent("UAV-1", origin, simulated=False)
        agent.heartbeat(now=0.0)
        agent.step(now=25.0)
        assert agent.timed_out
        agent.heartbeat(now=26.0)
        assert not agent.timed_out
        assert agent.seconds_since_heartbeat(now=27.0) == pytest.approx(1.0)


class TestHub:
    """Test hub agents"""

    def test_hub_never_moves_or_drops(self, origin, north_of):
        hub = Agent("UAV-1", origin, is_hub=True)
        hub.set_route([north_of(100)])
        hub.step(dropout_probability=1.0, now=0.0)
        assert hub.coordinate == origin
        assert not hub.timed_out


class TestFlocking:
    """Test the flocking nudge"""

    def test_flocking_pulls_toward_neighbour(self, origin, north_of):
        agent = Agent("UAV-1", origin)
        neighbour = Agent("UAV-2", origin.offset(0.0, 50.0))
        agent.set_route([north_of(100)])
        agent.step(flocking_enabled=True, neighbours=[agent, neighbour], now=0.0)
        north, east = origin.offset_to(agent.coordinate)
        assert east > 0
        assert north > 0

    def test_flocking_ignores_distant_agents(self, origin, north_of):
        agent = Agent("UAV-1", origin)
        far = Agent("UAV-2", origin.offset(0.0, 5000.0))
        agent.set_route([north_of(100)])
        agent.step(flocking_enabled=True, neighbours=[far], now=0.0)
        _, east = origin.offset_to(agent.coordinate)
        assert east == pytest.approx(0.0, abs=1e-6)

    def test_flocking_bounded_by_step(self, origin, north_of):
        agent = Agent("UAV-1", origin)
        neighbour = Agent("UAV-2", origin.offset(0.0, 200.0))
        agent.set_route([north_of(100)])
        agent.step(flocking_enabled=True, neighbours=[neighbour], now=0.0)
        # Forward step plus at most half a step of nudge
        assert origin.distance_to(agent.coordinate) <= 1.5 * agent.step_distance + 0.1


class TestSerialisation:
    """Test agent snapshots"""

    def test_to_dict(self, origin, north_of):
        agent = Agent("UAV-1", origin)
        agent.assign("TASK-1", [north_of(50)])
        data = agent.to_dict()
        assert data["id"] == "UAV-1"
        assert data["allocatedTaskId"] == "TASK-1"
        assert data["working"] is True
        assert len(data["route"]) == 1
