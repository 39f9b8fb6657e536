"""
Pytest fixtures and configuration for coordination server tests

This file contains shared fixtures used across all test modules.
"""

import pytest
import random
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from coordinator.allocator import Allocator  # noqa: E402
from coordinator.config import load_config  # noqa: E402
from coordinator.geometry import Coordinate  # noqa: E402
from coordinator.imaging import ImageController  # noqa: E402
from coordinator.main import CoordinationServer  # noqa: E402
from coordinator.simulator import Simulator  # noqa: E402
from coordinator.state import State  # noqa: E402


class FakeClock:
    """Manually advanced wall clock"""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


# =============================================================================
# Clock / Config Fixtures
# =============================================================================


@pytest.fixture
def clock():
    """Fake wall clock starting at t=1000s"""
    return FakeClock()


@pytest.fixture
def config():
    """Default configuration with a fixed allocation seed"""
    config = load_config()
    config["allocation"]["seed"] = 42
    return config


# =============================================================================
# Core Component Fixtures
# =============================================================================


@pytest.fixture
def state(clock):
    """Empty State driven by the fake clock"""
    return State(clock=clock)


@pytest.fixture
def allocator(state):
    """Allocator with a seeded random source"""
    return Allocator(state, rng=random.Random(42))


@pytest.fixture
def image_controller(state, clock):
    """ImageController driven by the fake clock"""
    return ImageController(state, clock=clock)


@pytest.fixture
def simulator(state, allocator, image_controller, config, clock):
    """Simulator that is ticked manually via tick()"""
    return Simulator(state, allocator, image_controller, config=config, clock=clock)


@pytest.fixture
def server(config, clock):
    """Fully wired CoordinationServer; the clock thread is not started"""
    server = CoordinationServer(config=config, clock=clock)
    yield server
    server.simulator.stop_simulation()


# =============================================================================
# Position Fixtures
# =============================================================================


@pytest.fixture
def origin():
    """Reference coordinate used as hub / game centre"""
    return Coordinate(50.9380, -1.3960)


@pytest.fixture
def north_of(origin):
    """Fixture that returns a coordinate a given distance north of origin"""

    def _north(meters):
        return origin.offset(meters, 0.0)

    return _north


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom settings"""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")


def pytest_collection_modifyitems(config, items):
    """Modify test items during collection"""
    for item in items:
        # Auto-mark tests based on directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
