"""
Unit tests for coordinate geometry

Tests cover:
- Haversine distance
- Bearings and local offsets
- Step-toward motion
- Half-up rounding used for hazard cell keys
"""

import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

import pytest  # noqa: E402
from coordinator.geometry import Coordinate  # noqa: E402


class TestDistance:
    """Test great-circle distances"""

    def test_distance_to_self_is_zero(self, origin):
        assert origin.distance_to(origin) == 0.0

    def test_one_degree_of_latitude(self):
        """One degree of latitude is ~111.2 km on a 6371 km sphere"""
        a = Coordinate(50.0, 0.0)
        b = Coordinate(51.0, 0.0)
        assert a.distance_to(b) == pytest.approx(111194.9, rel=1e-4)

    def test_distance_is_symmetric(self):
        a = Coordinate(50.93, -1.39)
        b = Coordinate(50.94, -1.41)
        assert a.distance_to(b) == pytest.approx(b.distance_to(a))

    def test_offset_matches_distance(self, origin):
        """A 100 m local offset is ~100 m by haversine"""
        moved = origin.offset(100.0, 0.0)
        assert origin.distance_to(moved) == pytest.approx(100.0, abs=0.5)


class TestBearing:
    """Test bearings in degrees clockwise from north"""

    def test_north(self, origin):
        assert origin.bearing_to(origin.offset(50.0, 0.0)) == pytest.approx(0.0)

    def test_east(self, origin):
        assert origin.bearing_to(origin.offset(0.0, 50.0)) == pytest.approx(90.0)

    def test_south_west(self, origin):
        assert origin.bearing_to(origin.offset(-50.0, -50.0)) == pytest.approx(225.0)


class TestStepTowards:
    """Test single-tick motion"""

    def test_returns_target_when_within_reach(self, origin):
        target = origin.offset(2.0, 0.0)
        assert origin.step_towards(target, 3.0) == target

    def test_partial_step_reduces_distance(self, origin):
        target = origin.offset(100.0, 0.0)
        moved = origin.step_towards(target, 15.0)
        assert moved.distance_to(target) == pytest.approx(85.0, abs=0.5)
        assert origin.distance_to(moved) == pytest.approx(15.0, abs=0.1)

    def test_step_to_self(self, origin):
        assert origin.step_towards(origin, 3.0) == origin


class TestRounding:
    """Test hazard cell key rounding"""

    def test_rounds_to_four_places(self):
        rounded = Coordinate(50.12346, -1.23444).rounded()
        assert rounded.latitude == pytest.approx(50.1235)
        assert rounded.longitude == pytest.approx(-1.2344)

    def test_nearby_points_share_a_cell(self):
        a = Coordinate(50.00001, -1.00001)
        b = Coordinate(50.00002, -1.00002)
        assert a.rounded() == b.rounded()

    def test_distant_points_do_not_share_a_cell(self):
        a = Coordinate(50.0000, -1.0000)
        b = Coordinate(50.0010, -1.0000)
        assert a.rounded() != b.rounded()

    def test_coordinates_are_hashable(self):
        cells = {Coordinate(1.0, 2.0): "a"}
        assert cells[Coordinate(1.0, 2.0)] == "a"

    def test_to_dict(self):
        assert Coordinate(1.5, -2.5).to_dict() == {"lat": 1.5, "lng": -2.5}
