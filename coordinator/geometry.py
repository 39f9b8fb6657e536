"""
Geometry primitives - latitude/longitude coordinates and distances.

Coordinates are immutable value objects. Distances use the haversine formula;
short moves (a single tick of agent motion) use a local flat-earth
approximation, which is accurate to well under a meter at tick scale.
"""

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

EARTH_RADIUS_M = 6371000.0
METERS_PER_DEGREE_LAT = 111111.0


@dataclass(frozen=True)
class Coordinate:
    """Immutable (latitude, longitude) pair in degrees"""

    latitude: float
    longitude: float

    def distance_to(self, other: "Coordinate") -> float:
        """Great-circle distance in meters"""
        lat1, lng1, lat2, lng2 = np.radians(
            [self.latitude, self.longitude, other.latitude, other.longitude]
        )
        dlat = lat2 - lat1
        dlng = lng2 - lng1
        a = np.sin(dlat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlng / 2) ** 2
        return float(2 * EARTH_RADIUS_M * np.arcsin(np.sqrt(min(1.0, a))))

    def bearing_to(self, other: "Coordinate") -> float:
        """Initial bearing in degrees clockwise from north (0-360)"""
        north, east = self.offset_to(other)
        return math.degrees(math.atan2(east, north)) % 360.0

    def offset_to(self, other: "Coordinate") -> Tuple[float, float]:
        """Local (north, east) offset in meters from self to other"""
        north = (other.latitude - self.latitude) * METERS_PER_DEGREE_LAT
        east = (
            (other.longitude - self.longitude)
            * METERS_PER_DEGREE_LAT
            * math.cos(math.radians(self.latitude))
        )
        return north, east

    def offset(self, north_m: float, east_m: float) -> "Coordinate":
        """Coordinate displaced by a local (north, east) offset in meters"""
        lat = self.latitude + north_m / METERS_PER_DEGREE_LAT
        cos_lat = math.cos(math.radians(self.latitude))
        if abs(cos_lat) < 1e-12:
            return Coordinate(lat, self.longitude)
        lng = self.longitude + east_m / (METERS_PER_DEGREE_LAT * cos_lat)
        return Coordinate(lat, lng)

    def step_towards(self, target: "Coordinate", distance_m: float) -> "Coordinate":
        """
        Move up to distance_m toward target.

        Returns target itself when it is within reach, so callers can compare
        for arrival without floating point drift.
        """
        remaining = self.distance_to(target)
        if remaining <= distance_m or remaining == 0:
            return target
        north, east = self.offset_to(target)
        fraction = distance_m / remaining
        return self.offset(north * fraction, east * fraction)

    def rounded(self, places: int = 4) -> "Coordinate":
        """
        Round half-up to a grid of 10^-places degrees.

        Used as the key for spatial coalescing of hazard hits.
        """
        factor = 10.0 ** places
        return Coordinate(
            math.floor(self.latitude * factor + 0.5) / factor,
            math.floor(self.longitude * factor + 0.5) / factor,
        )

    def to_dict(self) -> dict:
        return {"lat": self.latitude, "lng": self.longitude}
