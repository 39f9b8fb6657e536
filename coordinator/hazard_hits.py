"""
Hazard heat structure - spatially coalesced, decaying sensor hits.

Hits are stored per hazard type, keyed by their coordinate rounded to a
1e-4 degree cell. Only one hit lives in a cell: a new hit at an occupied cell
replaces the old one with a fresh weight of 1.0. The unrounded coordinate is
kept on the hit so renderers draw smooth positions.

Each type has a decay rate subtracted from every hit's weight per
`decay_all()` call. A rate of 0 makes hits permanent (persistent heatmaps);
the exploration trail type (-1) decays slowly by default.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from coordinator.config import DEFAULT_HAZARD_DECAY_RATES, HAZARD_CELL_PLACES
from coordinator.geometry import Coordinate

logger = logging.getLogger(__name__)

# Weights at or below this are considered exhausted
_EXHAUSTED = 1e-9


@dataclass
class HazardHit:
    """A single hit: exact location, current weight and per-tick decay"""

    location: Coordinate
    decay_rate: float
    weight: float = 1.0

    def decay(self) -> bool:
        """Apply one tick of decay. Returns True once the hit has expired."""
        self.weight -= self.decay_rate
        return self.decay_rate > 0 and self.weight <= _EXHAUSTED


class HazardHitCollection:
    """
    Per-type map of rounded cell -> HazardHit.

    Guarded by its own lock; mutations are independent of the State lock.
    """

    def __init__(self, decay_rates: Optional[Mapping[int, float]] = None):
        self.decay_rates: Dict[int, float] = dict(
            DEFAULT_HAZARD_DECAY_RATES if decay_rates is None else decay_rates
        )
        self._hits: Dict[int, Dict[Coordinate, HazardHit]] = {}
        self._lock = threading.Lock()
        self.init()

    def init(self):
        """Register an empty cell map for every configured hazard type"""
        with self._lock:
            for hazard_type in self.decay_rates:
                self._hits.setdefault(hazard_type, {})

    def add(self, hazard_type: int, location: Coordinate) -> bool:
        """
        Record a hit, overwriting any hit in the same rounded cell.

        Returns False (and logs) when hazard_type is not registered.
        """
        with self._lock:
            cells = self._hits.get(hazard_type)
            if cells is None:
                logger.error(
                    f"Could not register hazard hit - no list for hazard type {hazard_type}"
                )
                return False
            key = location.rounded(HAZARD_CELL_PLACES)
            cells[key] = HazardHit(location, self.decay_rates[hazard_type])
            return True

    def decay_all(self):
        """Decay every hit once and drop the expired ones"""
        with self._lock:
            for cells in self._hits.values():
                expired = [key for key, hit in cells.items() if hit.decay()]
                for key in expired:
                    del cells[key]

    def clear(self):
        with self._lock:
            self._hits.clear()

    def hits(self, hazard_type: int) -> List[HazardHit]:
        with self._lock:
            return list(self._hits.get(hazard_type, {}).values())

    def count(self, hazard_type: Optional[int] = None) -> int:
        with self._lock:
            if hazard_type is not None:
                return len(self._hits.get(hazard_type, {}))
            return sum(len(cells) for cells in self._hits.values())

    def to_dict(self) -> Dict[str, list]:
        with self._lock:
            return {
                str(hazard_type): [
                    {"location": hit.location.to_dict(), "weight": hit.weight}
                    for hit in cells.values()
                ]
                for hazard_type, cells in self._hits.items()
            }
