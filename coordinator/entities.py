"""
Entity kinds and the simple map entities (hazards and targets).

Every entity carries a string `id` and a `kind` from the closed EntityKind
enumeration. The State registry dispatches on `kind` to pick the backing
collection.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from coordinator.geometry import Coordinate


class EntityKind(Enum):
    AGENT = "agent"
    TASK = "task"
    HAZARD = "hazard"
    TARGET = "target"


# Prefixes used when the registry generates ids
ID_PREFIXES = {
    EntityKind.AGENT: "UAV",
    EntityKind.TASK: "TASK",
    EntityKind.HAZARD: "HAZ",
    EntityKind.TARGET: "TGT",
}


@dataclass
class Hazard:
    """Static hazard placed on the map (fire, debris, ...)"""

    id: str
    coordinate: Coordinate
    hazard_type: int
    size: int = 1
    kind: EntityKind = EntityKind.HAZARD

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "coordinate": self.coordinate.to_dict(),
            "type": self.hazard_type,
            "size": self.size,
        }


@dataclass
class Target:
    """
    Object of interest in the field.

    Targets start hidden in scenarios and become visible once discovered.
    Classification metadata is carried for the image review front end only.
    """

    id: str
    coordinate: Coordinate
    target_type: int
    visible: bool = True
    correct_classification: Optional[str] = None
    low_res: Optional[str] = None
    high_res: Optional[str] = None
    kind: EntityKind = EntityKind.TARGET

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "coordinate": self.coordinate.to_dict(),
            "type": self.target_type,
            "visible": self.visible,
        }
