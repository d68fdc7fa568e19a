"""Movement model — a time-bounded transfer between two map locations.

Movements are created at dispatch time with units and resources already
deducted from the origin city. Resolution on arrival happens elsewhere.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class MovementType(Enum):
    ATTACK = "attack"
    REINFORCE = "reinforce"
    SCOUT = "scout"
    TRADE = "trade"
    FOUND_CITY = "found_city"
    RETURN = "return"
    ATTACK_VILLAGE = "attack_village"
    ATTACK_RUIN = "attack_ruin"
    ATTACK_GOD_TOWN = "attack_god_town"
    ASSIGN_HERO = "assign_hero"


ATTACK_TYPES = frozenset({
    MovementType.ATTACK,
    MovementType.ATTACK_VILLAGE,
    MovementType.ATTACK_RUIN,
    MovementType.ATTACK_GOD_TOWN,
})


class MovementStatus(Enum):
    MOVING = "moving"
    RETURNING = "returning"


class TargetKind(Enum):
    """What sits at the target coordinates."""

    CITY = "city"
    SLOT = "slot"
    VILLAGE = "village"
    RUIN = "ruin"
    GOD_TOWN = "god_town"


FORMATION_LINES = ("front", "mid", "back")


@dataclass
class Target:
    """Destination of a dispatch, as the caller sees it on the map."""

    kind: TargetKind
    target_id: str
    x: float
    y: float
    island_id: Optional[str] = None
    owner_id: Optional[str] = None
    name: str = ""
    city_id: Optional[str] = None


@dataclass
class Movement:
    """A dispatched movement.

    Attributes:
        movement_type: Kind of movement.
        status: ``MOVING`` outbound or ``RETURNING`` after a turn-around.
        units: Unit id → count carried.
        resources: Resources carried (trade) or cave silver (scout).
        attack_formation: Formation line → unit id, attack types only.
        departure_time: Store time at dispatch.
        arrival_time: Store time of arrival.
        cancellable_until: End of the grace window for an outright recall.
        involved_parties: Player ids allowed to see this movement.
    """

    movement_id: str
    movement_type: MovementType
    status: MovementStatus
    origin_city_id: str
    origin_owner_id: str
    origin_city_name: str
    origin_x: float
    origin_y: float
    target_kind: TargetKind
    target_id: str
    target_x: float
    target_y: float
    target_owner_id: Optional[str] = None
    target_city_id: Optional[str] = None
    target_name: str = ""
    units: dict[str, int] = field(default_factory=dict)
    hero: Optional[str] = None
    resources: dict[str, float] = field(default_factory=dict)
    agent: Optional[str] = None
    attack_formation: dict[str, str] = field(default_factory=dict)
    departure_time: float = 0.0
    arrival_time: float = 0.0
    cancellable_until: float = 0.0
    is_cross_island: bool = False
    wind_speed: float = 0.0
    new_city_name: str = ""
    involved_parties: list[str] = field(default_factory=list)
